from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from judgebox.core.config import Settings
from judgebox.core import guard
from judgebox.core.guard import CapabilityViolation
from judgebox.core.languages import LanguageProfile

try:  # POSIX resource limits (best-effort)
    import resource  # type: ignore
except Exception:  # pragma: no cover - non-POSIX
    resource = None  # type: ignore[assignment]


GUARD_SCRIPT: Path = Path(guard.__file__)

_MB = 1024 * 1024


def _setrlimit(limit: int, value: int) -> None:
    try:
        resource.setrlimit(limit, (value, value))
    except (ValueError, OSError):
        pass


@dataclass(frozen=True, slots=True)
class CapabilityPolicy:
    """Per-request capability token handed to every launch in one workspace.

    Nothing here is process-wide: the OS limits are applied in the child via
    ``preexec`` and the in-runtime guard receives ``as_argument()``.
    """

    workspace: Path
    memory_limit_mb: int
    cpu_time_sec: int
    max_file_size_mb: int
    max_open_files: int
    max_processes: int | None
    limit_address_space: bool = True
    read_roots: tuple[str, ...] = ()

    @classmethod
    def for_run(cls, workspace: Path, settings: Settings, profile: LanguageProfile) -> "CapabilityPolicy":
        return cls(
            workspace=workspace,
            memory_limit_mb=settings.memory_limit_mb,
            cpu_time_sec=max(1, math.ceil(settings.time_limit_ms / 1000)) + 1,
            max_file_size_mb=settings.max_file_size_mb,
            max_open_files=settings.max_open_files,
            max_processes=settings.max_processes if profile.limit_processes else None,
            limit_address_space=profile.limit_address_space,
        )

    def preexec(self) -> Callable[[], None]:
        def _apply() -> None:  # executed in child before exec
            if resource is not None:
                _setrlimit(resource.RLIMIT_CPU, self.cpu_time_sec)
                if self.limit_address_space:
                    _setrlimit(resource.RLIMIT_AS, self.memory_limit_mb * _MB)
                _setrlimit(resource.RLIMIT_FSIZE, self.max_file_size_mb * _MB)
                _setrlimit(resource.RLIMIT_NOFILE, self.max_open_files)
                _setrlimit(resource.RLIMIT_CORE, 0)
                if self.max_processes is not None and hasattr(resource, "RLIMIT_NPROC"):
                    _setrlimit(resource.RLIMIT_NPROC, self.max_processes)
            # new process group so the watchdog can kill descendants too
            os.setsid()
        return _apply

    def environment(self) -> dict[str, str]:
        env = {
            "PATH": os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
            "LANG": "C.UTF-8",
            "HOME": str(self.workspace),
            "TMPDIR": str(self.workspace),
            "PYTHONIOENCODING": "utf-8",
            "PYTHONDONTWRITEBYTECODE": "1",
        }
        java_home = os.environ.get("JAVA_HOME")
        if java_home:
            env["JAVA_HOME"] = java_home
        return env

    def as_argument(self) -> str:
        return json.dumps({"workspace": str(self.workspace), "read_roots": list(self.read_roots)})


def compile_preexec() -> Callable[[], None]:
    """Limits for the (trusted) compiler: own session, no core dumps."""

    def _apply() -> None:
        if resource is not None:
            _setrlimit(resource.RLIMIT_CORE, 0)
        os.setsid()
    return _apply


def screen_source(profile: LanguageProfile, code: str) -> None:
    """Reject source containing one of the profile's forbidden tokens."""
    if not profile.forbidden_tokens:
        return
    pattern = re.compile("|".join(re.escape(token) for token in profile.forbidden_tokens))
    found = pattern.search(code)
    if found is not None:
        raise CapabilityViolation(f"Forbidden token in source: {found.group(0)}")
