from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _default_scratch_root() -> Path:
    return Path(tempfile.gettempdir()) / "judgebox"


@dataclass(frozen=True, slots=True)
class Settings:
    time_limit_ms: int = 5_000          # watchdog per input run
    compile_timeout_ms: int = 10_000
    memory_limit_mb: int = 256          # RLIMIT_AS, or -Xmx for the JVM
    max_output_bytes: int = 1_000_000   # 1MB cap per stream after execution
    max_file_size_mb: int = 16          # RLIMIT_FSIZE
    max_open_files: int = 64            # RLIMIT_NOFILE
    max_processes: int = 64             # RLIMIT_NPROC
    max_inputs: int = 100
    scratch_root: Path = field(default_factory=_default_scratch_root)

    @staticmethod
    def from_env() -> "Settings":
        scratch = os.environ.get("SCRATCH_ROOT")
        return Settings(
            time_limit_ms=_int_from_env("TIME_LIMIT_MS", 5_000),
            compile_timeout_ms=_int_from_env("COMPILE_TIMEOUT_MS", 10_000),
            memory_limit_mb=_int_from_env("MEMORY_LIMIT_MB", 256),
            max_output_bytes=_int_from_env("MAX_OUTPUT_BYTES", 1_000_000),
            max_file_size_mb=_int_from_env("MAX_FILE_SIZE_MB", 16),
            max_open_files=_int_from_env("MAX_OPEN_FILES", 64),
            max_processes=_int_from_env("MAX_PROCESSES", 64),
            max_inputs=_int_from_env("MAX_INPUTS", 100),
            scratch_root=Path(scratch) if scratch else _default_scratch_root(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
