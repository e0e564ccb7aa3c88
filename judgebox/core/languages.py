from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Iterable, Literal, Mapping

from judgebox.core.errors import UnsupportedLanguage


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """How to build and launch programs written in one language.

    Command templates are tuples of argv items formatted with ``str.format``.
    Available placeholders: ``{python}``, ``{source}``, ``{workspace}``,
    ``{memory_mb}``, ``{guard}`` and ``{policy}``.
    """

    name: str
    source_file: str
    run_command: tuple[str, ...]
    compile_command: tuple[str, ...] | None = None
    input_mode: Literal["stdin", "args"] = "stdin"
    limit_address_space: bool = True
    limit_processes: bool = True
    forbidden_tokens: tuple[str, ...] = ()

    def render(self, template: tuple[str, ...], values: Mapping[str, object]) -> list[str]:
        return [part.format(**values) for part in template]


PYTHON = LanguageProfile(
    name="python",
    source_file="Main.py",
    compile_command=("{python}", "-m", "py_compile", "{source}"),
    run_command=("{python}", "-I", "{guard}", "{policy}", "{source}"),
    input_mode="stdin",
    forbidden_tokens=("ctypes", "_posixsubprocess"),
)

JAVA = LanguageProfile(
    name="java",
    source_file="Main.java",
    compile_command=("javac", "-encoding", "utf-8", "{source}"),
    run_command=(
        "java",
        "-Xmx{memory_mb}m",
        "-Dfile.encoding=UTF-8",
        "-cp",
        "{workspace}",
        "Main",
    ),
    input_mode="args",
    # the JVM reserves address space and threads up front; -Xmx bounds the heap
    limit_address_space=False,
    limit_processes=False,
    forbidden_tokens=("Files", "exec", "Runtime", "ProcessBuilder", "Socket"),
)


class LanguageRegistry:
    def __init__(self, profiles: Iterable[LanguageProfile] = (PYTHON, JAVA)) -> None:
        self._profiles: dict[str, LanguageProfile] = {}
        for profile in profiles:
            self.register(profile)

    def register(self, profile: LanguageProfile) -> None:
        self._profiles[profile.name.lower()] = profile

    def resolve(self, tag: str) -> LanguageProfile:
        profile = self._profiles.get((tag or "").strip().lower())
        if profile is None:
            supported = ", ".join(sorted(self._profiles))
            raise UnsupportedLanguage(f"Unsupported language {tag!r} (supported: {supported})")
        return profile

    def names(self) -> list[str]:
        return sorted(self._profiles)


def default_python() -> str:
    return sys.executable or "python3"
