from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from judgebox.services.process import ExecuteMessage

__all__ = [
    "CompileError",
    "IOFailure",
    "ProcessLaunchError",
    "SandboxError",
    "UnsupportedLanguage",
]


class SandboxError(Exception):
    """Failure of the sandbox itself rather than of the submitted code."""


class IOFailure(SandboxError):
    """The per-request workspace could not be created or written."""


class ProcessLaunchError(SandboxError):
    """A compiler or program binary could not be started."""


class UnsupportedLanguage(SandboxError):
    """No language profile is registered for the requested tag."""


class CompileError(Exception):
    """The compiler rejected the source. Carries the compiler's output."""

    def __init__(self, detail: str, result: "ExecuteMessage | None" = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.result = result
