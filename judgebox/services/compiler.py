from __future__ import annotations

import logging

from judgebox.core.config import Settings
from judgebox.core.errors import CompileError
from judgebox.core.languages import LanguageProfile, default_python
from judgebox.services.policy import CapabilityPolicy, compile_preexec
from judgebox.services.process import ExecuteMessage, run_process
from judgebox.services.workspace import Workspace

logger = logging.getLogger(__name__)


class Compiler:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def compile(self, workspace: Workspace, profile: LanguageProfile) -> ExecuteMessage:
        """Build the workspace's source file; raise ``CompileError`` if the compiler rejects it."""
        if profile.compile_command is None:
            return ExecuteMessage(exit_value=0, message="", error_message="", time=0)

        argv = profile.render(
            profile.compile_command,
            {
                "python": default_python(),
                "source": str(workspace.source),
                "workspace": str(workspace.root),
                "memory_mb": self.settings.memory_limit_mb,
            },
        )
        policy = CapabilityPolicy.for_run(workspace.root, self.settings, profile)
        result = run_process(
            argv,
            cwd=workspace.root,
            timeout_ms=self.settings.compile_timeout_ms,
            max_output_bytes=self.settings.max_output_bytes,
            preexec=compile_preexec(),
            env=policy.environment(),
        )
        logger.debug("Compiled %s in %s ms (exit=%s)", workspace.source, result.time, result.exit_value)

        if result.timed_out:
            raise CompileError(
                f"Compilation exceeded {self.settings.compile_timeout_ms} ms", result
            )
        if result.exit_value != 0:
            detail = result.error_message or result.message or f"Compiler exited with code {result.exit_value}"
            raise CompileError(detail, result)
        return result
