from __future__ import annotations

import logging
from typing import Sequence

from judgebox.core.config import Settings
from judgebox.core.languages import LanguageProfile, default_python
from judgebox.services.policy import GUARD_SCRIPT, CapabilityPolicy
from judgebox.services.process import ExecuteMessage, run_process
from judgebox.services.workspace import Workspace

logger = logging.getLogger(__name__)


class ExecutionRunner:
    """Runs a compiled program once per input, sequentially.

    Each run gets its own subprocess, memory ceiling and watchdog. A crash or
    timeout on one input never stops the following ones, and nothing is
    classified here.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def run(
        self,
        workspace: Workspace,
        profile: LanguageProfile,
        inputs: Sequence[str],
    ) -> list[ExecuteMessage]:
        policy = CapabilityPolicy.for_run(workspace.root, self.settings, profile)
        command = profile.render(
            profile.run_command,
            {
                "python": default_python(),
                "source": str(workspace.source),
                "workspace": str(workspace.root),
                "memory_mb": self.settings.memory_limit_mb,
                "guard": str(GUARD_SCRIPT),
                "policy": policy.as_argument(),
            },
        )

        messages: list[ExecuteMessage] = []
        for index, item in enumerate(inputs):
            if profile.input_mode == "args":
                argv, stdin = [*command, *item.split()], None
            else:
                argv, stdin = command, item
            message = run_process(
                argv,
                cwd=workspace.root,
                stdin=stdin,
                timeout_ms=self.settings.time_limit_ms,
                max_output_bytes=self.settings.max_output_bytes,
                preexec=policy.preexec(),
                env=policy.environment(),
            )
            logger.debug(
                "Input #%d finished in %s ms (exit=%s, timed_out=%s, output_exceeded=%s)",
                index,
                message.time,
                message.exit_value,
                message.timed_out,
                message.output_exceeded,
            )
            messages.append(message)
        return messages
