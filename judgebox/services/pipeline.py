from __future__ import annotations

import logging
from enum import Enum

from judgebox.core.config import Settings, get_settings
from judgebox.core.errors import CompileError
from judgebox.core.guard import CapabilityViolation
from judgebox.core.languages import LanguageRegistry
from judgebox.models.schemas import ExecuteCodeRequest, ExecuteCodeResponse, ExecuteStatus
from judgebox.services.aggregator import aggregate
from judgebox.services.compiler import Compiler
from judgebox.services.policy import screen_source
from judgebox.services.runner import ExecutionRunner
from judgebox.services.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    RECEIVED = "received"
    WORKSPACE_READY = "workspace_ready"
    COMPILED = "compiled"
    EXECUTED = "executed"
    AGGREGATED = "aggregated"
    REJECTED = "rejected"
    CLEANED_UP = "cleaned_up"
    SANDBOX_ERROR = "sandbox_error"


def _error_response(status: ExecuteStatus, message: str) -> ExecuteCodeResponse:
    return ExecuteCodeResponse(status=status, output_list=[], message=message)


class CodeSandbox:
    """Runs one request through workspace, compile, run, aggregate and cleanup.

    ``execute`` never raises: every failure is folded into the response. The
    workspace, once allocated, is cleaned up exactly once on every path.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        workspaces: WorkspaceManager | None = None,
        compiler: Compiler | None = None,
        runner: ExecutionRunner | None = None,
        languages: LanguageRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.workspaces = workspaces or WorkspaceManager(self.settings.scratch_root)
        self.compiler = compiler or Compiler(self.settings)
        self.runner = runner or ExecutionRunner(self.settings)
        self.languages = languages or LanguageRegistry()

    def execute(self, request: ExecuteCodeRequest) -> ExecuteCodeResponse:
        state = PipelineState.RECEIVED
        workspace: Workspace | None = None
        inputs = tuple(request.inputs)

        def advance(new_state: PipelineState) -> None:
            nonlocal state
            logger.debug("Pipeline %s -> %s", state.value, new_state.value)
            state = new_state

        try:
            profile = self.languages.resolve(request.language)
            screen_source(profile, request.code)

            workspace = self.workspaces.allocate(request.code, profile.source_file)
            advance(PipelineState.WORKSPACE_READY)

            self.compiler.compile(workspace, profile)
            advance(PipelineState.COMPILED)

            messages = self.runner.run(workspace, profile, inputs)
            advance(PipelineState.EXECUTED)

            response = aggregate(messages, time_limit_ms=self.settings.time_limit_ms)
            advance(PipelineState.AGGREGATED)
        except CompileError as exc:
            logger.info("Compilation failed: %s", exc.detail)
            advance(PipelineState.REJECTED)
            response = _error_response(ExecuteStatus.COMPILE_ERROR, exc.detail)
        except CapabilityViolation as exc:
            logger.info("Source rejected: %s", exc)
            advance(PipelineState.REJECTED)
            response = _error_response(ExecuteStatus.RUNTIME_ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001 - every failure becomes a response
            logger.exception("Sandbox failure in state %s", state.value)
            advance(PipelineState.SANDBOX_ERROR)
            response = _error_response(ExecuteStatus.SANDBOX_ERROR, str(exc) or exc.__class__.__name__)
        finally:
            if workspace is not None and not self.workspaces.cleanup(workspace):
                logger.error("Workspace cleanup failed, path=%s", workspace.root)

        if state in (PipelineState.AGGREGATED, PipelineState.REJECTED):
            advance(PipelineState.CLEANED_UP)
        return response
