from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from judgebox.models.schemas import ExecuteCodeResponse, ExecuteStatus, JudgeInfo
from judgebox.services.process import ExecuteMessage


class OutcomeKind(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    RUNTIME_ERROR = "runtime_error"


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    kind: OutcomeKind
    output: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK


def classify(message: ExecuteMessage, time_limit_ms: int) -> ExecutionOutcome:
    """Give one run exactly one outcome: timeout, runtime error or output.

    A run killed for flooding its streams is a runtime error even though its
    stderr may be empty.
    """
    if message.timed_out or (message.time is not None and message.time >= time_limit_ms):
        return ExecutionOutcome(
            OutcomeKind.TIMEOUT, error=f"Time limit exceeded ({time_limit_ms} ms)"
        )
    if message.output_exceeded:
        return ExecutionOutcome(OutcomeKind.RUNTIME_ERROR, error="Output limit exceeded")
    if message.error_message.strip():
        return ExecutionOutcome(OutcomeKind.RUNTIME_ERROR, error=message.error_message)
    if message.exit_value not in (0, None):
        return ExecutionOutcome(
            OutcomeKind.RUNTIME_ERROR, error=f"Program exited with code {message.exit_value}"
        )
    return ExecutionOutcome(OutcomeKind.OK, output=message.message)


def aggregate(messages: Iterable[ExecuteMessage], *, time_limit_ms: int) -> ExecuteCodeResponse:
    """Merge per-input runs into one response.

    The first failing run stops output collection: its error becomes the
    response message and later outputs are dropped. ``judgeInfo.time`` is the
    maximum elapsed time of the runs that produced output.
    """
    outputs: list[str] = []
    max_time = 0
    status = ExecuteStatus.SUCCESS
    message: str | None = None

    for item in messages:
        outcome = classify(item, time_limit_ms)
        if not outcome.ok:
            status = ExecuteStatus.RUNTIME_ERROR
            message = outcome.error
            break
        outputs.append(outcome.output or "")
        if item.time is not None:
            max_time = max(max_time, item.time)

    return ExecuteCodeResponse(
        status=status,
        output_list=outputs,
        message=message,
        judge_info=JudgeInfo(time=max_time),
    )
