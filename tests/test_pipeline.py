from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Sequence

import pytest

from judgebox.core.config import Settings
from judgebox.core.languages import PYTHON, LanguageProfile, LanguageRegistry
from judgebox.models.schemas import ExecuteCodeRequest, ExecuteStatus
from judgebox.services.pipeline import CodeSandbox
from judgebox.services.process import ExecuteMessage
from judgebox.services.runner import ExecutionRunner
from judgebox.services.workspace import Workspace, WorkspaceManager


ECHO = "print(input())\n"


def _request(code: str, inputs: list[str] | None = None, language: str = "python") -> ExecuteCodeRequest:
    return ExecuteCodeRequest(code=code, language=language, inputs=inputs or [])


class CountingWorkspaces(WorkspaceManager):
    def __init__(self, scratch_root: Path) -> None:
        super().__init__(scratch_root)
        self.allocated: list[Workspace] = []
        self.cleanups = 0

    def allocate(self, code: str, file_name: str) -> Workspace:
        workspace = super().allocate(code, file_name)
        self.allocated.append(workspace)
        return workspace

    def cleanup(self, workspace: Workspace) -> bool:
        self.cleanups += 1
        return super().cleanup(workspace)


class CountingRunner(ExecutionRunner):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.calls = 0

    def run(
        self, workspace: Workspace, profile: LanguageProfile, inputs: Sequence[str]
    ) -> list[ExecuteMessage]:
        self.calls += 1
        return super().run(workspace, profile, inputs)


class ExplodingRunner(ExecutionRunner):
    def run(
        self, workspace: Workspace, profile: LanguageProfile, inputs: Sequence[str]
    ) -> list[ExecuteMessage]:
        raise RuntimeError("runner thread died")


def test_echo_returns_one_output_per_input(sandbox: CodeSandbox) -> None:
    response = sandbox.execute(_request(ECHO, ["3", "5"]))

    assert response.status is ExecuteStatus.SUCCESS
    assert response.output_list == ["3", "5"]
    assert response.message is None
    assert response.judge_info.time >= 0


def test_empty_inputs_only_compiles(sandbox: CodeSandbox) -> None:
    response = sandbox.execute(_request(ECHO, []))

    assert response.status is ExecuteStatus.SUCCESS
    assert response.output_list == []
    assert response.judge_info.time == 0


def test_arguments_reach_program_through_stdin(sandbox: CodeSandbox) -> None:
    code = "a, b = map(int, input().split())\nprint(a + b)\n"
    response = sandbox.execute(_request(code, ["1 2", "40 2"]))

    assert response.status is ExecuteStatus.SUCCESS
    assert response.output_list == ["3", "42"]


def test_exception_reports_stderr_and_no_outputs(sandbox: CodeSandbox) -> None:
    response = sandbox.execute(_request("raise ValueError('boom')\n", ["1", "2"]))

    assert response.status is ExecuteStatus.RUNTIME_ERROR
    assert response.output_list == []
    assert response.message is not None
    assert response.message.startswith("Traceback")
    assert response.message.endswith("ValueError: boom")


def test_failure_truncates_outputs_at_failing_input(sandbox: CodeSandbox) -> None:
    code = "n = int(input())\nif n == 2:\n    raise SystemExit('bad input')\nprint(n)\n"
    response = sandbox.execute(_request(code, ["1", "2", "3"]))

    assert response.status is ExecuteStatus.RUNTIME_ERROR
    assert response.output_list == ["1"]
    assert response.message == "bad input"


def test_timeout_truncates_outputs(tmp_path: Path) -> None:
    settings = Settings(time_limit_ms=1_000, scratch_root=tmp_path / "scratch")
    code = "n = int(input())\nwhile n == 2:\n    pass\nprint(n)\n"

    response = CodeSandbox(settings).execute(_request(code, ["1", "2", "3"]))

    assert response.status is ExecuteStatus.RUNTIME_ERROR
    assert response.output_list == ["1"]
    assert response.message == "Time limit exceeded (1000 ms)"
    assert response.judge_info.time < 1_000


def test_stdout_flood_is_runtime_error(tmp_path: Path) -> None:
    settings = Settings(time_limit_ms=2_000, max_output_bytes=1_000, scratch_root=tmp_path / "scratch")
    code = "import sys\nwhile True:\n    sys.stdout.write('x' * (1 << 20))\n"

    response = CodeSandbox(settings).execute(_request(code, ["1", "2"]))

    assert response.status is ExecuteStatus.RUNTIME_ERROR
    assert response.output_list == []
    assert response.message == "Output limit exceeded"


def test_compile_error_never_reaches_runner(settings: Settings) -> None:
    runner = CountingRunner(settings)
    sandbox = CodeSandbox(settings, runner=runner)

    response = sandbox.execute(_request("def broken(:\n    pass\n", ["1"]))

    assert response.status is ExecuteStatus.COMPILE_ERROR
    assert response.output_list == []
    assert response.message is not None
    assert "SyntaxError" in response.message
    assert runner.calls == 0


def test_cleanup_runs_exactly_once_on_every_path(settings: Settings) -> None:
    cases = [
        (ECHO, ExecuteStatus.SUCCESS),
        ("def broken(:\n", ExecuteStatus.COMPILE_ERROR),
        ("raise ValueError('boom')\n", ExecuteStatus.RUNTIME_ERROR),
    ]
    for code, expected in cases:
        workspaces = CountingWorkspaces(settings.scratch_root)
        response = CodeSandbox(settings, workspaces=workspaces).execute(_request(code, ["7"]))
        assert response.status is expected
        assert workspaces.cleanups == 1
        assert not workspaces.allocated[0].root.exists()

    workspaces = CountingWorkspaces(settings.scratch_root)
    sandbox = CodeSandbox(settings, workspaces=workspaces, runner=ExplodingRunner(settings))
    response = sandbox.execute(_request(ECHO, ["7"]))
    assert response.status is ExecuteStatus.SANDBOX_ERROR
    assert response.message == "runner thread died"
    assert workspaces.cleanups == 1


def test_scratch_root_is_empty_after_requests(sandbox: CodeSandbox, settings: Settings) -> None:
    sandbox.execute(_request(ECHO, ["1"]))
    sandbox.execute(_request("raise ValueError()\n", ["1"]))

    assert list(settings.scratch_root.iterdir()) == []


def test_concurrent_identical_requests_get_distinct_workspaces(settings: Settings) -> None:
    workspaces = CountingWorkspaces(settings.scratch_root)
    sandbox = CodeSandbox(settings, workspaces=workspaces)

    with ThreadPoolExecutor(max_workers=4) as pool:
        responses = list(pool.map(lambda n: sandbox.execute(_request(ECHO, [str(n)])), range(4)))

    assert [r.output_list for r in responses] == [["0"], ["1"], ["2"], ["3"]]
    roots = {workspace.root for workspace in workspaces.allocated}
    assert len(roots) == 4


def test_unsupported_language_is_sandbox_error(sandbox: CodeSandbox) -> None:
    response = sandbox.execute(_request("DISPLAY 'HI'.", ["1"], language="cobol"))

    assert response.status is ExecuteStatus.SANDBOX_ERROR
    assert response.message is not None
    assert "Unsupported language" in response.message


def test_workspace_io_failure_is_sandbox_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    settings = Settings(scratch_root=blocker)

    response = CodeSandbox(settings).execute(_request(ECHO, ["1"]))

    assert response.status is ExecuteStatus.SANDBOX_ERROR
    assert response.message is not None
    assert "Unable to create workspace" in response.message


def test_missing_compiler_is_sandbox_error(settings: Settings) -> None:
    broken = dataclasses.replace(
        PYTHON, name="brokenpy", compile_command=("definitely-not-a-compiler-xyz", "{source}")
    )
    sandbox = CodeSandbox(settings, languages=LanguageRegistry([broken]))

    response = sandbox.execute(_request(ECHO, ["1"], language="brokenpy"))

    assert response.status is ExecuteStatus.SANDBOX_ERROR
    assert response.message is not None
    assert "definitely-not-a-compiler-xyz" in response.message
    assert list(settings.scratch_root.iterdir()) == []


def test_forbidden_token_is_runtime_error(sandbox: CodeSandbox, settings: Settings) -> None:
    response = sandbox.execute(_request("import ctypes\nprint(1)\n", ["1"]))

    assert response.status is ExecuteStatus.RUNTIME_ERROR
    assert response.message == "Forbidden token in source: ctypes"
    assert not settings.scratch_root.exists() or list(settings.scratch_root.iterdir()) == []


@pytest.mark.parametrize(
    ("code", "rejected_from"),
    [("def broken(:\n", "workspace_ready"), ("import ctypes\n", "received")],
    ids=["compile-error", "screened-source"],
)
def test_rejected_requests_reach_a_terminal_state(
    sandbox: CodeSandbox, code: str, rejected_from: str, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger="judgebox.services.pipeline")

    sandbox.execute(_request(code, ["1"]))

    transitions = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Pipeline ")]
    assert transitions[-2:] == [
        f"Pipeline {rejected_from} -> rejected",
        "Pipeline rejected -> cleaned_up",
    ]


def test_successful_request_ends_cleaned_up(
    sandbox: CodeSandbox, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger="judgebox.services.pipeline")

    sandbox.execute(_request(ECHO, ["1"]))

    transitions = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Pipeline ")]
    assert transitions[-1] == "Pipeline aggregated -> cleaned_up"
