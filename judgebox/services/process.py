from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable, Mapping, Sequence

from judgebox.core.errors import ProcessLaunchError

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_TRUNCATED = "\n...[truncated]"


@dataclass(frozen=True, slots=True)
class ExecuteMessage:
    """Raw facts about one finished subprocess. Never classified here."""

    exit_value: int | None
    message: str
    error_message: str
    time: int | None
    timed_out: bool = False
    output_exceeded: bool = False


class _Capture:
    """At most ``limit`` bytes of one stream, filled by a reader thread."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    def text(self) -> str:
        text = bytes(self.data).decode("utf-8", errors="replace")
        if self.truncated:
            text += _TRUNCATED
        # line-oriented: trailing terminators are not part of the output
        return text.rstrip("\r\n")


def _pump(stream: IO[bytes], capture: _Capture, wake: threading.Event) -> None:
    """Read ``stream`` until EOF, or stop and signal once the cap is exceeded."""
    with stream:
        while True:
            chunk = stream.read1(_CHUNK)  # type: ignore[attr-defined]
            if not chunk:
                return
            room = capture.limit - len(capture.data)
            if len(chunk) > room:
                capture.data += chunk[: max(room, 0)]
                capture.truncated = True
                wake.set()
                return
            capture.data += chunk


def _feed(stream: IO[bytes], data: bytes) -> None:
    try:
        stream.write(data)
    except BrokenPipeError:
        pass  # the child exited without reading its input
    finally:
        try:
            stream.close()
        except BrokenPipeError:
            pass


def _terminate(proc: subprocess.Popen[bytes]) -> None:
    """Kill the process group once. Safe to call on an exited process."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def run_process(
    argv: Sequence[str],
    *,
    cwd: str | os.PathLike[str],
    stdin: str | None = None,
    timeout_ms: int | None = None,
    max_output_bytes: int = 1_000_000,
    preexec: Callable[[], None] | None = None,
    env: Mapping[str, str] | None = None,
) -> ExecuteMessage:
    """Run ``argv`` to completion and capture its exit code, streams and elapsed time.

    Notes:
    - stdout and stderr are read incrementally and never hold more than
      ``max_output_bytes`` each in this process. The first stream to exceed
      the cap gets the whole process group killed, and the result is flagged
      ``output_exceeded``.
    - When ``timeout_ms`` elapses the group is killed with a single SIGKILL and
      the result is flagged ``timed_out``.
    - ``preexec`` runs in the child before exec (POSIX only).
    - Failure to start the process raises ``ProcessLaunchError``.
    """
    start = time.perf_counter()
    try:
        proc = subprocess.Popen(  # nosec: B603 (controlled argv)
            list(argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=os.fspath(cwd),
            env=dict(env) if env is not None else None,
            text=False,
            preexec_fn=preexec if os.name == "posix" else None,
        )
    except OSError as exc:
        raise ProcessLaunchError(f"Unable to start {argv[0]!r}: {exc}") from exc

    wake = threading.Event()
    finished: list[float] = []

    def _wait() -> None:
        proc.wait()
        finished.append(time.perf_counter())
        wake.set()

    out, err = _Capture(max_output_bytes), _Capture(max_output_bytes)
    threads = [
        threading.Thread(target=_wait, daemon=True),
        threading.Thread(target=_pump, args=(proc.stdout, out, wake), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err, wake), daemon=True),
    ]
    if stdin is not None:
        threads.append(
            threading.Thread(target=_feed, args=(proc.stdin, stdin.encode("utf-8")), daemon=True)
        )
    else:
        proc.stdin.close()  # type: ignore[union-attr]
    for thread in threads:
        thread.start()

    timeout = timeout_ms / 1000.0 if timeout_ms is not None else None
    timed_out = not wake.wait(timeout=timeout)
    if timed_out:
        logger.debug("Watchdog fired after %s ms for pid %s", timeout_ms, proc.pid)
        _terminate(proc)
    elif not finished:
        logger.debug("Output limit of %s bytes exceeded by pid %s", max_output_bytes, proc.pid)
        _terminate(proc)
    for thread in threads:
        thread.join()

    end = finished[0] if finished else time.perf_counter()
    return ExecuteMessage(
        exit_value=proc.returncode,
        message=out.text(),
        error_message=err.text(),
        time=int((end - start) * 1000),
        timed_out=timed_out,
        output_exceeded=out.truncated or err.truncated,
    )
