"""Run the wrapped command and capture what happened."""

from __future__ import annotations
import logging
import os
import signal
import subprocess
import time
from typing import Optional
from cwrap._constants import POLL_INTERVAL
from cwrap._models import CommandSpec, RunResult
from cwrap._signals import Cancellation

lgr = logging.getLogger("cwrap")


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def _kill(
    process: subprocess.Popen, start_time: float, t0: float, reason: str
) -> RunResult:
    """Forcibly stop `process` and describe the outcome as an internal error.

    The whole process group is killed, so that children of a shell do not
    keep running (and keep our pipes open) after it.
    """
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as exc:
        return RunResult.internal(f"Failed to kill subprocess! {exc}")
    # whatever it wrote so far is dropped
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()
    process.wait()
    return RunResult(
        exit_code=-1,
        start_time=start_time,
        duration=time.monotonic() - t0,
        internal_error=reason,
    )


def run_command(
    command: CommandSpec,
    timeout: float = 0,
    poll_interval: float = POLL_INTERVAL,
    cancel: Optional[Cancellation] = None,
    env: Optional[dict[str, str]] = None,
) -> RunResult:
    """Execute `command`, waiting at most `timeout` seconds (0 waits forever).

    The process is polled every `poll_interval` seconds so that the timeout
    and `cancel` are noticed while stdout and stderr are still drained.
    Failures of the machinery itself (spawning, waiting, killing, timing
    out) are reported via `RunResult.internal_error` and never raised.
    """
    lgr.debug("Spawning the child process for %s", command.command_line)
    start_time = time.time()
    t0 = time.monotonic()
    try:
        process = subprocess.Popen(
            command.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
    except (OSError, ValueError) as exc:
        return RunResult.internal(f"Failed to spawn child: {exc}")
    lgr.debug("Child started with pid: %d", process.pid)

    while True:
        try:
            stdout, stderr = process.communicate(timeout=poll_interval)
            break
        except subprocess.TimeoutExpired:
            pass
        except OSError as exc:
            return RunResult.internal(f"Failure running child: {exc}")
        if cancel is not None and cancel.is_set():
            lgr.debug("Cancelled, killing the subprocess")
            return _kill(
                process,
                start_time,
                t0,
                f"Command interrupted by signal {cancel.signum}",
            )
        if timeout > 0 and time.monotonic() - t0 >= timeout:
            lgr.debug("Timeout exceeded, killing the subprocess")
            return _kill(
                process,
                start_time,
                t0,
                f"Command reached timeout of {timeout:.10g} secs",
            )

    returncode = process.returncode
    if returncode < 0:
        # killed by a signal, report it the way a shell would
        returncode = 128 + abs(returncode)
    return RunResult(
        exit_code=returncode,
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        start_time=start_time,
        duration=time.monotonic() - t0,
    )
