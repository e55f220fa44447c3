"""Rendering of the reports printed, mailed or logged by cwrap."""

from __future__ import annotations
from collections.abc import Iterable
from cwrap._constants import (
    FAILURE_BANNER,
    OUTPUT_DIVIDER,
    RUN_DIVIDER,
    SUCCESS_BANNER,
)
from cwrap._models import RunResult
from cwrap._utils import format_ts


def _output_section(title: str, text: str) -> str:
    return f"\n{title}:\n{OUTPUT_DIVIDER}{text}\n{OUTPUT_DIVIDER}"


def format_run(command_line: str, run: RunResult) -> str:
    """Format a single run as a block delimited by `RUN_DIVIDER` lines."""
    parts = [
        RUN_DIVIDER,
        f"Command: {command_line}\n",
        f"Start Time: {format_ts(run.start_time)}\n",
        f"Run Time (seconds): {run.duration:.2f}\n",
    ]
    if run.internal_error is not None:
        parts.append(f"Internal Error: {run.internal_error}\n")
    else:
        parts.append(f"Exit Code: {run.exit_code}\n")
    if run.stdout:
        parts.append(_output_section("STDOUT", run.stdout))
    if run.stderr:
        parts.append(_output_section("STDERR", run.stderr))
    parts.append(RUN_DIVIDER)
    return "".join(parts)


def format_success_report(command_line: str, run: RunResult) -> str:
    return SUCCESS_BANNER + format_run(command_line, run)


def format_failure_report(
    command_line: str,
    runs: Iterable[RunResult],
    threshold: int,
    num_fails: int,
) -> str:
    """Format the failures in `runs`, oldest first, under one banner."""
    header = FAILURE_BANNER.format(
        threshold=threshold, num_fails=num_fails, command=command_line
    )
    return header + "".join(format_run(command_line, run) for run in runs)
