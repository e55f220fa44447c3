"""When to report a failure."""

from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional
from cwrap._formatter import format_failure_report
from cwrap._models import RunResult
from cwrap._state import RunState

lgr = logging.getLogger("cwrap")


@dataclass(frozen=True)
class ReportPolicy:
    """Decides, from the consecutive failure count, whether to report now.

    With `backoff` reports are produced at threshold, 2*threshold,
    4*threshold, ... failures, otherwise at every multiple of threshold.
    `first_fail` additionally reports the very first failure.
    """

    threshold: int = 1
    backoff: bool = False
    first_fail: bool = False

    def __post_init__(self) -> None:
        if self.threshold < 1:
            raise ValueError("threshold must be at least 1")

    def backoff_match(self, num_fails: int) -> bool:
        count = self.threshold
        while count <= num_fails:
            if count == num_fails:
                return True
            count *= 2
        return False

    def should_report(self, num_fails: int) -> bool:
        # Order matters: with backoff the plain multiple-of-threshold rule
        # never applies.
        if self.backoff and self.backoff_match(num_fails):
            return True
        elif not self.backoff and num_fails % self.threshold == 0:
            return True
        elif self.first_fail and num_fails == 1:
            return True
        return False

    def handle_failure(self, state: RunState, run: RunResult) -> Optional[str]:
        """Record the failed `run` in `state`.

        Returns the rendered failure report when one is due, in which case
        the buffered failures it includes are dropped from `state`.
        Otherwise `run` is buffered and None is returned.
        """
        num_fails = state.on_failure()
        if not self.should_report(num_fails):
            lgr.debug(
                "Failure %d of %s does not trigger a report, buffering it",
                num_fails,
                state.command.command_line,
            )
            state.buffer(run)
            return None
        report = format_failure_report(
            state.command.command_line,
            [*state.buffered_failures, run],
            threshold=self.threshold,
            num_fails=num_fails,
        )
        state.clear_buffer()
        return report
