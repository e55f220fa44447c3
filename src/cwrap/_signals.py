"""Signal handling for cwrap."""

from __future__ import annotations
import logging
import signal
import threading
import time
from types import FrameType
from typing import Any, Optional

lgr = logging.getLogger("cwrap")

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

# How often a wait checks whether it was cancelled
WAIT_SLICE = 0.05


class Cancellation:
    """Cancellation token shared by the blocking waits of one invocation.

    Instances are also signal handlers.  The handler may interrupt the main
    thread anywhere, including inside a wait on this very token, so it only
    assigns attributes: no locks, no logging.  Waits poll the flag instead
    of blocking on a condition.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.signum: Optional[int] = None
        self.sigcount: int = 0

    def __call__(self, sig: int, _frame: Optional[FrameType]) -> None:
        self.sigcount += 1
        self.cancel(sig)

    def cancel(self, signum: Optional[int] = None) -> None:
        if self.signum is None:
            self.signum = signum
        self._cancelled = True

    def is_set(self) -> bool:
        return self._cancelled

    def wait(self, timeout: Optional[float]) -> bool:
        """Sleep up to `timeout` seconds (forever if None).

        Returns True as soon as the token is cancelled, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._cancelled:
            if deadline is None:
                time.sleep(WAIT_SLICE)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(WAIT_SLICE, remaining))
        return True

    @property
    def exit_code(self) -> int:
        # https://pubs.opengroup.org/onlinepubs/9799919799/utilities/V3_chap02.html#tag_19_08_02
        return 128 + (self.signum or 0)


def install_handlers(cancel: Cancellation) -> dict[int, Any]:
    """Route termination signals to `cancel`; returns the previous handlers."""
    if threading.current_thread() is not threading.main_thread():
        lgr.debug("Not in the main thread, signals are not handled")
        return {}
    previous = {}
    for sig in TERMINATION_SIGNALS:
        previous[sig] = signal.signal(sig, cancel)
    return previous


def restore_handlers(previous: dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)
