"""Advisory lock file guarding against overlapping runs."""

from __future__ import annotations
import contextlib
import logging
import os
import time
from typing import Optional
from cwrap._exceptions import (
    LockCreateError,
    LockError,
    LockHeldError,
    LockRemoveError,
    LockWriteError,
)
from cwrap._signals import Cancellation

lgr = logging.getLogger("cwrap")


class FileLock:
    """A lock that is held for as long as its file exists.

    The PID written into the file is informational only.  A lock left behind
    by a killed holder stays held until the file is removed by hand.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def holder_pid(self) -> Optional[int]:
        try:
            with open(self.path) as fp:
                return int(fp.read().strip())
        except (OSError, ValueError):
            return None

    def try_acquire(self) -> None:
        """Make a single attempt at creating the lock file."""
        if os.path.exists(self.path):
            raise self._held_error()
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            raise self._held_error() from None
        except OSError as exc:
            raise LockCreateError(
                self.path, f"Failed to create lockfile: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "w") as fp:
                fp.write(str(os.getpid()))
        except OSError as exc:
            # do not leave a lock behind that nobody owns
            with contextlib.suppress(OSError):
                os.unlink(self.path)
            raise LockWriteError(
                self.path, f"Failed to write to lockfile: {exc}"
            ) from exc
        lgr.debug("Created lockfile at %s", self.path)

    def acquire(
        self,
        max_retries: int = 0,
        retry_interval: float = 10,
        cancel: Optional[Cancellation] = None,
    ) -> None:
        """Acquire the lock, retrying `max_retries` times `retry_interval` apart.

        Raises the error of the last attempt when the lock could not be
        acquired.  With `max_retries == 0` exactly one attempt is made.
        """
        attempts = max_retries + 1 if max_retries > 0 else 1
        for attempt in range(1, attempts + 1):
            lgr.debug("Attempting to acquire lock to run (attempt %d)", attempt)
            try:
                self.try_acquire()
            except LockError as exc:
                if attempt == attempts:
                    raise
                lgr.debug("%s; retrying in %s seconds", exc, retry_interval)
                if cancel is None:
                    time.sleep(retry_interval)
                elif cancel.wait(retry_interval):
                    raise
            else:
                lgr.debug("Lock successfully acquired!")
                return

    def release(self) -> None:
        """Remove the lock file.  Releasing a lock that is not held is a no-op."""
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise LockRemoveError(
                self.path, f"Failure removing the lock file: {exc}"
            ) from exc
        lgr.debug("Removed lockfile at %s", self.path)

    def _held_error(self) -> LockHeldError:
        pid = self.holder_pid()
        held_by = f" (held by pid {pid})" if pid is not None else ""
        return LockHeldError(self.path, f"Lockfile exists: {self.path}{held_by}")
