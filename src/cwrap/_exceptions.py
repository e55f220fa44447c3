"""Exceptions raised by cwrap."""

from __future__ import annotations


class CwrapError(Exception):
    """Base class for all cwrap errors."""


class LockError(CwrapError):
    """Failed to lock (or unlock) the lock file."""

    def __init__(self, path: str, msg: str) -> None:
        super().__init__(msg)
        self.path = path

    def __str__(self) -> str:
        return f"Failed to lock file: {self.args[0]}"


class LockHeldError(LockError):
    """The lock file already exists."""


class LockCreateError(LockError):
    pass


class LockWriteError(LockError):
    pass


class LockRemoveError(LockError):
    pass


class StateFileError(CwrapError):
    """Serialization/deserialization problem with the state file."""

    def __init__(self, path: str, msg: str) -> None:
        super().__init__(msg)
        self.path = path

    def __str__(self) -> str:
        return f"Serialization/deserialization error ({self.path}): {self.args[0]}"


class StateLoadError(StateFileError):
    pass


class StateSaveError(StateFileError):
    pass
