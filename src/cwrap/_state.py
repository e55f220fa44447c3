"""Failure ledger persisted between invocations of the same command."""

from __future__ import annotations
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any, Optional
from cwrap._constants import __schema_version__
from cwrap._exceptions import StateLoadError, StateSaveError
from cwrap._models import CommandSpec, RunResult
from cwrap._utils import parse_version

lgr = logging.getLogger("cwrap")


@dataclass
class RunState:
    """Consecutive failures of a command and the runs not yet reported.

    `buffered_failures` never holds more entries than `consecutive_failures`:
    the counter is only reset by a success, while the buffer is also emptied
    whenever a report is emitted.

    The state file is rewritten in place, so a process killed while saving
    can leave a truncated file behind.
    """

    command: CommandSpec
    consecutive_failures: int = 0
    buffered_failures: list[RunResult] = field(default_factory=list)

    def on_success(self) -> None:
        self.consecutive_failures = 0
        self.buffered_failures = []

    def on_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def buffer(self, result: RunResult) -> None:
        self.buffered_failures.append(result)

    def clear_buffer(self) -> None:
        self.buffered_failures = []

    def for_json(self) -> dict[str, Any]:
        return {
            "schema_version": __schema_version__,
            "command": self.command.for_json(),
            "consecutive_failures": self.consecutive_failures,
            "buffered_failures": [r.for_json() for r in self.buffered_failures],
        }

    def dumps(self) -> str:
        return json.dumps(self.for_json())

    @classmethod
    def loads(cls, contents: str, path: str = "<string>") -> RunState:
        try:
            data = json.loads(contents)
            version = parse_version(data.get("schema_version", __schema_version__))
            if version[0] != parse_version(__schema_version__)[0]:
                raise ValueError(
                    f"Unsupported state schema version {data['schema_version']}"
                )
            return cls(
                command=CommandSpec.from_json(data["command"]),
                consecutive_failures=int(data["consecutive_failures"]),
                buffered_failures=[
                    RunResult.from_json(r) for r in data["buffered_failures"]
                ],
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StateLoadError(
                path, f"Failed to deserialize the content: {exc}"
            ) from exc

    @classmethod
    def load(cls, path: str) -> Optional[RunState]:
        """Load the state saved at `path`.

        Returns None when there is nothing to load yet (first run of this
        command).  A file that exists but cannot be read or parsed raises
        StateLoadError.
        """
        try:
            with open(path, encoding="utf-8") as fp:
                contents = fp.read()
        except FileNotFoundError:
            lgr.debug("No state file at %s yet", path)
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StateLoadError(path, f"Failed to read the state file: {exc}") from exc
        if not contents.strip():
            lgr.debug("State file %s is empty", path)
            return None
        return cls.loads(contents, path)

    def save(self, path: str) -> None:
        try:
            data = self.dumps()
        except (TypeError, ValueError) as exc:
            raise StateSaveError(path, f"Error serializing data: {exc}") from exc
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(data)
        except OSError as exc:
            raise StateSaveError(
                path, f"Error writing serialized data: {exc}"
            ) from exc
        lgr.debug("Saved state to %s", path)
