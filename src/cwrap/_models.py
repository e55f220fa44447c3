"""Data models and enums for cwrap."""

from __future__ import annotations
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from enum import Enum
import os
from typing import Any, Optional
from cwrap._constants import (
    DEFAULT_LOCK_DIR,
    DEFAULT_STATE_DIR,
    DEFAULT_SUBJECT,
    DEFAULT_SYSLOG_FACILITY,
    DEFAULT_SYSLOG_SEVERITY,
    LOCK_SUFFIX,
    POLL_INTERVAL,
    SHELL,
)
from cwrap._utils import get_hostname, get_username


class TlsMode(str, Enum):
    NONE = "none"
    TLS = "tls"
    STARTTLS = "starttls"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CommandSpec:
    """The command to run.

    In shell mode `program` holds the whole command string, which is handed
    to a subshell as its single argument, and `args` is empty.
    """

    program: str
    args: tuple[str, ...] = ()
    shell: bool = False

    def __post_init__(self) -> None:
        if not self.program.strip():
            raise ValueError("No command given")

    @classmethod
    def from_argv(cls, argv: Sequence[str], shell: bool = False) -> CommandSpec:
        if not argv:
            raise ValueError("No command given")
        if shell:
            return cls(program=" ".join(argv), shell=True)
        return cls(program=argv[0], args=tuple(argv[1:]))

    @property
    def command_line(self) -> str:
        return " ".join([self.program, *self.args])

    @property
    def argv(self) -> list[str]:
        if self.shell:
            return [SHELL, "-c", self.program]
        return [self.program, *self.args]

    def for_json(self) -> dict[str, Any]:
        return {"program": self.program, "args": list(self.args), "shell": self.shell}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> CommandSpec:
        return cls(
            program=data["program"],
            args=tuple(data.get("args", ())),
            shell=bool(data.get("shell", False)),
        )


@dataclass
class RunResult:
    exit_code: int  # -1 when killed due to a timeout
    stdout: str = ""
    stderr: str = ""
    start_time: float = 0.0  # epoch seconds
    duration: float = 0.0  # seconds
    # Set when the execution machinery itself failed.  When present it, and
    # not exit_code, decides that the run failed.
    internal_error: Optional[str] = None

    @classmethod
    def internal(cls, msg: str) -> RunResult:
        return cls(exit_code=0, internal_error=msg)

    @property
    def failed(self) -> bool:
        return self.exit_code != 0 or self.internal_error is not None

    def for_json(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> RunResult:
        return cls(
            exit_code=int(data["exit_code"]),
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
            start_time=float(data.get("start_time", 0.0)),
            duration=float(data.get("duration", 0.0)),
            internal_error=data.get("internal_error"),
        )


@dataclass
class StatePaths:
    fingerprint: str
    state: str
    lock: str

    @classmethod
    def create(
        cls,
        fingerprint: str,
        state_dir: str = DEFAULT_STATE_DIR,
        lock_file: Optional[str] = None,
        lock_dir: str = DEFAULT_LOCK_DIR,
    ) -> StatePaths:
        return cls(
            fingerprint=fingerprint,
            state=os.path.join(state_dir, fingerprint),
            lock=(
                lock_file
                if lock_file is not None
                else os.path.join(lock_dir, fingerprint + LOCK_SUFFIX)
            ),
        )


@dataclass
class SyslogOptions:
    facility: str = DEFAULT_SYSLOG_FACILITY
    severity: str = DEFAULT_SYSLOG_SEVERITY


@dataclass
class SMTPOptions:
    recipients: list[str]
    subject: str = DEFAULT_SUBJECT
    smtp_server: str = "localhost"
    smtp_port: int = 25
    tls_mode: TlsMode = TlsMode.NONE
    username: Optional[str] = None
    password: Optional[str] = None
    email_from: Optional[str] = None
    also_normal_output: bool = False

    def __post_init__(self) -> None:
        if not self.recipients:
            raise ValueError(
                "If you wish to send email directly, you must specify "
                "at least 1 recipient."
            )

    @property
    def from_addr(self) -> str:
        """The sending address, `<user>@<hostname>` unless explicitly set."""
        if self.email_from:
            return self.email_from
        return f"{get_username() or 'cwrap'}@{get_hostname() or 'localhost'}"

    @staticmethod
    def parse_creds(path: str) -> tuple[str, str]:
        """Read a `USERNAME:PASSWORD` credentials file."""
        with open(path, encoding="utf-8") as fp:
            contents = fp.read().rstrip("\r\n")
        username, sep, password = contents.partition(":")
        if not sep:
            raise ValueError(
                f"Credentials file {path} must contain USERNAME:PASSWORD"
            )
        return username, password


@dataclass
class RunConfig:
    """Fully resolved configuration of one invocation."""

    command: CommandSpec
    state_dir: str = DEFAULT_STATE_DIR
    lock_file: Optional[str] = None
    num_retries: int = 0
    retry_secs: float = 10
    ignore_retry_fails: bool = False
    fuzz: float = 0
    timeout: float = 0
    quiet: bool = False
    num_fails: int = 1
    first_fail: bool = False
    backoff: bool = False
    syslog: Optional[SyslogOptions] = None
    smtp: Optional[SMTPOptions] = None
    path: Optional[str] = None
    poll_interval: float = POLL_INTERVAL

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if self.num_fails < 1:
            raise ValueError("--num-fails must be at least 1.")
        for name in ("num_retries", "retry_secs", "fuzz", "timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"--{name.replace('_', '-')} must not be negative.")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive.")

    def child_env(self) -> Optional[dict[str, str]]:
        """Environment for the wrapped command, or None to inherit ours."""
        if self.path is None:
            return None
        return {**os.environ, "PATH": self.path}
