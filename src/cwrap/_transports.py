"""Syslog and email delivery of reports."""

from __future__ import annotations
from email.message import EmailMessage
import json
import logging
from logging.handlers import SysLogHandler
import os
import smtplib
import ssl
import sys
from typing import Optional, TextIO
from cwrap._constants import SYSLOG_FAILURE_FORMAT
from cwrap._models import RunConfig, RunResult, SMTPOptions, SyslogOptions, TlsMode

lgr = logging.getLogger("cwrap")

SMTP_TIMEOUT = 30.0


def _strip_log_prefix(name: str) -> str:
    name = name.lower()
    return name[4:] if name.startswith("log_") else name


def syslog_facility_from_str(facility: str) -> str:
    """Normalize a facility name such as "log_local7" to "local7"."""
    name = _strip_log_prefix(facility)
    if name not in SysLogHandler.facility_names:
        raise ValueError(f"Invalid syslog facility: {facility}")
    return name


def syslog_severity_from_str(severity: str) -> str:
    """Normalize a severity name such as "log_info" to "info"."""
    name = _strip_log_prefix(severity)
    if name not in SysLogHandler.priority_names:
        raise ValueError(f"Invalid syslog priority: {severity}")
    return name


class _FixedSeverityHandler(SysLogHandler):
    """Sends every record with one configured severity."""

    def __init__(self, severity: str, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.severity = severity

    def mapPriority(self, levelName: str) -> str:  # noqa: N802
        return self.severity

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        exc = sys.exc_info()[1]
        lgr.warning("Failed to write to syslog: %s", exc)


class SyslogNotifier:
    def __init__(self, options: SyslogOptions) -> None:
        facility = syslog_facility_from_str(options.facility)
        severity = syslog_severity_from_str(options.severity)
        address = "/dev/log" if os.path.exists("/dev/log") else ("localhost", 514)
        self.handler = _FixedSeverityHandler(
            severity,
            address=address,
            facility=SysLogHandler.facility_names[facility],
        )
        self.handler.ident = f"cwrap[{os.getpid()}]: "

    def log(self, msg: str) -> None:
        record = logging.LogRecord(
            "cwrap", logging.INFO, __file__, 0, msg, None, None
        )
        self.handler.handle(record)

    def close(self) -> None:
        self.handler.close()


def build_message(body: str, opts: SMTPOptions) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = opts.from_addr
    msg["Reply-To"] = opts.from_addr
    msg["To"] = opts.recipients[0]
    if len(opts.recipients) > 1:
        msg["Cc"] = ", ".join(opts.recipients[1:])
    msg["Subject"] = opts.subject
    msg.set_content(body)
    return msg


def send_email(body: str, opts: SMTPOptions) -> None:
    """Send `body` as a plain text email to all recipients in `opts`."""
    msg = build_message(body, opts)
    smtp: smtplib.SMTP
    if opts.tls_mode is TlsMode.TLS:
        smtp = smtplib.SMTP_SSL(
            opts.smtp_server,
            opts.smtp_port,
            timeout=SMTP_TIMEOUT,
            context=ssl.create_default_context(),
        )
    else:
        smtp = smtplib.SMTP(opts.smtp_server, opts.smtp_port, timeout=SMTP_TIMEOUT)
    with smtp:
        if opts.tls_mode is TlsMode.STARTTLS:
            smtp.starttls(context=ssl.create_default_context())
        if opts.username is not None:
            smtp.login(opts.username, opts.password or "")
        smtp.send_message(msg)
    lgr.debug("Sent report email to %s", ", ".join(opts.recipients))


class Notifier:
    """Where reports end up: stdout, syslog and/or email.

    Delivery problems are logged and never propagated.
    """

    def __init__(
        self,
        syslog: Optional[SyslogNotifier] = None,
        smtp: Optional[SMTPOptions] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        self.syslog = syslog
        self.smtp = smtp
        self._stream = stream

    @classmethod
    def from_config(cls, config: RunConfig) -> Notifier:
        syslog = None
        if config.syslog is not None:
            try:
                syslog = SyslogNotifier(config.syslog)
            except OSError as exc:
                lgr.warning("Could not connect to syslog, not logging there: %s", exc)
        return cls(syslog=syslog, smtp=config.smtp)

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def _print(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def log_failure(self, command_line: str, run: RunResult) -> None:
        """Write a single failed run to syslog, if enabled."""
        if self.syslog is None:
            return
        self.syslog.log(
            SYSLOG_FAILURE_FORMAT.format(
                command=command_line, run=json.dumps(run.for_json())
            )
        )

    def failure_report(self, text: str) -> None:
        if self.smtp is not None:
            try:
                send_email(text, self.smtp)
            except (OSError, smtplib.SMTPException) as exc:
                lgr.warning("Failed to send the report email: %s", exc)
                self._print(
                    "*** Failed to send the email using internal transport ***\n"
                    f"Error: {exc}\n"
                )
                if not self.smtp.also_normal_output:
                    self._print(text)
        if self.smtp is None or self.smtp.also_normal_output:
            self._print(text)

    def success_report(self, text: str) -> None:
        self._print(text)

    def close(self) -> None:
        if self.syslog is not None:
            self.syslog.close()
