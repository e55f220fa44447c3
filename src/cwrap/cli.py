import argparse
import logging
import os
from pathlib import Path
import re
import sys
import textwrap
from typing import List, Optional
from dotenv import load_dotenv
from cwrap import __version__
from cwrap._constants import (
    DEFAULT_STATE_DIR,
    DEFAULT_SUBJECT,
    DEFAULT_SYSLOG_FACILITY,
    DEFAULT_SYSLOG_SEVERITY,
)
from cwrap._models import (
    CommandSpec,
    RunConfig,
    SMTPOptions,
    SyslogOptions,
    TlsMode,
)
from cwrap._transports import syslog_facility_from_str, syslog_severity_from_str
from cwrap.cwrap_main import execute

# .env files searched by default, lowest precedence first
DEFAULT_CONFIG_PATHS_LIST = (
    "/etc/cwrap/.env",
    "${XDG_CONFIG_HOME:-~/.config}/cwrap/.env",
    ".cwrap/.env",
)
DEFAULT_CONFIG_PATHS = os.pathsep.join(DEFAULT_CONFIG_PATHS_LIST)


# `${VAR}` or `${VAR:-default}`; the default also applies when VAR is empty
_VAR_REF = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<default>[^}]*))?\}")


def config_paths() -> List[Path]:
    """The .env files named by CWRAP_CONFIG_PATHS, lowest precedence first."""
    paths = os.getenv("CWRAP_CONFIG_PATHS", DEFAULT_CONFIG_PATHS)
    paths = _VAR_REF.sub(lambda m: os.getenv(m["name"]) or m["default"] or "", paths)
    return [Path(p.strip()).expanduser() for p in paths.split(os.pathsep) if p.strip()]


def load_cwrap_env_files() -> List[tuple[str, str]]:
    """Fill os.environ from the .env files in `config_paths()`.

    Values already in the environment win over any file, and a later file
    wins over an earlier one.  Logging is not configured yet when this runs,
    so what happened is returned as (level name, message) pairs for
    `_replay_early_logs`.
    """
    messages: List[tuple[str, str]] = []
    # load_dotenv never overrides, so the file that must win goes first
    for path in reversed(config_paths()):
        if not path.is_file():
            messages.append(("DEBUG", f"No .env file at {path}"))
            continue
        try:
            load_dotenv(path, override=False)
        except (OSError, ValueError) as exc:
            # ValueError covers undecodable files and NUL bytes in values
            messages.append(("WARNING", f"Ignoring .env file {path}: {exc}"))
        else:
            messages.append(("INFO", f"Loaded .env file {path}"))
    return messages


def _replay_early_logs(log_buffer: List[tuple[str, str]]) -> None:
    for level_name, message in log_buffer:
        lgr.log(getattr(logging, level_name), message)


lgr = logging.getLogger("cwrap")

_config_paths_list = "\n".join(f"    - {path}" for path in DEFAULT_CONFIG_PATHS_LIST)

ABOUT_CWRAP = f"""
cwrap wraps a command that is run over and over again, typically from cron.

It makes sure only one instance of the command runs at a time (using a lock
file), optionally kills the command after a timeout, and remembers failures
between runs so that a report is only produced every N consecutive failures
(or at a decaying rate with --backoff) instead of on every failed run.  A
successful run resets the failure count.

Reports go to stdout by default and can also be sent to syslog and/or by
email.

limitations:
  The lock is a plain file: if cwrap is killed with SIGKILL the lock file is
  left behind and must be removed by hand (or another --lock-file used).

environment variables:
  Defaults of most options can be set with CWRAP_<OPTION> environment
  variables, e.g. CWRAP_STATE_DIR, CWRAP_NUM_RETRIES, CWRAP_TIMEOUT or
  CWRAP_LOG_LEVEL.  Command line options take precedence.

  CWRAP_CONFIG_PATHS: paths to .env files separated by platform path separator
    (':' on Unix) (see below)

.env files:
  By default, cwrap searches the following locations (later files override
  earlier ones):

{_config_paths_list}

  Precedence (highest to lowest):
    1. Command line arguments
    2. Explicit environment variables
    3. .env file values (later paths override earlier paths)
    4. Hardcoded defaults
"""


class CustomHelpFormatter(argparse.ArgumentDefaultsHelpFormatter):
    """Override allows helptext to respect newlines in ABOUT_CWRAP"""

    def _fill_text(self, text: str, width: int, _indent: str) -> str:
        return "\n".join([textwrap.fill(line, width) for line in text.splitlines()])


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def setup_logging(args: argparse.Namespace) -> None:
    """Configure logging based on parsed arguments."""
    log_level = "DEBUG" if args.debug else args.log_level

    # Special case: NONE means disable all logging
    if log_level == "NONE":
        logging.disable(logging.CRITICAL)
    else:
        logging.basicConfig(
            format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            level=log_level,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cwrap",
        allow_abbrev=False,
        description=ABOUT_CWRAP,
        formatter_class=CustomHelpFormatter,
    )
    parser.add_argument(
        "command",
        metavar="command [command_args ...]",
        help="The command to run.  With -g this is a single string run by bash.",
    )
    parser.add_argument(
        "command_args", nargs=argparse.REMAINDER, help="Arguments for the command."
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-l",
        "--log-level",
        default=os.getenv("CWRAP_LOG_LEVEL", "WARNING").upper(),
        choices=("NONE", "CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"),
        type=str.upper,
        help="Level of log output to stderr, use NONE to entirely disable.",
    )
    parser.add_argument(
        "-D", "--debug", action="store_true", help="Turn on debug output."
    )
    parser.add_argument(
        "-d",
        "--state-dir",
        default=os.getenv("CWRAP_STATE_DIR", DEFAULT_STATE_DIR),
        help="The directory to write the state file to.",
    )
    parser.add_argument(
        "-F",
        "--lock-file",
        default=os.getenv("CWRAP_LOCK_FILE"),
        help="Set a specific lock file to use.  The default is to generate one, "
        "but this can be useful if you have different jobs that can't run "
        "concurrently.",
    )
    parser.add_argument(
        "-p",
        "--path",
        default=os.getenv("CWRAP_PATH"),
        help="Use this for the PATH variable instead of the default.",
    )
    parser.add_argument(
        "-g",
        "--bash-string",
        action="store_true",
        help="Run the command in a subshell as a single string.  This is useful "
        "for commands that include a '|' or similar character.  "
        "Ex: `cat /tmp/file | grep stuff`",
    )
    parser.add_argument(
        "-z",
        "--fuzz",
        type=int,
        default=int(os.getenv("CWRAP_FUZZ", "0")),
        help="Add a random sleep between 0 and N seconds before executing the "
        "command.  Note that --timeout only pertains to command execution time.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_env_flag("CWRAP_QUIET"),
        help="Only output error reports.  If the command runs successfully, "
        "nothing will be printed, even if the command had stdout or stderr output.",
    )

    fail = parser.add_argument_group("fail options")
    fail.add_argument(
        "-r",
        "--num-retries",
        type=int,
        default=int(os.getenv("CWRAP_NUM_RETRIES", "0")),
        help="The number of times to retry this if a previous instance is running. "
        "This will try every --retry-secs seconds if this is greater than zero.",
    )
    fail.add_argument(
        "-s",
        "--retry-secs",
        type=int,
        default=int(os.getenv("CWRAP_RETRY_SECS", "10")),
        help="The number of seconds between retries if locked.",
    )
    fail.add_argument(
        "-i",
        "--ignore-retry-fails",
        action="store_true",
        default=_env_flag("CWRAP_IGNORE_RETRY_FAILS"),
        help="Ignore the failures which occur because this tried to run while a "
        "previous instance was still running.",
    )
    fail.add_argument(
        "-n",
        "--num-fails",
        type=int,
        default=int(os.getenv("CWRAP_NUM_FAILS", "1")),
        help="The number of consecutive failures that must occur before a report "
        "is printed.",
    )
    fail.add_argument(
        "-f",
        "--first-fail",
        action="store_true",
        default=_env_flag("CWRAP_FIRST_FAIL"),
        help="The default is to print a failure report only when a multiple of the "
        "threshold.  If this is set, a report will *also* be generated on the "
        "1st failure.",
    )
    fail.add_argument(
        "-b",
        "--backoff",
        action="store_true",
        default=_env_flag("CWRAP_BACKOFF"),
        help="Instead of generating a report every --num-fails failures, generate "
        "one at a decaying rate.  With --num-fails 3, a report is produced at "
        "3, 6, 12, 24... failures.",
    )
    fail.add_argument(
        "-t",
        "--timeout",
        type=int,
        default=int(os.getenv("CWRAP_TIMEOUT", "0")),
        help="The number of seconds to allow the command to run before timing it "
        "out.  If set to zero, timeouts are disabled.",
    )

    syslog = parser.add_argument_group("syslog")
    syslog.add_argument(
        "-S",
        "--syslog",
        action="store_true",
        default=_env_flag("CWRAP_SYSLOG"),
        help="Log *all* failures to syslog.  This is useful for diagnosing "
        "intermittent failures that don't trip the number of failures for a report.",
    )
    syslog.add_argument(
        "-C",
        "--syslog-fac",
        type=syslog_facility_from_str,
        default=os.getenv("CWRAP_SYSLOG_FAC", DEFAULT_SYSLOG_FACILITY),
        help="The syslog facility, e.g. log_local7 or daemon.",
    )
    syslog.add_argument(
        "-P",
        "--syslog-pri",
        type=syslog_severity_from_str,
        default=os.getenv("CWRAP_SYSLOG_PRI", DEFAULT_SYSLOG_SEVERITY),
        help="The syslog priority, e.g. log_info or err.",
    )

    email = parser.add_argument_group("email")
    email.add_argument(
        "-M",
        "--send-mail",
        action="store_true",
        default=_env_flag("CWRAP_SEND_MAIL"),
        help="Send failure reports by email.  This is *required* for any of the "
        "other email options to have an effect.  Nothing is printed to stdout "
        "unless --also-normal-output is given.",
    )
    email.add_argument(
        "-N",
        "--also-normal-output",
        action="store_true",
        default=_env_flag("CWRAP_ALSO_NORMAL_OUTPUT"),
        help="With --send-mail, output to stdout *and* send an email.",
    )
    email.add_argument(
        "-E",
        "--email-from",
        default=os.getenv("CWRAP_EMAIL_FROM"),
        help="The sending address.  Defaults to <user>@<hostname>.",
    )
    email.add_argument(
        "-R",
        "--recipient",
        action="append",
        help="A recipient of the email.  Can be given multiple times.",
    )
    email.add_argument(
        "-J",
        "--subject",
        default=os.getenv("CWRAP_SUBJECT", DEFAULT_SUBJECT),
        help="The subject to use for the email.",
    )
    email.add_argument(
        "-X",
        "--smtp-server",
        default=os.getenv("CWRAP_SMTP_SERVER", "localhost"),
        help="The SMTP server address (hostname or IP) to connect to.",
    )
    email.add_argument(
        "-T",
        "--smtp-port",
        type=int,
        default=int(os.getenv("CWRAP_SMTP_PORT", "25")),
        help="The SMTP port to connect to.",
    )
    tls = email.add_mutually_exclusive_group()
    tls.add_argument(
        "-L",
        "--tls",
        action="store_true",
        help="Encrypt the connection using SSL/TLS directly (not STARTTLS).",
    )
    tls.add_argument(
        "-Z",
        "--starttls",
        action="store_true",
        help="Encrypt the connection to the server using STARTTLS.",
    )
    email.add_argument(
        "-U",
        "--username",
        default=os.getenv("CWRAP_USERNAME"),
        help="The username to use for SMTP authentication.",
    )
    email.add_argument(
        "-W",
        "--password",
        default=os.getenv("CWRAP_PASSWORD"),
        help="The password to use for SMTP authentication.",
    )
    email.add_argument(
        "-Y",
        "--creds-file",
        default=os.getenv("CWRAP_CREDS_FILE"),
        help="(Recommended) Path to a file holding USERNAME:PASSWORD, instead of "
        "passing --username and --password.",
    )
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Turn parsed arguments into a RunConfig.  Raises ValueError or OSError."""
    command = CommandSpec.from_argv(
        [args.command, *args.command_args], shell=args.bash_string
    )
    syslog = None
    if args.syslog:
        syslog = SyslogOptions(facility=args.syslog_fac, severity=args.syslog_pri)
    smtp = None
    if args.send_mail:
        username, password = args.username, args.password
        if args.creds_file:
            username, password = SMTPOptions.parse_creds(args.creds_file)
        if args.tls:
            tls_mode = TlsMode.TLS
        elif args.starttls:
            tls_mode = TlsMode.STARTTLS
        else:
            tls_mode = TlsMode.NONE
        smtp = SMTPOptions(
            recipients=args.recipient or [],
            subject=args.subject,
            smtp_server=args.smtp_server,
            smtp_port=args.smtp_port,
            tls_mode=tls_mode,
            username=username,
            password=password,
            email_from=args.email_from,
            also_normal_output=args.also_normal_output,
        )
    return RunConfig(
        command=command,
        state_dir=args.state_dir,
        lock_file=args.lock_file,
        num_retries=args.num_retries,
        retry_secs=args.retry_secs,
        ignore_retry_fails=args.ignore_retry_fails,
        fuzz=args.fuzz,
        timeout=args.timeout,
        quiet=args.quiet,
        num_fails=args.num_fails,
        first_fail=args.first_fail,
        backoff=args.backoff,
        syslog=syslog,
        smtp=smtp,
        path=args.path,
    )


def main(argv: Optional[List[str]] = None) -> None:
    # Load .env files before parser creation so defaults pick up env vars
    env_log_buffer = load_cwrap_env_files()

    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args)
    _replay_early_logs(env_log_buffer)
    try:
        config = build_config(args)
    except (ValueError, OSError) as exc:
        parser.error(str(exc))
    sys.exit(execute(config))
