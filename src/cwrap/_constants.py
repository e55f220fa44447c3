"""Constants used throughout cwrap."""

import os
import tempfile

__schema_version__ = "1.0.0"

DEFAULT_STATE_DIR = "/var/tmp"
# Lock files live on a fast ephemeral filesystem when one is available
DEFAULT_LOCK_DIR = "/dev/shm" if os.path.isdir("/dev/shm") else tempfile.gettempdir()
LOCK_SUFFIX = ".lock"
FINGERPRINT_SEPARATOR = "-"

SHELL = "bash"
POLL_INTERVAL = 0.1

RUN_DIVIDER = "=====\n"
OUTPUT_DIVIDER = "-----\n"
SUCCESS_BANNER = "The command has run successfully!\n\n"
FAILURE_BANNER = (
    "The specified number of failures, {threshold}, has been reached "
    "for the following command, which has failed {num_fails} times in a "
    "row: {command}\n\nFAILURES:\n"
)
SYSLOG_FAILURE_FORMAT = "CWRAP FAILURE for `{command}`: {run}"

DEFAULT_SUBJECT = "cwrap failure report"
DEFAULT_SYSLOG_FACILITY = "log_local7"
DEFAULT_SYSLOG_SEVERITY = "log_info"
