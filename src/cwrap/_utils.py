"""Utility functions for cwrap."""

from __future__ import annotations
from datetime import datetime, timezone
from email.utils import format_datetime
import getpass
import math
import socket
from typing import Optional


def parse_version(version_str: str) -> tuple[int, int, int]:
    x_y_z = version_str.split(".")
    if len(x_y_z) != 3:
        raise ValueError(
            f"Invalid version format: {version_str}. Expected 'x.y.z' format."
        )

    x, y, z = map(int, x_y_z)  # Unpacking forces exactly 3 elements
    return (x, y, z)


def sanitize_path(path: str, sep: str = "-") -> str:
    """Turn a path like "/path/to/thing" into "path-to-thing".

    Separators are only trimmed when the result starts with one, in which
    case both ends are trimmed.  A leading "." becomes "_" so the result is
    never a hidden file name.

    Examples:
        ```pycon
        >>> sanitize_path("/usr/bin/dir/")
        'usr-bin-dir'
        >>> sanitize_path("../../monkey.py")
        '_.-..-monkey.py'
        ```
    """
    ret = path.replace("/", sep)
    if ret.startswith(sep):
        ret = ret.strip(sep)
    if ret.startswith("."):
        ret = "_" + ret[1:]
    return ret


def format_ts(ts: float) -> str:
    """Format an epoch timestamp as an RFC 2822 date in UTC."""
    # round half away from zero
    secs = int(math.copysign(math.floor(abs(ts) + 0.5), ts))
    return format_datetime(datetime.fromtimestamp(secs, tz=timezone.utc))


def get_hostname() -> Optional[str]:
    try:
        return socket.gethostname()
    except OSError:
        return None


def get_username() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None
