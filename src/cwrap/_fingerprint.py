"""Stable identifiers for command lines."""

from __future__ import annotations
import hashlib
from cwrap._constants import FINGERPRINT_SEPARATOR
from cwrap._models import CommandSpec
from cwrap._utils import sanitize_path


def generate_fingerprint(
    command: CommandSpec, sep: str = FINGERPRINT_SEPARATOR
) -> str:
    """Return `<sanitized command>.<md5 of the full command line>`.

    The fingerprint names both the state file and the default lock file, so
    it must only depend on the command line.  In shell mode the name part is
    taken from the first whitespace-delimited word of the command string.
    """
    cli = command.command_line
    digest = hashlib.md5(cli.encode("utf-8"), usedforsecurity=False).hexdigest()
    if command.shell:
        name = sanitize_path(cli.split(maxsplit=1)[0], sep)
    else:
        name = sanitize_path(command.program, sep)
    return f"{name}.{digest}"
