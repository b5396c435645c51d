"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    ``VALIDATION`` matches the code Click uses for usage errors so that
    malformed arguments rejected by the parser and by the constraint checker
    share one code.
    """

    OK = 0
    VALIDATION = 2
    NOT_FOUND = 3
    COLLABORATOR = 4
