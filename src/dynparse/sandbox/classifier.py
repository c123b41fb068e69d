"""
Output-contract classifier for script execution outcomes.

Maps exit status and captured streams to a ``FailureKind``. Classification
is deterministic and checked in priority order.
"""

from __future__ import annotations

import json
from typing import NoReturn

from dynparse.errors import FailureKind


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"Non-standard JSON constant {name!r} is not allowed")


def parse_error(stdout: str) -> str | None:
    """
    Return the JSON decode error for ``stdout``, or ``None`` when it parses.

    ``NaN``, ``Infinity`` and ``-Infinity`` are rejected: they are not JSON.
    """
    try:
        json.loads(stdout.strip(), parse_constant=_reject_constant)
    except ValueError as err:
        return str(err)
    return None


def classify(
    *,
    exit_code: int,
    stdout: str,
    timed_out: bool = False,
) -> FailureKind | None:
    """
    Classify a finished script process.

    Returns:
        None                          - exit 0 with one well-formed JSON value
        FailureKind.timeout           - killed after the wall-clock limit
        FailureKind.execution_failed  - non-zero exit, whatever stdout holds
        FailureKind.empty_output      - exit 0, blank stdout
        FailureKind.invalid_output    - exit 0, stdout does not parse as JSON
    """
    # Priority 1: timeout
    if timed_out:
        return FailureKind.timeout

    # Priority 2: exit status
    if exit_code != 0:
        return FailureKind.execution_failed

    # Priority 3: blank output
    if not stdout.strip():
        return FailureKind.empty_output

    # Priority 4: JSON validity
    if parse_error(stdout) is not None:
        return FailureKind.invalid_output

    return None
