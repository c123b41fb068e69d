"""
Structured error taxonomy for the dynamic parser.

Every recoverable failure carries a ``FailureKind`` tag plus the payload
fields that explain it. Text is rendered only when the error is reported
(``str(err)``), so callers can still branch on the kind programmatically.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dynparse.orchestrator.models import AttemptRecord


class FailureKind(str, Enum):
    """Canonical classification of a failed attempt."""

    generation = "generation"              # model backend failed or returned nothing usable
    execution_failed = "execution_failed"  # non-zero / abnormal exit
    empty_output = "empty_output"          # exit 0 but blank stdout
    invalid_output = "invalid_output"      # exit 0 but stdout is not JSON
    timeout = "timeout"                    # killed after the wall-clock limit


class DynParseError(Exception):
    """Base class for every error raised by dynparse."""


class GenerationError(DynParseError):
    """The model could not produce a candidate script."""

    kind = FailureKind.generation

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to generate script: {reason}")


class ExecutionError(DynParseError):
    """A generated script ran but broke the output contract."""

    kind: FailureKind


class ExecutionFailed(ExecutionError):
    kind = FailureKind.execution_failed

    def __init__(self, exit_code: int, stderr: str) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Script execution failed with exit code: {exit_code}\nSTDERR: {stderr}"
        )


class EmptyOutput(ExecutionError):
    kind = FailureKind.empty_output

    def __init__(self, stderr: str = "") -> None:
        self.stderr = stderr
        message = "Script executed successfully but produced no output"
        if stderr.strip():
            message += f"\nSTDERR: {stderr}"
        super().__init__(message)


class InvalidOutput(ExecutionError):
    kind = FailureKind.invalid_output

    def __init__(self, parse_error: str, output: str) -> None:
        self.parse_error = parse_error
        self.output = output
        super().__init__(f"Script output is not valid JSON: {parse_error}\nOutput was: {output}")


class ExecutionTimedOut(ExecutionError):
    kind = FailureKind.timeout

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Script did not finish within {timeout_s:g}s and was killed")


class SandboxError(DynParseError):
    """
    The execution environment itself misbehaved (spawn failure, undecodable
    output). Not the script's fault, so it is never retried.
    """


class RetriesExhausted(DynParseError):
    """Terminal failure: every attempt in the budget failed."""

    def __init__(
        self,
        last_error: DynParseError,
        attempts: Sequence[AttemptRecord],
        history: str,
    ) -> None:
        self.last_error = last_error
        self.attempts = list(attempts)
        self.history = history
        super().__init__(
            f"All {len(self.attempts)} parsing attempts failed. "
            f"Final error: {last_error}\n\nAll attempts:\n{history}"
        )
