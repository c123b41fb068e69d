"""Pydantic models for the retry orchestrator."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dynparse.errors import FailureKind


class LoopState(str, Enum):
    """States of the generate -> execute -> retry loop."""

    composing = "composing"
    generating = "generating"
    executing = "executing"
    retrying = "retrying"
    succeeded = "succeeded"
    exhausted = "exhausted"


class AttemptRecord(BaseModel):
    """An immutable snapshot of a single generation and execution attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1)
    script: str = Field(default="", description="Empty when generation failed")
    error: str | None = None
    success: bool
    failure_kind: FailureKind | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_outcome(self) -> AttemptRecord:
        if self.success and (self.error is not None or self.failure_kind is not None):
            raise ValueError("A successful attempt cannot carry an error.")
        if not self.success and self.error is None:
            raise ValueError("A failed attempt must carry an error.")
        return self


class ParseResult(BaseModel):
    """Validated JSON output together with the attempt history that produced it."""

    output: str
    attempts: list[AttemptRecord] = Field(default_factory=list)

    @property
    def data(self) -> Any:
        return json.loads(self.output)
