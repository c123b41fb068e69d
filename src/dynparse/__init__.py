"""Dynamic document parsing with model-generated extraction scripts."""

from dynparse.config import ParserSettings, load_dotenv
from dynparse.errors import (
    DynParseError,
    EmptyOutput,
    ExecutionError,
    ExecutionFailed,
    ExecutionTimedOut,
    FailureKind,
    GenerationError,
    InvalidOutput,
    RetriesExhausted,
    SandboxError,
)
from dynparse.orchestrator.models import AttemptRecord, ParseResult
from dynparse.orchestrator.service import MAX_ATTEMPTS, RetryOrchestrator

__version__ = "0.1.0"

__all__ = [
    "MAX_ATTEMPTS",
    "AttemptRecord",
    "DynParseError",
    "EmptyOutput",
    "ExecutionError",
    "ExecutionFailed",
    "ExecutionTimedOut",
    "FailureKind",
    "GenerationError",
    "InvalidOutput",
    "ParseResult",
    "ParserSettings",
    "RetriesExhausted",
    "RetryOrchestrator",
    "SandboxError",
    "load_dotenv",
]
