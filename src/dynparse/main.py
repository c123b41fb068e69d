from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from dynparse import __version__
from dynparse.config import ParserSettings
from dynparse.errors import RetriesExhausted
from dynparse.orchestrator.models import AttemptRecord, ParseResult
from dynparse.orchestrator.service import RetryOrchestrator

app = FastAPI(title="dynparse", version=__version__)


class ParseRequest(BaseModel):
    """Request body for the /parse endpoints."""

    document: str
    instructions: str = Field(min_length=1)


class ParseResponse(BaseModel):
    """Decoded JSON produced by the winning script."""

    result: Any


class ParseDetailsResponse(ParseResponse):
    attempts: list[AttemptRecord]


@lru_cache(maxsize=1)
def get_orchestrator() -> RetryOrchestrator:
    """Build the process-wide orchestrator once; the model client is shared across calls."""
    return RetryOrchestrator.from_settings(ParserSettings.from_env())


async def _run(
    orchestrator: RetryOrchestrator,
    req: ParseRequest,
) -> ParseResult:
    try:
        output, attempts = await orchestrator.parse_with_details(req.document, req.instructions)
    except RetriesExhausted as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "attempts": [record.model_dump(mode="json") for record in exc.attempts],
            },
        ) from exc
    return ParseResult(output=output, attempts=attempts)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {
        "status": "ok",
        "service": "dynparse",
        "version": __version__,
    }


@app.post("/parse")
async def parse(
    req: ParseRequest,
    orchestrator: RetryOrchestrator = Depends(get_orchestrator),
) -> ParseResponse:
    """Extract structured JSON from a document using a generated script."""
    result = await _run(orchestrator, req)
    return ParseResponse(result=result.data)


@app.post("/parse/details")
async def parse_with_details(
    req: ParseRequest,
    orchestrator: RetryOrchestrator = Depends(get_orchestrator),
) -> ParseDetailsResponse:
    """Same as /parse, plus the history of every attempt made."""
    result = await _run(orchestrator, req)
    return ParseDetailsResponse(result=result.data, attempts=result.attempts)
