"""Candidate script extraction from raw model replies."""

from __future__ import annotations

import logging
import re

from dynparse.errors import GenerationError

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?P<lang>[A-Za-z0-9_+-]*)[ \t]*\n(?P<code>.*?)```", re.DOTALL)


def extract_script(response_text: str) -> str:
    """
    Return the script body from a model reply.

    Models are told to answer with raw code, but small ones still wrap it in
    markdown fences. The first fenced block wins; otherwise the whole reply
    is taken as the script.
    """
    if not response_text or not response_text.strip():
        raise GenerationError("Raw model response was empty.")

    match = _FENCE_PATTERN.search(response_text)
    if match is None:
        return response_text.strip()

    logger.debug(
        "Markdown fence found in model reply (lang=%r), using fenced block.",
        match.group("lang") or None,
    )
    code = match.group("code").strip()
    if not code:
        raise GenerationError("Fenced code block in model response was empty.")
    return code
