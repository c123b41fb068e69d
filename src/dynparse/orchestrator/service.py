"""RetryOrchestrator - the generate / execute / retry loop."""

from __future__ import annotations

import logging
import time

from dynparse.config import ParserSettings
from dynparse.errors import DynParseError, ExecutionError, GenerationError, RetriesExhausted
from dynparse.generator.gateway import LiteLLMClient
from dynparse.generator.models import Conversation
from dynparse.generator.service import ScriptGenerator
from dynparse.sandbox.executor import ScriptExecutor, SubprocessSandbox

from .models import AttemptRecord, LoopState
from .prompts import build_user_prompt, format_attempt_history, system_prompt

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

_TERMINAL_STATES = frozenset({LoopState.succeeded, LoopState.exhausted})


class RetryOrchestrator:
    """
    Turns a document plus extraction instructions into validated JSON.

    Each call runs an explicit state machine:

    - ``composing``: build the user prompt from the document, instructions
      and every earlier attempt.
    - ``generating``: ask the model for a script. A ``GenerationError`` is
      recorded (with an empty script) and moves to ``retrying``.
    - ``executing``: run the script. Valid JSON moves to ``succeeded``; any
      ``ExecutionError`` is recorded and moves to ``retrying``.
    - ``retrying``: back to ``composing`` while attempts remain, otherwise
      ``exhausted``, which raises ``RetriesExhausted``.

    A fresh ``Conversation`` is opened per call and shared by all of its
    attempts, so the model sees its own earlier replies. ``SandboxError`` is
    not caught and ends the call without consuming a retry.
    """

    def __init__(
        self,
        generator: ScriptGenerator,
        executor: ScriptExecutor | None = None,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._generator = generator
        self._executor = executor or ScriptExecutor()
        self.max_attempts = max_attempts

    @classmethod
    def from_settings(cls, settings: ParserSettings) -> RetryOrchestrator:
        """Wire the LiteLLM backend and subprocess sandbox from configuration."""
        model = LiteLLMClient(
            model_name=settings.model_name,
            provider=settings.llm_provider,
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            request_timeout_s=settings.llm_timeout_s,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
        )
        return cls(
            generator=ScriptGenerator(model, timeout_s=settings.llm_timeout_s),
            executor=ScriptExecutor(
                sandbox=SubprocessSandbox(interpreter=settings.interpreter),
                timeout_s=settings.execution_timeout_s,
            ),
            max_attempts=settings.max_attempts,
        )

    async def parse(self, document: str, instructions: str) -> str:
        """Return validated JSON text extracted from ``document``."""
        output, _ = await self.parse_with_details(document, instructions)
        return output

    async def parse_with_details(
        self,
        document: str,
        instructions: str,
    ) -> tuple[str, list[AttemptRecord]]:
        """Return validated JSON text plus the full attempt history."""
        overall_start = time.monotonic()
        logger.info(
            "Starting dynamic parse: document_chars=%d instructions=%r",
            len(document),
            instructions,
        )

        conversation = Conversation.seeded(system_prompt())
        attempts: list[AttemptRecord] = []
        attempt_number = 1
        state = LoopState.composing
        user_prompt = ""
        script = ""
        output = ""
        last_error: DynParseError | None = None

        while state not in _TERMINAL_STATES:
            if state is LoopState.composing:
                logger.info("Parsing attempt %d/%d", attempt_number, self.max_attempts)
                user_prompt = build_user_prompt(document, instructions, attempts, attempt_number)
                logger.debug("User prompt length: %d characters", len(user_prompt))
                state = LoopState.generating

            elif state is LoopState.generating:
                try:
                    script = await self._generator.generate(conversation, user_prompt)
                except GenerationError as err:
                    logger.warning("Attempt %d: script generation failed: %s", attempt_number, err)
                    last_error = err
                    attempts.append(
                        AttemptRecord(
                            attempt_number=attempt_number,
                            script="",
                            error=str(err),
                            success=False,
                            failure_kind=err.kind,
                        )
                    )
                    state = LoopState.retrying
                else:
                    logger.debug(
                        "Attempt %d: received script (%d characters, %d exchanges so far)",
                        attempt_number,
                        len(script),
                        conversation.exchange_count,
                    )
                    state = LoopState.executing

            elif state is LoopState.executing:
                try:
                    output = await self._executor.run(script, document)
                except ExecutionError as err:
                    logger.warning("Attempt %d: script rejected: %s", attempt_number, err)
                    last_error = err
                    attempts.append(
                        AttemptRecord(
                            attempt_number=attempt_number,
                            script=script,
                            error=str(err),
                            success=False,
                            failure_kind=err.kind,
                        )
                    )
                    state = LoopState.retrying
                else:
                    attempts.append(
                        AttemptRecord(attempt_number=attempt_number, script=script, success=True)
                    )
                    state = LoopState.succeeded

            elif state is LoopState.retrying:
                if attempt_number < self.max_attempts:
                    attempt_number += 1
                    state = LoopState.composing
                else:
                    state = LoopState.exhausted

        elapsed_s = time.monotonic() - overall_start
        if state is LoopState.exhausted and last_error is not None:
            logger.error(
                "All %d parsing attempts failed after %.2fs", len(attempts), elapsed_s
            )
            raise RetriesExhausted(
                last_error=last_error,
                attempts=attempts,
                history=format_attempt_history(attempts),
            )

        logger.info(
            "Parsed document on attempt %d in %.2fs (result_chars=%d)",
            attempt_number,
            elapsed_s,
            len(output),
        )
        return output, attempts
