"""Integration tests for RetryOrchestrator with multi-attempt sequences."""

from __future__ import annotations

import json
import logging
import os
import sys
from unittest.mock import AsyncMock

import pytest

from dynparse.config import ParserSettings
from dynparse.errors import (
    EmptyOutput,
    ExecutionFailed,
    FailureKind,
    GenerationError,
    InvalidOutput,
    RetriesExhausted,
    SandboxError,
)
from dynparse.generator.service import ScriptGenerator
from dynparse.orchestrator.models import AttemptRecord
from dynparse.orchestrator.service import MAX_ATTEMPTS, RetryOrchestrator
from dynparse.sandbox.executor import ScriptExecutor, SubprocessSandbox

DOCUMENT = '<div class="product"><h1>Super Toaster 5000</h1><p>Price: $49.99</p></div>'
INSTRUCTIONS = "Extract the product name and its price as a float"

GOOD_SCRIPT = r"""
import sys, json, re
doc = sys.stdin.read()
try:
    name = re.search(r"<h1>(.*?)</h1>", doc).group(1)
    price = float(re.search(r"\$([0-9.]+)", doc).group(1))
    print(json.dumps({"name": name, "price": price}))
except Exception:
    print("{}")
""".strip()


class RecordingModel:
    """Chat model stub that replays scripted replies and keeps every transcript it saw."""

    def __init__(self, replies: list[str | Exception]) -> None:
        self._replies = list(replies)
        self.transcripts: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.transcripts.append([dict(m) for m in messages])
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def user_prompt(self, call_index: int) -> str:
        return self.transcripts[call_index][-1]["content"]


def _orchestrator(
    model: RecordingModel,
    executor: ScriptExecutor | AsyncMock | None = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> RetryOrchestrator:
    if executor is None:
        executor = ScriptExecutor(sandbox=SubprocessSandbox(interpreter=sys.executable), timeout_s=30)
    return RetryOrchestrator(
        generator=ScriptGenerator(model),
        executor=executor,  # type: ignore[arg-type]
        max_attempts=max_attempts,
    )


def _assert_log_invariants(attempts: list[AttemptRecord]) -> None:
    assert [a.attempt_number for a in attempts] == list(range(1, len(attempts) + 1))
    successes = [a for a in attempts if a.success]
    assert len(successes) <= 1
    if successes:
        assert attempts[-1].success


class TestRetryOrchestrator:
    """Sequence tests for the generate / execute / retry loop."""

    @pytest.mark.asyncio
    async def test_product_scenario_passes_first_attempt(self) -> None:
        model = RecordingModel([GOOD_SCRIPT])
        output, attempts = await _orchestrator(model).parse_with_details(DOCUMENT, INSTRUCTIONS)

        data = json.loads(output)
        assert data["name"] == "Super Toaster 5000"
        assert data["price"] == 49.99
        assert len(attempts) == 1
        assert attempts[0].success
        assert attempts[0].script == GOOD_SCRIPT
        _assert_log_invariants(attempts)

    @pytest.mark.asyncio
    async def test_parse_returns_only_json_text(self) -> None:
        model = RecordingModel([GOOD_SCRIPT])
        output = await _orchestrator(model).parse(DOCUMENT, INSTRUCTIONS)
        assert json.loads(output) == {"name": "Super Toaster 5000", "price": 49.99}

    @pytest.mark.asyncio
    async def test_fix_on_second_attempt_feeds_back_failure(self) -> None:
        broken = "import sys\nsys.stderr.write('KeyError: price')\nsys.exit(2)"
        model = RecordingModel([broken, GOOD_SCRIPT])

        output, attempts = await _orchestrator(model).parse_with_details(DOCUMENT, INSTRUCTIONS)

        assert json.loads(output)["price"] == 49.99
        assert [a.success for a in attempts] == [False, True]
        first = attempts[0]
        assert first.failure_kind == FailureKind.execution_failed
        assert first.script == broken
        assert first.error is not None
        assert "exit code: 2" in first.error
        assert "KeyError: price" in first.error

        retry_prompt = model.user_prompt(1)
        assert broken in retry_prompt
        assert first.error in retry_prompt
        _assert_log_invariants(attempts)

    @pytest.mark.asyncio
    async def test_one_conversation_spans_all_attempts(self) -> None:
        model = RecordingModel(["print('   ')", GOOD_SCRIPT])

        await _orchestrator(model).parse(DOCUMENT, INSTRUCTIONS)

        second = model.transcripts[1]
        assert [m["role"] for m in second] == ["system", "user", "assistant", "user"]
        assert second[2]["content"] == "print('   ')"

    @pytest.mark.asyncio
    async def test_each_call_starts_a_fresh_conversation(self) -> None:
        model = RecordingModel([GOOD_SCRIPT, GOOD_SCRIPT])
        orchestrator = _orchestrator(model)

        await orchestrator.parse(DOCUMENT, INSTRUCTIONS)
        await orchestrator.parse(DOCUMENT, INSTRUCTIONS)

        assert [m["role"] for m in model.transcripts[1]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_three_generation_failures_exhaust_retries(self) -> None:
        model = RecordingModel([GenerationError(f"backend down {i}") for i in range(3)])
        executor = AsyncMock()

        with pytest.raises(RetriesExhausted) as exc_info:
            await _orchestrator(model, executor=executor).parse_with_details(DOCUMENT, INSTRUCTIONS)

        err = exc_info.value
        assert len(err.attempts) == 3
        assert all(not a.success for a in err.attempts)
        assert all(a.script == "" for a in err.attempts)
        assert all(a.failure_kind == FailureKind.generation for a in err.attempts)
        assert isinstance(err.last_error, GenerationError)
        assert "backend down 2" in str(err)
        assert "--- Attempt 3 ---" in str(err)
        executor.run.assert_not_awaited()
        _assert_log_invariants(err.attempts)

    @pytest.mark.asyncio
    async def test_mixed_failures_exhaust_with_full_transcript(self) -> None:
        model = RecordingModel(["script-a", "script-b", "script-c"])
        executor = AsyncMock()
        executor.run.side_effect = [
            ExecutionFailed(exit_code=1, stderr="Traceback: boom"),
            EmptyOutput(),
            InvalidOutput(parse_error="Expecting property name", output="{not valid json"),
        ]

        with pytest.raises(RetriesExhausted) as exc_info:
            await _orchestrator(model, executor=executor).parse(DOCUMENT, INSTRUCTIONS)

        err = exc_info.value
        assert [a.failure_kind for a in err.attempts] == [
            FailureKind.execution_failed,
            FailureKind.empty_output,
            FailureKind.invalid_output,
        ]
        assert isinstance(err.last_error, InvalidOutput)
        message = str(err)
        assert message.startswith("All 3 parsing attempts failed.")
        for script in ("script-a", "script-b", "script-c"):
            assert script in message
        _assert_log_invariants(err.attempts)

    @pytest.mark.asyncio
    async def test_generation_failure_then_success(self) -> None:
        model = RecordingModel([GenerationError("rate limited"), GOOD_SCRIPT])

        output, attempts = await _orchestrator(model).parse_with_details(DOCUMENT, INSTRUCTIONS)

        assert json.loads(output)["name"] == "Super Toaster 5000"
        assert attempts[0].script == ""
        assert attempts[0].failure_kind == FailureKind.generation
        assert "Attempt 1: FAILED - Failed to generate script: rate limited" in model.user_prompt(1)
        _assert_log_invariants(attempts)

    @pytest.mark.asyncio
    async def test_invalid_json_is_never_returned(self) -> None:
        model = RecordingModel(["print('{not valid json')"])

        with pytest.raises(RetriesExhausted) as exc_info:
            await _orchestrator(model, max_attempts=1).parse(DOCUMENT, INSTRUCTIONS)

        assert exc_info.value.attempts[0].failure_kind == FailureKind.invalid_output

    @pytest.mark.asyncio
    async def test_custom_attempt_budget(self) -> None:
        model = RecordingModel(["print('')"] * 5)

        with pytest.raises(RetriesExhausted) as exc_info:
            await _orchestrator(model, max_attempts=5).parse(DOCUMENT, INSTRUCTIONS)

        assert [a.attempt_number for a in exc_info.value.attempts] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_sandbox_error_propagates_without_retry(self) -> None:
        model = RecordingModel([GOOD_SCRIPT, GOOD_SCRIPT])
        executor = AsyncMock()
        executor.run.side_effect = SandboxError("Script stdout is not valid UTF-8")

        with pytest.raises(SandboxError):
            await _orchestrator(model, executor=executor).parse(DOCUMENT, INSTRUCTIONS)

        assert executor.run.await_count == 1
        assert len(model.transcripts) == 1

    @pytest.mark.asyncio
    async def test_debug_log_tracks_conversation_growth(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        model = RecordingModel(["print('')", GOOD_SCRIPT])

        with caplog.at_level(logging.DEBUG, logger="dynparse.orchestrator.service"):
            await _orchestrator(model).parse(DOCUMENT, INSTRUCTIONS)

        messages = [r.getMessage() for r in caplog.records]
        assert any("Attempt 1: received script" in m and "1 exchanges" in m for m in messages)
        assert any("Attempt 2: received script" in m and "2 exchanges" in m for m in messages)

    def test_rejects_empty_budget(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            _orchestrator(RecordingModel([]), max_attempts=0)

    def test_from_settings_wires_components(self) -> None:
        settings = ParserSettings(
            model_name="ollama/tinyllama",
            llm_provider="ollama",
            max_attempts=4,
            interpreter=sys.executable,
            execution_timeout_s=5.0,
        )
        orchestrator = RetryOrchestrator.from_settings(settings)
        assert orchestrator.max_attempts == 4


@pytest.mark.integration
@pytest.mark.skipif(
    not os.getenv("DYNPARSE_MODEL_NAME"),
    reason="set DYNPARSE_MODEL_NAME to run against a live model",
)
@pytest.mark.asyncio
async def test_live_model_extracts_product() -> None:
    orchestrator = RetryOrchestrator.from_settings(ParserSettings.from_env())
    html_document = f"<body>\n    {DOCUMENT}\n</body>"

    output, attempts = await orchestrator.parse_with_details(
        html_document, "Extract the product name and its price as a float."
    )

    data = json.loads(output)
    assert data
    assert "Super Toaster 5000" in json.dumps(data)
    assert "49.99" in json.dumps(data)
    _assert_log_invariants(attempts)
