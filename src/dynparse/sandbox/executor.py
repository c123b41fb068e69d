"""
Script executor for generated extraction scripts.

Runs one candidate script per call in a fresh child process, feeds the
document on stdin and enforces the output contract: exit code 0 and a
single well-formed JSON value on stdout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

from dynparse.errors import (
    EmptyOutput,
    ExecutionError,
    ExecutionFailed,
    ExecutionTimedOut,
    FailureKind,
    InvalidOutput,
    SandboxError,
)
from dynparse.sandbox.classifier import classify, parse_error
from dynparse.sandbox.models import ProcessOutput

logger = logging.getLogger(__name__)

DEFAULT_INTERPRETER = "python3"
DEFAULT_TIMEOUT_S = 45.0

# Exit code reported for a process we had to kill.
_KILLED_EXIT_CODE = -1


class SandboxProcess(Protocol):
    """One spawned script process, exclusively owned by a single run."""

    async def write_stdin(self, data: bytes) -> None:
        """Write ``data`` to the process and close its stdin."""

    async def read_stdout(self) -> bytes: ...

    async def read_stderr(self) -> bytes: ...

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""

    def kill(self) -> None: ...


class ProcessSandbox(Protocol):
    """Capability for spawning isolated script processes."""

    async def spawn(self, script: str) -> SandboxProcess: ...


async def _read_pipe(stream: asyncio.StreamReader | None, *, stream_name: str) -> bytes:
    if stream is None:
        raise SandboxError(f"Script {stream_name} is not connected to a pipe")
    return await stream.read()


class _AsyncioProcess:
    """``SandboxProcess`` backed by an ``asyncio.subprocess.Process``."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    async def write_stdin(self, data: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # The script exited or closed stdin before reading everything.
            logger.debug("Script closed stdin before the document was fully written")
        finally:
            stdin.close()

    async def read_stdout(self) -> bytes:
        return await _read_pipe(self._process.stdout, stream_name="stdout")

    async def read_stderr(self) -> bytes:
        return await _read_pipe(self._process.stderr, stream_name="stderr")

    async def wait(self) -> int:
        return await self._process.wait()

    def kill(self) -> None:
        if self._process.returncode is None:
            self._process.kill()


class SubprocessSandbox:
    """Runs scripts as ``<interpreter> -c <script>`` child processes."""

    def __init__(self, interpreter: str = DEFAULT_INTERPRETER) -> None:
        self.interpreter = interpreter

    async def spawn(self, script: str) -> SandboxProcess:
        try:
            process = await asyncio.create_subprocess_exec(
                self.interpreter,
                "-c",
                script,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise SandboxError(f"Could not start interpreter '{self.interpreter}': {err}") from err
        return _AsyncioProcess(process)


async def _terminate(
    process: SandboxProcess,
    writer: asyncio.Task[None],
    collector: asyncio.Future[Any],
) -> None:
    """Kill a process whose run did not finish normally and settle its helper tasks."""
    process.kill()
    await process.wait()
    writer.cancel()
    collector.cancel()
    await asyncio.wait({writer, collector})
    for task in (writer, collector):
        # Retrieve outcomes so none is reported as unhandled.
        if not task.cancelled():
            task.exception()


def _decode_stream(raw: bytes, *, stream_name: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as err:
        raise SandboxError(f"Script {stream_name} is not valid UTF-8: {err}") from err


class ScriptExecutor:
    """Executes candidate scripts and validates their JSON output."""

    def __init__(
        self,
        sandbox: ProcessSandbox | None = None,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._sandbox = sandbox or SubprocessSandbox()
        self.timeout_s = timeout_s

    async def run(self, script: str, document: str) -> str:
        """
        Run ``script`` with ``document`` on stdin and return its trimmed JSON output.

        Raises an ``ExecutionError`` subclass when the script breaks the output
        contract, and ``SandboxError`` when the environment itself fails.
        """
        logger.debug(
            "Starting script execution: script_bytes=%d document_bytes=%d",
            len(script.encode("utf-8")),
            len(document.encode("utf-8")),
        )
        output = await self._execute(script, document.encode("utf-8"))
        logger.debug(
            "Script finished: exit_code=%d duration_ms=%d stdout_len=%d stderr_len=%d",
            output.exit_code,
            output.duration_ms,
            len(output.stdout),
            len(output.stderr),
        )

        failure = classify(
            exit_code=output.exit_code,
            stdout=output.stdout,
            timed_out=output.timed_out,
        )
        if failure is not None:
            error = self._build_error(failure, output)
            logger.warning("Script execution rejected (%s): %s", failure.value, error)
            raise error

        logger.info("Script executed successfully and produced valid JSON")
        return output.stdout.strip()

    async def _execute(self, script: str, stdin_data: bytes) -> ProcessOutput:
        start_monotonic = time.monotonic()
        process = await self._sandbox.spawn(script)

        # Feed stdin while draining the output pipes so a large document
        # cannot deadlock against a script that writes before it finishes reading.
        writer = asyncio.create_task(process.write_stdin(stdin_data))
        collector = asyncio.gather(process.read_stdout(), process.read_stderr(), process.wait())

        timed_out = False
        try:
            raw_stdout, raw_stderr, exit_code = await asyncio.wait_for(
                collector, timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            timed_out = True
            raw_stdout, raw_stderr, exit_code = b"", b"", _KILLED_EXIT_CODE
        finally:
            # Timeout, cancellation of this run, or a failed read: the process
            # must not outlive the run that spawned it.
            exited = (
                collector.done()
                and not collector.cancelled()
                and collector.exception() is None
            )
            if not exited:
                await _terminate(process, writer, collector)

        if not timed_out:
            await asyncio.wait({writer})
            if not writer.cancelled() and writer.exception() is not None:
                raise SandboxError(
                    f"Failed to write document to script stdin: {writer.exception()}"
                )

        elapsed_ms = int((time.monotonic() - start_monotonic) * 1000)
        return ProcessOutput(
            exit_code=exit_code,
            stdout=_decode_stream(raw_stdout, stream_name="stdout"),
            stderr=_decode_stream(raw_stderr, stream_name="stderr"),
            timed_out=timed_out,
            duration_ms=elapsed_ms,
        )

    def _build_error(self, failure: FailureKind, output: ProcessOutput) -> ExecutionError:
        if failure is FailureKind.timeout:
            return ExecutionTimedOut(self.timeout_s or 0.0)
        if failure is FailureKind.execution_failed:
            return ExecutionFailed(exit_code=output.exit_code, stderr=output.stderr)
        if failure is FailureKind.empty_output:
            return EmptyOutput(stderr=output.stderr)
        return InvalidOutput(
            parse_error=parse_error(output.stdout) or "unknown parse error",
            output=output.stdout,
        )
