"""Async runner for the Claude CLI streaming protocol."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from ..errors import (
    BufferOverflowError,
    ExecutionTimeoutError,
    NotFoundError,
    ProcessError,
    ProcessExecutionError,
    ToolNotFoundError,
)
from .models import ASK_USER_QUESTION, AskQuestion, ClaudeResult, parse_questions
from .protocol import AssistantText, ResultEvent, StreamDecoder, StreamEvent, ToolUse
from .utils import format_tool_use, sanitize_environment

logger = logging.getLogger(__name__)

OnChunk = Callable[[str], None]
OnQuestion = Callable[[str, list[AskQuestion]], None]

DEFAULT_MAX_BUFFER_SIZE = 10 * 1024 * 1024
DEFAULT_KILL_GRACE_SECONDS = 5.0
_READ_SIZE = 64 * 1024


async def terminate_process(process: asyncio.subprocess.Process, grace_seconds: float) -> None:
    """Send SIGTERM, then SIGKILL if the process outlives the grace window."""

    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            "Process ignored SIGTERM; sending SIGKILL",
            extra={"pid": process.pid, "grace_seconds": grace_seconds},
        )
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


class SpawnHandle:
    """A running CLI process plus the task that resolves to its result."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.process = process
        self.result: asyncio.Task[ClaudeResult] | None = None
        self._kill_grace_seconds = kill_grace_seconds
        self._terminator: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def terminate(self, grace_seconds: float | None = None) -> asyncio.Task[None] | None:
        """Start SIGTERM/SIGKILL escalation once; later calls reuse it."""

        if self._terminator is None and self.process.returncode is None:
            grace = self._kill_grace_seconds if grace_seconds is None else grace_seconds
            self._terminator = asyncio.ensure_future(terminate_process(self.process, grace))
        return self._terminator


@dataclass(slots=True)
class _RunState:
    text: list[str] = field(default_factory=list)
    text_size: int = 0
    ends_with_newline: bool = True
    result: ClaudeResult | None = None
    result_has_output: bool = False
    timed_out: bool = False
    overflowed: bool = False

    @property
    def transcript(self) -> str:
        return "".join(self.text)


class ClaudeRunner:
    """Spawn the Claude CLI and decode its streamed events."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        default_timeout_ms: int = 0,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._max_buffer_size = max_buffer_size
        self._default_timeout_ms = default_timeout_ms
        self._kill_grace_seconds = kill_grace_seconds

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise ToolNotFoundError(f"Claude executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise ToolNotFoundError("Claude CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def kill_grace_seconds(self) -> float:
        return self._kill_grace_seconds

    async def version(self) -> str:
        process = await asyncio.create_subprocess_exec(
            str(self._executable_path),
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        if process.returncode != 0:
            raise ProcessError(process.returncode, stderr_bytes.decode("utf-8", errors="replace"))
        return stdout_bytes.decode("utf-8", errors="replace").strip()

    @staticmethod
    def build_args(
        prompt: str,
        *,
        resume_session_id: str | None = None,
        model: str | None = None,
        extra_flags: Sequence[str] | None = None,
    ) -> list[str]:
        args = ["--print", "--verbose", "--output-format", "stream-json"]
        args.append("--dangerously-skip-permissions")
        if model:
            args.extend(["--model", model])
        if resume_session_id:
            args.extend(["--resume", resume_session_id])
        args.extend(extra_flags or [])
        args.append(prompt)
        return args

    async def spawn(
        self,
        prompt: str,
        cwd: Path | str,
        *,
        resume_session_id: str | None = None,
        timeout_ms: int | None = None,
        on_chunk: OnChunk | None = None,
        model: str | None = None,
        on_question: OnQuestion | None = None,
    ) -> SpawnHandle:
        """Start the CLI and return a handle whose ``result`` task settles on exit."""

        workdir = Path(cwd)
        if not workdir.is_dir():
            raise NotFoundError(f"Working directory not found: {workdir}")

        args = self.build_args(prompt, resume_session_id=resume_session_id, model=model)
        try:
            process = await asyncio.create_subprocess_exec(
                str(self._executable_path),
                *args,
                cwd=str(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError("Claude CLI executable not found on PATH") from exc
        except OSError as exc:
            raise ProcessExecutionError(f"Claude CLI failed to start: {exc}") from exc

        effective_timeout = self._default_timeout_ms if timeout_ms is None else timeout_ms
        handle = SpawnHandle(process, kill_grace_seconds=self._kill_grace_seconds)
        handle.result = asyncio.create_task(
            self._collect(
                handle,
                timeout_ms=effective_timeout,
                on_chunk=on_chunk,
                on_question=on_question,
            )
        )
        logger.debug(
            "Spawned Claude CLI",
            extra={"pid": process.pid, "cwd": str(workdir), "resume": resume_session_id},
        )
        return handle

    async def _collect(
        self,
        handle: SpawnHandle,
        *,
        timeout_ms: int,
        on_chunk: OnChunk | None,
        on_question: OnQuestion | None,
    ) -> ClaudeResult:
        process = handle.process
        assert process.stdout is not None
        state = _RunState()
        decoder = StreamDecoder()
        stderr_task = asyncio.create_task(self._read_stderr(process))

        timer: asyncio.TimerHandle | None = None
        if timeout_ms and timeout_ms > 0:

            def _on_timeout() -> None:
                state.timed_out = True
                logger.warning(
                    "Claude CLI timed out", extra={"pid": process.pid, "timeout_ms": timeout_ms}
                )
                handle.terminate()

            timer = asyncio.get_running_loop().call_later(timeout_ms / 1000, _on_timeout)

        try:
            while True:
                chunk = await process.stdout.read(_READ_SIZE)
                if not chunk:
                    break
                if state.overflowed:
                    continue
                for event in decoder.feed(chunk):
                    self._apply(event, state, on_chunk, on_question)
                if (
                    state.text_size > self._max_buffer_size
                    or len(decoder.pending) > self._max_buffer_size
                ):
                    state.overflowed = True
                    handle.terminate()
            if not state.overflowed:
                for event in decoder.flush():
                    self._apply(event, state, on_chunk, on_question)
            returncode = await process.wait()
            stderr = await stderr_task
        finally:
            if timer is not None:
                timer.cancel()
            if not stderr_task.done():
                stderr_task.cancel()

        if state.overflowed:
            raise BufferOverflowError(self._max_buffer_size)
        if state.timed_out:
            raise ExecutionTimeoutError(timeout_ms)
        if state.result is not None:
            if not state.result_has_output:
                state.result.output = state.transcript
            return state.result
        if returncode != 0:
            raise ProcessError(returncode, stderr)
        return ClaudeResult(output=state.transcript)

    @staticmethod
    def _apply(
        event: StreamEvent,
        state: _RunState,
        on_chunk: OnChunk | None,
        on_question: OnQuestion | None,
    ) -> None:
        if isinstance(event, AssistantText):
            pieces: list[str] = []
            if state.text and not state.ends_with_newline and not event.text.startswith("\n"):
                pieces.append("\n")
            pieces.append(event.text)
            for piece in pieces:
                state.text.append(piece)
                state.text_size += len(piece)
                if on_chunk is not None:
                    on_chunk(piece)
            state.ends_with_newline = event.text.endswith("\n")
        elif isinstance(event, ToolUse):
            if event.name == ASK_USER_QUESTION and on_question is not None:
                questions = parse_questions(event.input.get("questions"))
                if questions:
                    on_question(event.tool_use_id, questions)
            if on_chunk is not None:
                on_chunk(format_tool_use(event.name, event.input))
        elif isinstance(event, ResultEvent):
            state.result = event.result
            state.result_has_output = event.has_output

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> str:
        if process.stderr is None:
            return ""
        parts: list[str] = []
        size = 0
        while True:
            chunk = await process.stderr.read(_READ_SIZE)
            if not chunk:
                break
            if size < self._max_buffer_size:
                text = chunk.decode("utf-8", errors="replace")
                parts.append(text)
                size += len(text)
        return "".join(parts)


__all__ = [
    "ClaudeRunner",
    "OnChunk",
    "OnQuestion",
    "SpawnHandle",
    "terminate_process",
]
