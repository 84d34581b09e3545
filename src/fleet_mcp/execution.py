"""Execution manager: one in-flight Claude run per target.

Every dispatched prompt becomes an ``ExecutionRecord`` that moves
``running -> completed | error | cancelled``. A completed record may carry a
``pending_question`` when the CLI asked the operator something; answering it
starts a new execution that resumes the same session.

All state changes happen synchronously on the event loop thread, so the
active map is the single source of truth for ``is_target_active``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .agents import MailboxRouter
from .claude import AskQuestion, ClaudeResult, ClaudeRunner, SpawnHandle
from .errors import FleetError, ToolNotFoundError
from .events import EventBus
from .profiles import TargetProfile, TargetProfileLoader, TargetProfileLoadError
from .sessions import SessionTracker
from .storage import ExecutionHistory, HistoryEntry
from .storage.models import utcnow
from .targets import target_key, validate_target

logger = logging.getLogger(__name__)

ExecutionStatus = Literal["running", "completed", "error", "cancelled"]

MAX_RECENT = 100
MAX_STREAM_OUTPUT = 1024 * 1024
MAX_RECORD_OUTPUT = 10_000
MAX_PERSISTED_OUTPUT = 2_000
TRUNCATION_MARKER = "\n...(truncated)"
CANCELLED_MESSAGE = "Cancelled by user."
MAILBOX_SOURCE = "mailbox"

SANDBOX_SUFFIX = (
    "\n\n[System] Your working directory is {cwd}. Only read, write, or execute "
    "files inside this directory; do not access anything outside it."
)


def _bounded(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - len(TRUNCATION_MARKER), 0)] + TRUNCATION_MARKER


class PendingQuestion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tool_use_id: str
    questions: list[AskQuestion] = Field(default_factory=list)


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    source: str
    target_type: str
    target_name: str
    prompt: str
    cwd: str
    status: ExecutionStatus = "running"
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    output: str = ""
    result: ClaudeResult | None = None
    error: str | None = None
    pending_question: PendingQuestion | None = None
    resume_session_id: str | None = None
    model: str | None = None

    @property
    def target_key(self) -> str:
        return target_key(self.target_type, self.target_name)

    def snapshot(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def to_history_entry(self) -> HistoryEntry:
        result = self.result
        return HistoryEntry(
            id=self.id,
            prompt=self.prompt,
            target_type=self.target_type,
            target_name=self.target_name,
            status=self.status,
            started_at=self.started_at,
            completed_at=self.completed_at,
            cost_usd=result.cost_usd if result else 0.0,
            duration_ms=result.duration_ms if result else 0,
            source=self.source,
            output=_bounded(self.output, MAX_PERSISTED_OUTPUT) or None,
            error=self.error,
            session_id=(result.session_id or None) if result else None,
        )

    @classmethod
    def from_history_entry(cls, entry: HistoryEntry) -> "ExecutionRecord":
        result = None
        if entry.status in {"completed", "cancelled"}:
            result = ClaudeResult(
                output=entry.output or "",
                session_id=entry.session_id or "",
                duration_ms=entry.duration_ms,
                cost_usd=entry.cost_usd,
            )
        return cls(
            id=entry.id,
            source=entry.source,
            target_type=entry.target_type,
            target_name=entry.target_name,
            prompt=entry.prompt,
            cwd="",
            status=entry.status if entry.status != "running" else "error",
            started_at=entry.started_at,
            completed_at=entry.completed_at,
            output=entry.output or "",
            result=result,
            error=entry.error,
        )


class StartExecutionOptions(BaseModel):
    source: str = "web"
    target_type: str
    target_name: str
    prompt: str
    cwd: str
    resume_session_id: str | None = None
    model: str | None = None
    timeout_ms: int | None = Field(default=None, ge=0)
    no_resume: bool = False
    sandboxed: bool | None = None


@dataclass(slots=True)
class _ActiveExecution:
    record: ExecutionRecord
    handle: SpawnHandle | None = None
    task: asyncio.Task[None] | None = None
    asked: PendingQuestion | None = None


class ExecutionManager(EventBus):
    """Owns in-flight executions, recent history, and session continuity.

    Events: ``start``, ``output``, ``complete``, ``error``, ``cancel``,
    ``question``, ``question:answered``, ``cascade``. Each carries the
    execution id first and the live record second (``output`` carries the
    chunk instead, ``error`` adds the message, ``cascade`` the recipients).
    """

    def __init__(
        self,
        runner: ClaudeRunner | None,
        *,
        history: ExecutionHistory | None = None,
        router: MailboxRouter | None = None,
        sessions: SessionTracker | None = None,
        profiles: TargetProfileLoader | None = None,
        max_recent: int = MAX_RECENT,
    ) -> None:
        super().__init__()
        self._runner = runner
        self._history = history
        self._router = router
        self._sessions = sessions or SessionTracker()
        self._profiles = profiles
        self._active: dict[str, _ActiveExecution] = {}
        self._awaiting_answer: dict[str, ExecutionRecord] = {}
        self._recent: deque[ExecutionRecord] = deque(maxlen=max_recent)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def sessions(self) -> SessionTracker:
        return self._sessions

    def _profile_for(self, target_type: str, target_name: str) -> TargetProfile | None:
        if self._profiles is None:
            return None
        try:
            return self._profiles.get(target_type, target_name)
        except TargetProfileLoadError as exc:
            logger.warning("Ignoring unreadable target profiles", extra={"error": str(exc)})
            return None

    def start_execution(self, options: StartExecutionOptions) -> str:
        """Register and launch an execution; returns its id immediately.

        Callers decide whether the target is free (``is_target_active``);
        this method does not queue.
        """

        validate_target(options.target_type, options.target_name)
        key = target_key(options.target_type, options.target_name)
        profile = self._profile_for(options.target_type, options.target_name)

        model = options.model or (profile.model if profile else None)
        timeout_ms = options.timeout_ms
        if timeout_ms is None and profile is not None:
            timeout_ms = profile.timeout_ms
        sandboxed = options.sandboxed
        if sandboxed is None:
            sandboxed = profile.sandboxed if profile else False

        if options.resume_session_id:
            resume_session_id = options.resume_session_id
        elif options.no_resume:
            resume_session_id = None
        else:
            resume_session_id = self._sessions.last(key)

        prompt = options.prompt
        if profile is not None and profile.prepend_prompt:
            prompt = f"{profile.prepend_prompt}\n\n{prompt}"
        if sandboxed:
            prompt += SANDBOX_SUFFIX.format(cwd=options.cwd)

        record = ExecutionRecord(
            id=str(uuid4()),
            source=options.source,
            target_type=options.target_type,
            target_name=options.target_name,
            prompt=options.prompt,
            cwd=options.cwd,
            resume_session_id=resume_session_id,
            model=model,
        )
        entry = _ActiveExecution(record=record)
        self._active[record.id] = entry

        logger.info(
            "Starting execution",
            extra={
                "execution_id": record.id,
                "target": key,
                "source": record.source,
                "resume": resume_session_id,
            },
        )
        self.emit("start", record.id, record)
        self._dismiss_questions(key)

        task = asyncio.create_task(
            self._run(entry, prompt=prompt, timeout_ms=timeout_ms),
            name=f"execution-{record.id}",
        )
        entry.task = task
        self._tasks[record.id] = task
        task.add_done_callback(lambda _task, exec_id=record.id: self._tasks.pop(exec_id, None))
        return record.id

    def _dismiss_questions(self, key: str) -> None:
        """Drop questions left open on ``key``; a new prompt supersedes them."""

        for execution_id, record in list(self._awaiting_answer.items()):
            if record.target_key != key:
                continue
            del self._awaiting_answer[execution_id]
            record.pending_question = None
            logger.info(
                "Pending question dismissed by new prompt",
                extra={"execution_id": execution_id, "target": key},
            )
            self.emit("question:answered", execution_id, record)

    def _on_chunk(self, entry: _ActiveExecution, chunk: str) -> None:
        record = entry.record
        if record.status != "running":
            return
        remaining = MAX_STREAM_OUTPUT - len(record.output)
        if remaining > 0:
            record.output += chunk[:remaining]
        self.emit("output", record.id, chunk)

    def _on_question(self, entry: _ActiveExecution, tool_use_id: str, questions: list[AskQuestion]) -> None:
        entry.asked = PendingQuestion(tool_use_id=tool_use_id, questions=questions)

    async def _run(self, entry: _ActiveExecution, *, prompt: str, timeout_ms: int | None) -> None:
        record = entry.record
        try:
            result = await self._spawn_and_collect(entry, prompt=prompt, timeout_ms=timeout_ms)
            if record.status == "running":
                self._complete(entry, result)
        except FleetError as exc:
            if record.status == "running":
                self._fail(entry, str(exc))
            else:
                logger.warning(
                    "Post-completion step failed",
                    extra={"execution_id": record.id, "error": str(exc)},
                )
        except Exception as exc:
            logger.exception("Unexpected execution failure", extra={"execution_id": record.id})
            if record.status == "running":
                self._fail(entry, str(exc))

    async def _spawn_and_collect(
        self, entry: _ActiveExecution, *, prompt: str, timeout_ms: int | None
    ) -> ClaudeResult:
        record = entry.record
        if self._runner is None:
            raise ToolNotFoundError("Claude CLI executable not found on PATH")
        handle = await self._runner.spawn(
            prompt,
            Path(record.cwd),
            resume_session_id=record.resume_session_id,
            timeout_ms=timeout_ms,
            on_chunk=lambda chunk: self._on_chunk(entry, chunk),
            model=record.model,
            on_question=lambda tool_use_id, questions: self._on_question(
                entry, tool_use_id, questions
            ),
        )
        entry.handle = handle
        if record.status == "cancelled":
            handle.terminate()
        return await handle.result

    def _complete(self, entry: _ActiveExecution, result: ClaudeResult) -> None:
        record = entry.record
        record.status = "completed"
        record.completed_at = utcnow()
        record.result = result
        record.output = result.output
        try:
            self._sessions.record(record.target_key, result.session_id)
            if not result.is_error:
                denial = result.question_denial()
                if denial is not None:
                    record.pending_question = PendingQuestion(
                        tool_use_id=denial.tool_use_id, questions=denial.questions
                    )
                elif entry.asked is not None:
                    record.pending_question = entry.asked
        finally:
            self._finalize(entry)
        logger.info(
            "Execution completed",
            extra={
                "execution_id": record.id,
                "target": record.target_key,
                "session_id": result.session_id,
                "cost_usd": result.cost_usd,
                "pending_question": record.pending_question is not None,
            },
        )
        if record.pending_question is not None:
            self._awaiting_answer[record.id] = record
            self.emit("question", record.id, record)
        else:
            self.emit("complete", record.id, record)

        if record.target_type == "agent":
            self._cascade(record)

    def _fail(self, entry: _ActiveExecution, message: str) -> None:
        record = entry.record
        record.status = "error"
        record.completed_at = utcnow()
        record.error = message
        self._finalize(entry)
        logger.warning(
            "Execution failed",
            extra={"execution_id": record.id, "target": record.target_key, "error": message},
        )
        self.emit("error", record.id, record, message)

    def _finalize(self, entry: _ActiveExecution) -> None:
        record = entry.record
        self._active.pop(record.id, None)
        record.output = _bounded(record.output, MAX_RECORD_OUTPUT)
        self._recent.append(record)
        if self._history is not None:
            self._history.append(record.to_history_entry())

    def _cascade(self, record: ExecutionRecord) -> None:
        if self._router is None:
            return
        routed = self._router.route_messages(record.target_name)
        for error in routed.errors:
            logger.warning("Mailbox routing error", extra={"sender": record.target_name, "error": error})
        if not routed.recipients:
            return

        started: list[str] = []
        for recipient in routed.recipients:
            if self.is_target_active("agent", recipient):
                # Mail stays in the inbox until the next run against this agent.
                logger.info(
                    "Recipient busy; inbox left for a later run",
                    extra={"sender": record.target_name, "recipient": recipient},
                )
                continue
            try:
                prompt = self._router.build_inbox_prompt(recipient)
                paths = self._router.workspaces.agent_paths(recipient)
                if prompt is None or paths is None:
                    continue
                self._router.archive_inbox_messages(recipient)
                started.append(
                    self.start_execution(
                        StartExecutionOptions(
                            source=MAILBOX_SOURCE,
                            target_type="agent",
                            target_name=recipient,
                            prompt=prompt,
                            cwd=str(paths.root),
                        )
                    )
                )
            except (FleetError, OSError, ValueError) as exc:
                logger.warning(
                    "Could not deliver inbox to recipient",
                    extra={"sender": record.target_name, "recipient": recipient, "error": str(exc)},
                )
        self.emit("cascade", record.id, started)

    def cancel_execution(self, execution_id: str) -> bool:
        entry = self._active.get(execution_id)
        if entry is not None:
            record = entry.record
            session_id = record.resume_session_id or self._sessions.last(record.target_key) or ""
            record.status = "cancelled"
            record.completed_at = utcnow()
            record.error = CANCELLED_MESSAGE
            record.result = ClaudeResult(output=record.output, session_id=session_id)
            self._sessions.record(record.target_key, session_id)
            if entry.handle is not None:
                entry.handle.terminate()
            self._finalize(entry)
            logger.info("Execution cancelled", extra={"execution_id": execution_id})
            self.emit("cancel", execution_id, record)
            return True

        record = self._awaiting_answer.pop(execution_id, None)
        if record is not None:
            record.pending_question = None
            self.emit("question:answered", execution_id, record)
            return True
        return False

    def submit_answer(self, execution_id: str, answer: str) -> str | None:
        """Resume a paused conversation with ``answer``; returns the new execution id."""

        record = self._awaiting_answer.pop(execution_id, None)
        if record is None:
            return None
        record.pending_question = None
        new_id = self.start_execution(
            StartExecutionOptions(
                source=record.source,
                target_type=record.target_type,
                target_name=record.target_name,
                prompt=answer,
                cwd=record.cwd,
                resume_session_id=(record.result.session_id if record.result else None) or None,
                model=record.model,
            )
        )
        self.emit("question:answered", execution_id, record)
        return new_id

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        entry = self._active.get(execution_id)
        if entry is not None:
            return entry.record
        for record in reversed(self._recent):
            if record.id == execution_id:
                return record
        return None

    def get_active_executions(self) -> list[ExecutionRecord]:
        return [entry.record for entry in self._active.values()]

    def get_recent_executions(self, limit: int = 50) -> list[ExecutionRecord]:
        if limit <= 0:
            return []
        return list(self._recent)[-limit:]

    def get_pending_questions(self) -> list[ExecutionRecord]:
        return list(self._awaiting_answer.values())

    def get_pending_question(self, execution_id: str) -> PendingQuestion | None:
        record = self._awaiting_answer.get(execution_id)
        return record.pending_question if record else None

    def get_process(self, execution_id: str) -> asyncio.subprocess.Process | None:
        entry = self._active.get(execution_id)
        if entry is None or entry.handle is None:
            return None
        return entry.handle.process

    def is_target_active(self, target_type: str, target_name: str) -> bool:
        key = target_key(target_type, target_name)
        return any(entry.record.target_key == key for entry in self._active.values())

    def last_session_id(self, target_type: str, target_name: str) -> str | None:
        return self._sessions.last(target_key(target_type, target_name))

    def recent_sessions(self, target_type: str, target_name: str) -> list[str]:
        return self._sessions.recent(target_key(target_type, target_name))

    def load_recent(self, limit: int = MAX_RECENT) -> int:
        """Rebuild recent history and session continuity from the log."""

        if self._history is None:
            return 0
        entries = self._history.load(limit)
        for entry in entries:
            self._recent.append(ExecutionRecord.from_history_entry(entry))
        self._sessions.rebuild(entries)
        return len(entries)

    async def wait(self, execution_id: str) -> ExecutionRecord | None:
        """Block until the given execution's supervising task has finished."""

        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_execution(execution_id)

    async def wait_idle(self) -> None:
        """Wait for every execution, including cascades started meanwhile."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        for execution_id in list(self._active):
            self.cancel_execution(execution_id)
        await self.wait_idle()


__all__ = [
    "ExecutionManager",
    "ExecutionRecord",
    "ExecutionStatus",
    "PendingQuestion",
    "StartExecutionOptions",
]
