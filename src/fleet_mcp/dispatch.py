"""Front-door dispatch: start a prompt now or queue it behind its target."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .execution import ExecutionManager, ExecutionRecord, StartExecutionOptions
from .queue import CommandQueue
from .storage import QueueItem

logger = logging.getLogger(__name__)

_DRAIN_EVENTS = ("complete", "error", "cancel", "question:answered")


@dataclass(slots=True)
class SubmitOutcome:
    execution_id: str | None = None
    queued: QueueItem | None = None

    @property
    def started(self) -> bool:
        return self.execution_id is not None


class Dispatcher:
    """Routes submissions through ``is_target_active`` and drains the queue.

    When a target settles, the oldest queued item for that target (lowest
    ``seq_id``) is started. Targets paused on a question are not drained until
    the question is answered or dismissed.
    """

    def __init__(self, manager: ExecutionManager, queue: CommandQueue) -> None:
        self._manager = manager
        self._queue = queue
        self._unsubscribe = [manager.on(event, self._drain) for event in _DRAIN_EVENTS]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def submit(self, options: StartExecutionOptions) -> SubmitOutcome:
        if self._manager.is_target_active(options.target_type, options.target_name):
            item = self._queue.enqueue(
                target_type=options.target_type,
                target_name=options.target_name,
                prompt=options.prompt,
                source=options.source,
                cwd=options.cwd,
                resume_session_id=options.resume_session_id,
                model=options.model,
            )
            return SubmitOutcome(queued=item)
        return SubmitOutcome(execution_id=self._manager.start_execution(options))

    def answer(self, execution_id: str, answer: str) -> str | None:
        return self._manager.submit_answer(execution_id, answer)

    def _drain(self, _execution_id: str, record: ExecutionRecord, *_args: object) -> None:
        self.drain_target(record.target_type, record.target_name)

    def drain_target(self, target_type: str, target_name: str) -> str | None:
        if self._manager.is_target_active(target_type, target_name):
            return None
        if any(
            pending.target_type == target_type and pending.target_name == target_name
            for pending in self._manager.get_pending_questions()
        ):
            return None
        item = self._queue.dequeue(self._queue.target_key(target_type, target_name))
        if item is None:
            return None

        logger.info(
            "Dispatching queued prompt",
            extra={"seq_id": item.seq_id, "target": item.target_key},
        )
        self._queue.emit("queue:processing", item)
        return self._manager.start_execution(
            StartExecutionOptions(
                source=item.source,
                target_type=item.target_type,
                target_name=item.target_name,
                prompt=item.prompt,
                cwd=item.cwd,
                resume_session_id=item.resume_session_id,
                model=item.model,
            )
        )


__all__ = ["Dispatcher", "SubmitOutcome"]
