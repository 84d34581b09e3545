"""Durable per-target FIFO for work that arrived while its target was busy."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from .events import EventBus
from .storage import JsonPersister, PersistedQueue, QueueItem
from .storage.persister import DEFAULT_DEBOUNCE_SECONDS
from .targets import target_key, validate_target

logger = logging.getLogger(__name__)


class CommandQueue(EventBus):
    """Queue items grouped by target key and ordered by ``seq_id``.

    ``seq_id`` comes from a single counter that only ever increases, also
    across restarts, so it stays a stable reference after the item is gone.

    Emits ``queue:add`` and ``queue:remove`` with the affected ``QueueItem``.
    """

    def __init__(self, path: Path, *, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        super().__init__()
        self._queues: dict[str, list[QueueItem]] = {}
        self._next_seq_id = 1
        self._persister = JsonPersister(path, "queue", debounce_seconds=debounce_seconds)
        self._load()

    @staticmethod
    def target_key(target_type: str, target_name: str) -> str:
        return target_key(target_type, target_name)

    @property
    def next_seq_id(self) -> int:
        return self._next_seq_id

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    def enqueue(
        self,
        *,
        target_type: str,
        target_name: str,
        prompt: str,
        source: str,
        cwd: str | Path,
        resume_session_id: str | None = None,
        model: str | None = None,
    ) -> QueueItem:
        validate_target(target_type, target_name)
        item = QueueItem(
            id=str(uuid4()),
            seq_id=self._next_seq_id,
            target_type=target_type,
            target_name=target_name,
            prompt=prompt,
            source=source,
            cwd=str(cwd),
            resume_session_id=resume_session_id,
            model=model,
        )
        self._next_seq_id += 1
        self._queues.setdefault(item.target_key, []).append(item)

        self._persist()
        logger.info(
            "Queued prompt",
            extra={"seq_id": item.seq_id, "target": item.target_key, "source": source},
        )
        self.emit("queue:add", item)
        return item

    def dequeue(self, key: str) -> QueueItem | None:
        queue = self._queues.get(key)
        if not queue:
            return None

        item = queue.pop(0)
        if not queue:
            del self._queues[key]

        self._persist()
        self.emit("queue:remove", item)
        return item

    def remove(self, seq_id: int) -> QueueItem | None:
        for key, queue in self._queues.items():
            for index, item in enumerate(queue):
                if item.seq_id != seq_id:
                    continue
                del queue[index]
                if not queue:
                    del self._queues[key]
                self._persist()
                self.emit("queue:remove", item)
                return item
        return None

    def get_all(self) -> list[QueueItem]:
        items = [item for queue in self._queues.values() for item in queue]
        return sorted(items, key=lambda item: item.seq_id)

    def get_by_target(self, target_type: str, target_name: str) -> list[QueueItem]:
        return list(self._queues.get(self.target_key(target_type, target_name), []))

    def get_grouped(self) -> dict[str, list[QueueItem]]:
        return {key: list(queue) for key, queue in self._queues.items()}

    def peek(self, target_type: str, target_name: str) -> QueueItem | None:
        queue = self._queues.get(self.target_key(target_type, target_name))
        return queue[0] if queue else None

    def flush(self) -> bool:
        """Write the queue now, bypassing the debounce window."""

        return self._persister.flush(self._persist_data())

    def _load(self) -> None:
        raw = self._persister.read()
        if raw is None:
            return
        try:
            data = PersistedQueue.model_validate(raw)
        except ModelValidationError as exc:
            logger.warning("Discarding corrupt queue file", extra={"error": str(exc)})
            return

        highest = 0
        for item in sorted(data.items, key=lambda entry: entry.seq_id):
            self._queues.setdefault(item.target_key, []).append(item)
            highest = max(highest, item.seq_id)
        self._next_seq_id = max(data.next_seq_id, highest + 1)

    def _persist_data(self) -> dict:
        return PersistedQueue(next_seq_id=self._next_seq_id, items=self.get_all()).to_json_dict()

    def _persist(self) -> None:
        self._persister.schedule_write(self._persist_data)


__all__ = ["CommandQueue"]
