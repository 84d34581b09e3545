"""Debounced, atomic JSON file persistence."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file and rename it over ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


class JsonPersister:
    """Keeps one JSON document on disk in sync with in-memory state.

    In-memory state is authoritative. Writes requested in quick succession are
    coalesced into one write after ``debounce_seconds``; ``flush`` writes
    immediately and is meant for shutdown paths.
    """

    def __init__(
        self,
        path: Path,
        name: str,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._path = Path(path)
        self._name = name
        self._debounce_seconds = debounce_seconds
        self._timer: asyncio.TimerHandle | None = None
        self._timer_loop: asyncio.AbstractEventLoop | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def read(self) -> Any | None:
        if not self._path.exists():
            return None
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Ignoring unreadable persisted state",
                extra={"store": self._name, "path": str(self._path), "error": str(exc)},
            )
            return None

    def schedule_write(self, get_data: Callable[[], Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if self._timer is not None:
            if self._timer_loop is loop and not self._timer.cancelled():
                return
            # Timer belongs to a loop that has gone away; it will never fire.
            self._timer = None
            self._timer_loop = None
        if loop is None:
            self._write(get_data())
            return

        def _fire() -> None:
            self._timer = None
            self._timer_loop = None
            self._write(get_data())

        self._timer = loop.call_later(self._debounce_seconds, _fire)
        self._timer_loop = loop

    def flush(self, data: Any) -> bool:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._timer_loop = None
        return self._write(data)

    def _write(self, data: Any) -> bool:
        try:
            atomic_write_text(self._path, json.dumps(data, indent=2))
        except (OSError, TypeError, ValueError) as exc:
            error = PersistenceError(f"[{self._name}] persist failed: {exc}")
            logger.warning(str(error), extra={"store": self._name, "path": str(self._path)})
            return False
        return True


__all__ = ["JsonPersister", "atomic_write_text"]
