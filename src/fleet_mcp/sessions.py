"""Per-target conversation continuity."""

from __future__ import annotations

from typing import Iterable

from .storage import HistoryEntry
from .targets import target_key

MAX_RECENT_SESSIONS = 5
_CONTINUITY_STATUSES = {"completed", "cancelled"}


class SessionTracker:
    """Remembers the latest Claude session per target plus a short history.

    Not persisted on its own: ``rebuild`` replays the execution history log.
    """

    def __init__(self, max_recent: int = MAX_RECENT_SESSIONS) -> None:
        self._max_recent = max_recent
        self._last: dict[str, str] = {}
        self._recent: dict[str, list[str]] = {}

    def record(self, key: str, session_id: str | None) -> None:
        if not session_id:
            return
        self._last[key] = session_id
        recent = [existing for existing in self._recent.get(key, []) if existing != session_id]
        recent.insert(0, session_id)
        self._recent[key] = recent[: self._max_recent]

    def last(self, key: str) -> str | None:
        return self._last.get(key)

    def recent(self, key: str) -> list[str]:
        return list(self._recent.get(key, []))

    def forget(self, key: str) -> None:
        self._last.pop(key, None)
        self._recent.pop(key, None)

    def rebuild(self, entries: Iterable[HistoryEntry]) -> None:
        """Replay history entries, oldest first."""

        for entry in entries:
            if entry.status in _CONTINUITY_STATUSES and entry.session_id:
                self.record(target_key(entry.target_type, entry.target_name), entry.session_id)

    def snapshot(self) -> dict[str, dict[str, object]]:
        return {
            key: {"last_session_id": self._last.get(key), "recent": list(recent)}
            for key, recent in self._recent.items()
        }


__all__ = ["MAX_RECENT_SESSIONS", "SessionTracker"]
