"""Append-only JSONL log of finished executions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from .models import HistoryEntry
from .persister import atomic_write_text

logger = logging.getLogger(__name__)

MAX_LINES = 500
TRIM_TO = 300
TRIM_DEBOUNCE_SECONDS = 5.0


class ExecutionHistory:
    """One JSON object per line; compacted to a bounded tail when it grows."""

    def __init__(
        self,
        path: Path,
        *,
        max_lines: int = MAX_LINES,
        trim_to: int = TRIM_TO,
        trim_debounce_seconds: float = TRIM_DEBOUNCE_SECONDS,
    ) -> None:
        if trim_to > max_lines:
            raise ValueError("trim_to must not exceed max_lines")
        self._path = Path(path)
        self._max_lines = max_lines
        self._trim_to = trim_to
        self._trim_debounce_seconds = trim_debounce_seconds
        self._line_count: int | None = None
        self._trim_timer: asyncio.TimerHandle | None = None
        self._trim_loop: asyncio.AbstractEventLoop | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _read_lines(self) -> list[str]:
        if not self._path.exists():
            return []
        content = self._path.read_text(encoding="utf-8")
        return [line for line in content.splitlines() if line.strip()]

    def append(self, entry: HistoryEntry) -> None:
        line = json.dumps(entry.to_json_dict(), ensure_ascii=False)
        try:
            if self._line_count is None:
                self._line_count = len(self._read_lines())
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            logger.warning("Failed to append execution history", extra={"error": str(exc)})
            return

        self._line_count += 1
        if self._line_count > self._max_lines:
            self._schedule_compaction()

    def _schedule_compaction(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if self._trim_timer is not None and self._trim_loop is loop:
            return
        if loop is None:
            self._trim_timer = None
            self.compact()
            return

        def _fire() -> None:
            self._trim_timer = None
            self._trim_loop = None
            self.compact()

        self._trim_timer = loop.call_later(self._trim_debounce_seconds, _fire)
        self._trim_loop = loop

    def compact(self) -> int:
        """Trim the log to its most recent ``trim_to`` lines when oversized."""

        try:
            lines = self._read_lines()
            if len(lines) > self._max_lines:
                lines = lines[-self._trim_to :]
                atomic_write_text(self._path, "\n".join(lines) + "\n")
        except OSError as exc:
            logger.warning("Failed to compact execution history", extra={"error": str(exc)})
            return self._line_count or 0
        self._line_count = len(lines)
        return self._line_count

    def load(self, limit: int = 20) -> list[HistoryEntry]:
        """Return up to ``limit`` most recent entries, oldest first."""

        try:
            lines = self._read_lines()
        except OSError as exc:
            logger.warning("Failed to read execution history", extra={"error": str(exc)})
            return []
        self._line_count = len(lines)

        entries: list[HistoryEntry] = []
        for line in reversed(lines):
            if len(entries) >= limit:
                break
            try:
                entries.append(HistoryEntry.model_validate_json(line))
            except ValidationError:
                continue
        entries.reverse()
        return entries


__all__ = ["ExecutionHistory", "MAX_LINES", "TRIM_TO"]
