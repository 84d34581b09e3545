"""Data models for persistent tracking."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..targets import target_key


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class QueueItem(_CamelModel):
    """A work item waiting for its target to become idle."""

    id: str
    seq_id: int
    target_type: str
    target_name: str
    prompt: str
    source: str
    cwd: str
    resume_session_id: str | None = None
    model: str | None = None
    enqueued_at: datetime = Field(default_factory=utcnow)

    @property
    def target_key(self) -> str:
        return target_key(self.target_type, self.target_name)


class PersistedQueue(_CamelModel):
    next_seq_id: int = 1
    items: list[QueueItem] = Field(default_factory=list)


class HistoryEntry(_CamelModel):
    """One line of the append-only execution history log."""

    id: str
    prompt: str
    target_type: str
    target_name: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    cost_usd: float = 0.0
    duration_ms: float = 0
    source: str
    output: str | None = None
    error: str | None = None
    session_id: str | None = None


__all__ = ["HistoryEntry", "PersistedQueue", "QueueItem", "utcnow"]
