"""Configuration management for Fleet MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    claude_timeout_ms: int = Field(default=0, validation_alias="CLAUDE_TIMEOUT_MS")
    max_buffer_size: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_BUFFER_SIZE")
    kill_grace_seconds: float = Field(default=5.0, validation_alias="FLEET_KILL_GRACE_SECONDS")
    queue_debounce_seconds: float = Field(
        default=1.0, validation_alias="FLEET_QUEUE_DEBOUNCE_SECONDS"
    )
    base_path: Path = Field(default_factory=Path.cwd, validation_alias="BASE_PATH")
    orchestrator_path: Path | None = Field(default=None, validation_alias="FLEET_ORCHESTRATOR_PATH")
    projects_path: Path | None = Field(default=None, validation_alias="FLEET_PROJECTS_PATH")
    agents_path: Path | None = Field(default=None, validation_alias="FLEET_AGENTS_PATH")
    data_path: Path | None = Field(default=None, validation_alias="FLEET_DATA_PATH")
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="FLEET_PROFILE_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="FLEET_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "FLEET_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("claude_timeout_ms", "max_buffer_size", "kill_grace_seconds", "queue_debounce_seconds")
    @classmethod
    def _validate_non_negative(cls, value):
        if value < 0:
            raise ValueError("numeric settings must be non-negative")
        return value

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("FLEET_PROFILE_PATHS must be a list of paths or a path-separated string")

    @model_validator(mode="after")
    def _derive_paths(self) -> "FleetSettings":
        base = self.base_path
        if self.orchestrator_path is None:
            self.orchestrator_path = base / "orchestrator"
        if self.projects_path is None:
            self.projects_path = base / "projects"
        if self.agents_path is None:
            self.agents_path = base / "agents"
        if self.data_path is None:
            self.data_path = base / ".fleet"
        return self

    @property
    def queue_file(self) -> Path:
        return Path(self.data_path) / "queue.json"

    @property
    def history_file(self) -> Path:
        return Path(self.data_path) / "history.jsonl"

    def ensure_directories(self) -> None:
        """Create the workspace directories the engine writes into."""

        for path in (self.orchestrator_path, self.projects_path, self.agents_path, self.data_path):
            Path(path).mkdir(parents=True, exist_ok=True)
        (Path(self.orchestrator_path) / "outbox").mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> FleetSettings:
    """Return cached settings instance."""

    settings = FleetSettings()
    settings.base_path = settings.base_path.expanduser().resolve()
    settings.orchestrator_path = settings.orchestrator_path.expanduser().resolve()
    settings.projects_path = settings.projects_path.expanduser().resolve()
    settings.agents_path = settings.agents_path.expanduser().resolve()
    settings.data_path = settings.data_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["FleetSettings", "get_settings"]
