"""Profile models for per-target execution defaults."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..targets import TARGET_TYPES, is_valid_name, target_key


class TargetProfile(BaseModel):
    """Defaults applied to every execution against one target."""

    target_type: str = Field(default="agent", description="orchestrator, project, or agent.")
    name: str = Field(..., description="Target name; the agent or project directory name.")
    description: str = Field(default="", description="Human-friendly summary of the target.")
    model: str | None = Field(default=None, description="Model override passed to the CLI.")
    timeout_ms: int | None = Field(
        default=None,
        ge=0,
        description="Wall-clock limit for one execution; 0 disables the timeout.",
    )
    prepend_prompt: str = Field(
        default="",
        description="Text placed before every prompt sent to this target.",
    )
    sandboxed: bool = Field(
        default=False,
        description="Instruct the CLI to stay inside the target's working directory.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("target_type")
    @classmethod
    def _validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in TARGET_TYPES:
            raise ValueError(f"target_type must be one of {sorted(TARGET_TYPES)}")
        return normalized

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not is_valid_name(normalized):
            raise ValueError(f"Invalid target name '{value}'")
        return normalized

    @property
    def key(self) -> str:
        return target_key(self.target_type, self.name)


__all__ = ["TargetProfile"]
