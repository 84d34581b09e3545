"""Target identifiers: the unit of execution mutual exclusion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, get_args

from .errors import ValidationError

TargetType = Literal["orchestrator", "project", "agent"]
TARGET_TYPES: frozenset[str] = frozenset(get_args(TargetType))

NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def is_valid_name(name: str) -> bool:
    """Return True when ``name`` is a safe agent/project/sender name."""

    if not name or name in {".", ".."}:
        return False
    return NAME_PATTERN.fullmatch(name) is not None


def validate_target(target_type: str, target_name: str) -> None:
    if target_type not in TARGET_TYPES:
        raise ValidationError(
            f"Unknown target type '{target_type}'. Must be one of {sorted(TARGET_TYPES)}"
        )
    if not is_valid_name(target_name):
        raise ValidationError(f"Invalid target name '{target_name}'")


@dataclass(frozen=True, slots=True)
class TargetKey:
    target_type: str
    target_name: str

    def __str__(self) -> str:
        return f"{self.target_type}:{self.target_name}"

    @classmethod
    def parse(cls, value: str) -> "TargetKey":
        target_type, sep, target_name = value.partition(":")
        if not sep:
            raise ValidationError(f"Malformed target key '{value}'")
        validate_target(target_type, target_name)
        return cls(target_type, target_name)


def target_key(target_type: str, target_name: str) -> str:
    return str(TargetKey(target_type, target_name))


__all__ = [
    "NAME_PATTERN",
    "TARGET_TYPES",
    "TargetKey",
    "TargetType",
    "is_valid_name",
    "target_key",
    "validate_target",
]
