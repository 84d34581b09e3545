"""Utility helpers for the Claude runner."""

from __future__ import annotations

import json
import os
from typing import Any, Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

ANSI = {
    "reset": "\x1b[0m",
    "bold": "\x1b[1m",
    "dim": "\x1b[2m",
    "cyan": "\x1b[36m",
    "yellow": "\x1b[33m",
    "magenta": "\x1b[35m",
    "gray": "\x1b[90m",
}

# tool name -> (input key, colour, max length)
_TOOL_DETAIL = {
    "Read": ("file_path", "gray", None),
    "Write": ("file_path", "yellow", None),
    "Edit": ("file_path", "yellow", None),
    "Bash": ("command", "dim", 120),
    "Glob": ("pattern", "gray", None),
    "Grep": ("pattern", "gray", None),
    "Task": ("description", "magenta", None),
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def _paint(colour: str, text: str) -> str:
    return f"{ANSI[colour]}{text}{ANSI['reset']}"


def format_tool_use(name: str, tool_input: Mapping[str, Any] | None) -> str:
    """Render a tool invocation as a one-line annotation for live output."""

    tool_input = tool_input or {}
    label = f"{ANSI['cyan']}{ANSI['bold']}> {name}{ANSI['reset']}"

    if name in _TOOL_DETAIL:
        key, colour, limit = _TOOL_DETAIL[name]
        value = str(tool_input.get(key) or "")
        detail = _paint(colour, value[:limit] if limit else value)
    elif name == "AskUserQuestion":
        questions = tool_input.get("questions")
        first = questions[0] if isinstance(questions, list) and questions else None
        if not isinstance(first, dict):
            first = {}
        detail = _paint("yellow", str(first.get("question") or "")[:100])
    else:
        detail = _paint("dim", json.dumps(dict(tool_input), default=str)[:100])

    return f"\n{label} {detail}\n"


__all__ = ["ANSI", "format_tool_use", "sanitize_environment"]
