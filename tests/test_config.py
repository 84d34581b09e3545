from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from fleet_mcp.config import FleetSettings


def test_paths_derive_from_base(tmp_path: Path) -> None:
    settings = FleetSettings(BASE_PATH=str(tmp_path))

    assert settings.orchestrator_path == tmp_path / "orchestrator"
    assert settings.projects_path == tmp_path / "projects"
    assert settings.agents_path == tmp_path / "agents"
    assert settings.queue_file == tmp_path / ".fleet" / "queue.json"
    assert settings.history_file == tmp_path / ".fleet" / "history.jsonl"


def test_explicit_paths_win(tmp_path: Path) -> None:
    settings = FleetSettings(BASE_PATH=str(tmp_path), FLEET_AGENTS_PATH=str(tmp_path / "crew"))

    assert settings.agents_path == tmp_path / "crew"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CLAUDE_TIMEOUT_MS", "90000")
    monkeypatch.setenv("FLEET_LOG_LEVEL", "debug")
    monkeypatch.setenv("FLEET_PROFILE_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))

    settings = FleetSettings()

    assert settings.claude_timeout_ms == 90000
    assert settings.log_level == "DEBUG"
    assert settings.profile_paths == (tmp_path / "a", tmp_path / "b")


def test_rejects_bad_values() -> None:
    with pytest.raises(ValidationError):
        FleetSettings(FLEET_LOG_LEVEL="chatty")
    with pytest.raises(ValidationError):
        FleetSettings(MAX_BUFFER_SIZE=-1)


def test_ensure_directories(tmp_path: Path) -> None:
    settings = FleetSettings(BASE_PATH=str(tmp_path))

    settings.ensure_directories()

    for name in ("orchestrator/outbox", "projects", "agents", ".fleet"):
        assert (tmp_path / name).is_dir()
