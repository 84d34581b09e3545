"""Agent workspace layout on disk."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..errors import ValidationError
from ..targets import is_valid_name

ARCHIVE_DIRNAME = "archived"


@dataclass(slots=True)
class AgentPaths:
    root: Path
    context: Path
    inbox: Path
    outbox: Path
    output: Path
    input: Path

    @property
    def archive(self) -> Path:
        return self.inbox / ARCHIVE_DIRNAME

    @classmethod
    def for_root(cls, root: Path) -> "AgentPaths":
        return cls(
            root=root,
            context=root / "context",
            inbox=root / "inbox",
            outbox=root / "outbox",
            output=root / "output",
            input=root / "input",
        )


@dataclass(slots=True)
class AgentInfo:
    name: str
    inbox_count: int
    last_execution: datetime | None


class AgentWorkspaces:
    """Resolves agent directories under a single agents root."""

    def __init__(self, agents_path: Path, orchestrator_path: Path | None = None) -> None:
        self._agents_path = Path(agents_path).resolve()
        self._orchestrator_path = Path(orchestrator_path).resolve() if orchestrator_path else None

    @property
    def agents_path(self) -> Path:
        return self._agents_path

    @property
    def orchestrator_outbox(self) -> Path | None:
        if self._orchestrator_path is None:
            return None
        return self._orchestrator_path / "outbox"

    def safe_agent_path(self, name: str) -> Path | None:
        if not is_valid_name(name):
            return None
        candidate = self._agents_path / name
        if candidate.parent != self._agents_path:
            return None
        return candidate

    def agent_paths(self, name: str) -> AgentPaths | None:
        root = self.safe_agent_path(name)
        if root is None:
            return None
        return AgentPaths.for_root(root)

    def exists(self, name: str) -> bool:
        paths = self.agent_paths(name)
        return paths is not None and paths.root.is_dir()

    def create_agent_structure(self, name: str) -> AgentPaths:
        paths = self.agent_paths(name)
        if paths is None:
            raise ValidationError(f"Invalid agent name '{name}'")
        for directory in (paths.root, paths.context, paths.inbox, paths.outbox, paths.output, paths.input):
            directory.mkdir(parents=True, exist_ok=True)
        return paths

    def list_agents(self) -> list[str]:
        if not self._agents_path.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._agents_path.iterdir()
            if entry.is_dir() and is_valid_name(entry.name)
        )

    def agent_info(self, name: str) -> AgentInfo | None:
        paths = self.agent_paths(name)
        if paths is None or not paths.root.is_dir():
            return None

        inbox_count = 0
        if paths.inbox.is_dir():
            inbox_count = sum(1 for entry in paths.inbox.iterdir() if entry.is_file())

        last_execution: datetime | None = None
        if paths.output.is_dir():
            for entry in paths.output.iterdir():
                modified = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
                if last_execution is None or modified > last_execution:
                    last_execution = modified

        return AgentInfo(name=name, inbox_count=inbox_count, last_execution=last_execution)


__all__ = ["ARCHIVE_DIRNAME", "AgentInfo", "AgentPaths", "AgentWorkspaces"]
