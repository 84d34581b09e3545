"""File-based mailboxes between agent workspaces.

A message is a file. Senders drop ``PARA-<recipient>_<rest>`` into their
outbox; routing renames it into the recipient's inbox as
``DE-<sender>_<rest>``. A rename happens at most once, so the filesystem is
the only coordination primitive: a failed move leaves the original in place
for the next pass.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ..errors import NotFoundError, PathTraversalError, ValidationError
from ..targets import is_valid_name
from .workspace import AgentPaths, AgentWorkspaces

logger = logging.getLogger(__name__)

OUTBOX_PREFIX = "PARA-"
INBOX_PREFIX = "DE-"
INBOX_PATTERN = re.compile(r"^DE-.+\.md$")
ORCHESTRATOR_SENDER = "orchestrator"


class MailboxStore(Protocol):
    """Storage operations the router relies on."""

    def exists(self, directory: Path) -> bool:
        ...

    def list_names(self, directory: Path) -> list[str]:
        ...

    def move(self, source: Path, destination: Path) -> None:
        ...

    def read_text(self, path: Path) -> str:
        ...

    def write_text(self, path: Path, text: str) -> None:
        ...

    def ensure_dir(self, directory: Path) -> None:
        ...


class FilesystemMailboxStore:
    """``MailboxStore`` on a local POSIX filesystem."""

    def exists(self, directory: Path) -> bool:
        return directory.is_dir()

    def list_names(self, directory: Path) -> list[str]:
        return sorted(entry.name for entry in directory.iterdir() if entry.is_file())

    def move(self, source: Path, destination: Path) -> None:
        if destination.exists():
            raise FileExistsError(f"{destination.name} already exists")
        source.rename(destination)

    def read_text(self, path: Path) -> str:
        return path.read_bytes().decode("utf-8", errors="replace")

    def write_text(self, path: Path, text: str) -> None:
        path.write_text(text, encoding="utf-8")

    def ensure_dir(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass(slots=True)
class RouteResult:
    routed: int = 0
    errors: list[str] = field(default_factory=list)
    recipients: list[str] = field(default_factory=list)

    def add_recipient(self, name: str) -> None:
        if name not in self.recipients:
            self.recipients.append(name)


class MailboxRouter:
    """Moves outbound messages into inboxes and prepares inbox prompts."""

    def __init__(self, workspaces: AgentWorkspaces, store: MailboxStore | None = None) -> None:
        self._workspaces = workspaces
        self._store = store or FilesystemMailboxStore()

    @property
    def workspaces(self) -> AgentWorkspaces:
        return self._workspaces

    def _split_outbox_name(self, filename: str) -> tuple[str, str] | None:
        """Return ``(recipient, rest)`` for a ``PARA-`` filename.

        Agent names may contain underscores, so the first split point whose
        prefix names an existing agent wins; otherwise the first underscore.
        A greedy split at the last underscore would misroute subjects that
        contain underscores (``PARA-bob_weekly_report.md``).
        """

        if not filename.startswith(OUTBOX_PREFIX):
            return None
        body = filename[len(OUTBOX_PREFIX) :]
        splits = [index for index, char in enumerate(body) if char == "_" and 0 < index < len(body) - 1]
        if not splits:
            return None
        for index in splits:
            if self._workspaces.exists(body[:index]):
                return body[:index], body[index + 1 :]
        first = splits[0]
        return body[:first], body[first + 1 :]

    def _inbox_for(self, recipient: str) -> AgentPaths:
        if not is_valid_name(recipient):
            raise ValidationError(f"Invalid recipient: {recipient}")
        paths = self._workspaces.agent_paths(recipient)
        if paths is None or not self._store.exists(paths.inbox):
            raise NotFoundError(f"Unknown agent: {recipient}")
        return paths

    @staticmethod
    def _destination(inbox: Path, filename: str) -> Path:
        destination = inbox / filename
        if destination.resolve().parent != inbox.resolve():
            raise PathTraversalError(f"Destination escapes inbox: {filename}")
        return destination

    def route_from_outbox(self, outbox_dir: Path, sender_name: str) -> RouteResult:
        if not is_valid_name(sender_name):
            raise ValidationError(f"Invalid sender: {sender_name}")

        result = RouteResult()
        outbox_dir = Path(outbox_dir)
        if not self._store.exists(outbox_dir):
            return result
        try:
            files = self._store.list_names(outbox_dir)
        except OSError as exc:
            logger.warning("Could not list outbox", extra={"outbox": str(outbox_dir), "error": str(exc)})
            return result

        for filename in files:
            parsed = self._split_outbox_name(filename)
            if parsed is None:
                continue
            recipient, rest = parsed
            try:
                paths = self._inbox_for(recipient)
                destination = self._destination(paths.inbox, f"{INBOX_PREFIX}{sender_name}_{rest}")
                self._store.move(outbox_dir / filename, destination)
            except (ValidationError, NotFoundError) as exc:
                result.errors.append(str(exc))
                continue
            except OSError as exc:
                result.errors.append(f"Failed to route {filename}: {exc}")
                continue
            result.routed += 1
            result.add_recipient(recipient)

        if result.routed or result.errors:
            logger.info(
                "Routed outbox messages",
                extra={
                    "sender": sender_name,
                    "routed": result.routed,
                    "errors": len(result.errors),
                    "recipients": result.recipients,
                },
            )
        return result

    def route_messages(self, agent: str) -> RouteResult:
        paths = self._workspaces.agent_paths(agent)
        if paths is None or not self._store.exists(paths.outbox):
            return RouteResult()
        return self.route_from_outbox(paths.outbox, agent)

    def route_orchestrator_messages(self) -> RouteResult:
        outbox = self._workspaces.orchestrator_outbox
        if outbox is None or not self._store.exists(outbox):
            return RouteResult()
        return self.route_from_outbox(outbox, ORCHESTRATOR_SENDER)

    def _require_paths(self, agent: str) -> AgentPaths:
        paths = self._workspaces.agent_paths(agent)
        if paths is None:
            raise ValidationError(f"Invalid agent name: {agent}")
        return paths

    def get_inbox_messages(self, agent: str) -> list[str]:
        paths = self._require_paths(agent)
        if not self._store.exists(paths.inbox):
            return []
        return sorted(name for name in self._store.list_names(paths.inbox) if INBOX_PATTERN.match(name))

    def archive_inbox_messages(self, agent: str) -> int:
        paths = self._require_paths(agent)
        messages = self.get_inbox_messages(agent)
        if not messages:
            return 0
        self._store.ensure_dir(paths.archive)
        moved = 0
        for name in messages:
            try:
                self._store.move(paths.inbox / name, paths.archive / name)
            except OSError as exc:
                logger.warning(
                    "Could not archive inbox message",
                    extra={"agent": agent, "file": name, "error": str(exc)},
                )
                continue
            moved += 1
        return moved

    def build_inbox_prompt(self, agent: str) -> str | None:
        paths = self._require_paths(agent)
        messages = self.get_inbox_messages(agent)
        if not messages:
            return None

        count = len(messages)
        noun = "message" if count == 1 else "messages"
        sections = [f"You have {count} new {noun} in your inbox ({paths.inbox}):"]
        for name in messages:
            try:
                content = self._store.read_text(paths.inbox / name)
            except (OSError, UnicodeDecodeError) as exc:
                content = f"(could not read message: {exc})"
            sections.append(f"### {name}\n```\n{content.rstrip()}\n```")
        sections.append(
            "Process each message. To reply or hand off work, write a file to your "
            f"outbox ({paths.outbox}) named {OUTBOX_PREFIX}<recipient>_<subject>.md; "
            f"it will be delivered automatically. Processed messages are moved to "
            f"{paths.archive}."
        )
        return "\n\n".join(sections)

    def broadcast_message(self, content: str, sender: str = "operator") -> RouteResult:
        """Write ``content`` into every agent inbox as a broadcast."""

        if not is_valid_name(sender):
            raise ValidationError(f"Invalid sender: {sender}")
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        filename = f"{INBOX_PREFIX}{sender}_{stamp}_broadcast.md"
        result = RouteResult()
        for agent in self._workspaces.list_agents():
            paths = self._workspaces.agent_paths(agent)
            if paths is None:
                continue
            try:
                self._store.ensure_dir(paths.inbox)
                self._store.write_text(paths.inbox / filename, content)
            except OSError as exc:
                result.errors.append(f"{agent}: {exc}")
                continue
            result.routed += 1
            result.add_recipient(agent)
        return result


__all__ = [
    "FilesystemMailboxStore",
    "INBOX_PATTERN",
    "MailboxRouter",
    "MailboxStore",
    "RouteResult",
]
