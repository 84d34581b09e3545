"""Agent workspaces and mailbox routing."""

from .mailbox import FilesystemMailboxStore, MailboxRouter, MailboxStore, RouteResult
from .workspace import AgentInfo, AgentPaths, AgentWorkspaces

__all__ = [
    "AgentInfo",
    "AgentPaths",
    "AgentWorkspaces",
    "FilesystemMailboxStore",
    "MailboxRouter",
    "MailboxStore",
    "RouteResult",
]
