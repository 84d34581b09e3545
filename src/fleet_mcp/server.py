"""FastMCP server bootstrap for Fleet."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .agents import AgentWorkspaces, MailboxRouter
from .claude import ClaudeRunner
from .config import FleetSettings, get_settings
from .dispatch import Dispatcher
from .errors import ProcessError, ToolNotFoundError
from .execution import MAX_RECENT, ExecutionManager
from .profiles import TargetProfileLoadError, TargetProfileLoader
from .queue import CommandQueue
from .sessions import SessionTracker
from .storage import ExecutionHistory
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Fleet server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[FleetSettings] = None,
    *,
    runner: ClaudeRunner | None = None,
) -> FastMCP:
    """Wire the engine components and expose them as MCP tools."""

    settings = settings or get_settings()

    claude_metadata = {
        "available": False,
        "path": None,
        "version": None,
        "error": None,
    }

    if runner is None:
        try:
            runner = ClaudeRunner(
                Path(settings.claude_path) if settings.claude_path else None,
                max_buffer_size=settings.max_buffer_size,
                default_timeout_ms=settings.claude_timeout_ms,
                kill_grace_seconds=settings.kill_grace_seconds,
            )
        except ToolNotFoundError as exc:
            claude_metadata["error"] = str(exc)
            runner = None

    if runner is not None:
        claude_metadata["available"] = True
        executable = getattr(runner, "executable", None)
        claude_metadata["path"] = str(executable) if executable else None
        if hasattr(runner, "version"):
            try:
                claude_metadata["version"] = _run_sync(runner.version())
            except (ProcessError, OSError) as exc:
                claude_metadata["error"] = str(exc)

    profile_loader = TargetProfileLoader(settings.profile_paths)
    workspaces = AgentWorkspaces(Path(settings.agents_path), Path(settings.orchestrator_path))
    router = MailboxRouter(workspaces)
    history = ExecutionHistory(settings.history_file)
    sessions = SessionTracker()
    queue = CommandQueue(settings.queue_file, debounce_seconds=settings.queue_debounce_seconds)
    manager = ExecutionManager(
        runner,
        history=history,
        router=router,
        sessions=sessions,
        profiles=profile_loader,
    )
    restored = manager.load_recent()
    dispatcher = Dispatcher(manager, queue)

    server = FastMCP(
        name="Fleet MCP",
        version=__version__,
        instructions=(
            "Fleet runs Claude CLI prompts against an orchestrator, projects, and agents. "
            "Each target runs one prompt at a time; extra prompts queue in arrival order. "
            "Agents exchange messages through outbox/inbox folders that are routed "
            "automatically when an agent finishes."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        manager=manager,
        queue=queue,
        dispatcher=dispatcher,
        router=router,
        workspaces=workspaces,
    )

    @server.resource(
        "resource://fleet/status",
        name="fleet_status",
        title="Fleet MCP Status",
        description="Provides the current runtime status for the Fleet MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            profile_ids = sorted(profile_loader.load_all().keys())
            profile_error: str | None = None
        except TargetProfileLoadError as exc:
            profile_ids = []
            profile_error = str(exc)

        active = manager.get_active_executions()
        recent = manager.get_recent_executions(5)
        status_counts: dict[str, int] = {}
        for record in manager.get_recent_executions(MAX_RECENT):
            status_counts[record.status] = status_counts.get(record.status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "claude": claude_metadata,
            "profiles": {
                "count": len(profile_ids),
                "ids": profile_ids,
                "error": profile_error,
            },
            "executions": {
                "active": [
                    {"id": record.id, "target": record.target_key, "source": record.source}
                    for record in active
                ],
                "recent": [
                    {"id": record.id, "target": record.target_key, "status": record.status}
                    for record in recent
                ],
                "status_counts": status_counts,
                "pending_questions": [record.id for record in manager.get_pending_questions()],
                "restored_from_history": restored,
            },
            "queue": {
                "count": len(queue),
                "next_seq_id": queue.next_seq_id,
                "by_target": {key: len(items) for key, items in queue.get_grouped().items()},
            },
            "agents": workspaces.list_agents(),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "fleet_settings", settings)
    setattr(server, "claude_runner", runner)
    setattr(server, "claude_metadata", claude_metadata)
    setattr(server, "profile_loader", profile_loader)
    setattr(server, "execution_manager", manager)
    setattr(server, "command_queue", queue)
    setattr(server, "dispatcher", dispatcher)
    setattr(server, "mailbox_router", router)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Fleet MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)
    settings.ensure_directories()

    server = create_server(settings)
    logger = logging.getLogger(__name__)
    logger.info(
        "Launching Fleet MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "claude_available": getattr(server, "claude_metadata", {}).get("available"),
            "base_path": str(settings.base_path),
        },
    )
    try:
        server.run()
    finally:
        queue = getattr(server, "command_queue", None)
        if queue is not None and not queue.flush():
            logger.warning("Queue could not be flushed on shutdown")


if __name__ == "__main__":
    main()
