"""Tool registration for Fleet MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from ..agents import AgentWorkspaces, MailboxRouter, RouteResult
from ..config import FleetSettings
from ..dispatch import Dispatcher
from ..errors import NotFoundError
from ..execution import ExecutionManager, StartExecutionOptions
from ..queue import CommandQueue
from ..targets import target_key, validate_target

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    submit_prompt: Any
    cancel_execution: Any
    answer_question: Any
    get_execution: Any
    list_executions: Any
    list_sessions: Any
    list_queue: Any
    remove_queue_item: Any
    route_messages: Any
    list_inbox: Any
    archive_inbox: Any
    broadcast_message: Any
    list_agents: Any
    create_agent: Any


def _route_payload(result: RouteResult) -> dict[str, Any]:
    return {"routed": result.routed, "errors": list(result.errors), "recipients": list(result.recipients)}


def register_tools(
    server: FastMCP,
    *,
    settings: FleetSettings,
    manager: ExecutionManager,
    queue: CommandQueue,
    dispatcher: Dispatcher,
    router: MailboxRouter,
    workspaces: AgentWorkspaces,
) -> ToolHandles:
    """Register Fleet's MCP tools on the server."""

    def _resolve_cwd(target_type: str, target_name: str) -> Path:
        validate_target(target_type, target_name)
        if target_type == "orchestrator":
            cwd = Path(settings.orchestrator_path)
        elif target_type == "project":
            cwd = Path(settings.projects_path) / target_name
        else:
            paths = workspaces.agent_paths(target_name)
            if paths is None:
                raise NotFoundError(f"Agent '{target_name}' not found")
            cwd = paths.root
        if not cwd.is_dir():
            raise NotFoundError(f"{target_type.capitalize()} '{target_name}' not found")
        return cwd

    async def _submit_prompt(
        target_type: str,
        target_name: str,
        prompt: str,
        resume_session_id: str | None = None,
        model: str | None = None,
        timeout_ms: int | None = None,
        no_resume: bool = False,
        source: str = "mcp",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a prompt against a target now, or queue it if the target is busy."""

        cwd = _resolve_cwd(target_type, target_name)
        outcome = dispatcher.submit(
            StartExecutionOptions(
                source=source,
                target_type=target_type,
                target_name=target_name,
                prompt=prompt,
                cwd=str(cwd),
                resume_session_id=resume_session_id,
                model=model,
                timeout_ms=timeout_ms,
                no_resume=no_resume,
            )
        )
        if outcome.queued is not None:
            _emit_log(
                context,
                "info",
                "Target busy; prompt queued",
                extra={"target": outcome.queued.target_key, "seq_id": outcome.queued.seq_id},
            )
            return {"status": "queued", "item": outcome.queued.to_json_dict()}

        _emit_log(
            context,
            "info",
            "Execution started",
            extra={"execution_id": outcome.execution_id, "target": target_key(target_type, target_name)},
        )
        return {"status": "started", "execution_id": outcome.execution_id}

    async def _cancel_execution(execution_id: str, context: Context | None = None) -> dict[str, Any]:
        """Cancel a running execution or dismiss a pending question."""

        cancelled = manager.cancel_execution(execution_id)
        _emit_log(
            context,
            "warning" if cancelled else "debug",
            "Cancel requested",
            extra={"execution_id": execution_id, "cancelled": cancelled},
        )
        return {"execution_id": execution_id, "cancelled": cancelled}

    async def _answer_question(
        execution_id: str,
        answer: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Answer an execution's pending question, resuming its session."""

        new_id = dispatcher.answer(execution_id, answer)
        if new_id is None:
            raise NotFoundError(f"No pending question for execution '{execution_id}'")
        _emit_log(
            context,
            "info",
            "Question answered",
            extra={"execution_id": execution_id, "resumed_as": new_id},
        )
        return {"execution_id": execution_id, "resumed_execution_id": new_id}

    def _get_execution(execution_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return the current snapshot of an execution."""

        record = manager.get_execution(execution_id)
        if record is None:
            raise NotFoundError(f"Execution '{execution_id}' not found")
        return record.snapshot()

    def _list_executions(limit: int = 20, context: Context | None = None) -> dict[str, Any]:
        """List active executions, recent history, and paused questions."""

        payload = {
            "active": [record.snapshot() for record in manager.get_active_executions()],
            "recent": [record.snapshot() for record in manager.get_recent_executions(limit)],
            "pending_questions": [record.snapshot() for record in manager.get_pending_questions()],
        }
        _emit_log(
            context,
            "debug",
            "Listing executions",
            extra={"active": len(payload["active"]), "recent": len(payload["recent"])},
        )
        return payload

    def _list_sessions(
        target_type: str,
        target_name: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Show the session a target resumes by default and its recent sessions."""

        validate_target(target_type, target_name)
        return {
            "target": target_key(target_type, target_name),
            "last_session_id": manager.last_session_id(target_type, target_name),
            "recent": manager.recent_sessions(target_type, target_name),
        }

    tool_submit = server.tool(
        name="submit_prompt",
        description=(
            "Send a prompt to the orchestrator, a project, or an agent. Starts immediately "
            "when the target is idle; otherwise the prompt is queued in arrival order."
        ),
    )(_submit_prompt)

    tool_cancel = server.tool(
        name="cancel_execution",
        description="Cancel a running execution, or dismiss the question an execution is waiting on.",
    )(_cancel_execution)

    tool_answer = server.tool(
        name="answer_question",
        description="Answer the question an execution paused on; the conversation resumes as a new execution.",
    )(_answer_question)

    tool_get = server.tool(
        name="get_execution",
        description="Fetch one execution by id, including streamed output and result.",
    )(_get_execution)

    tool_list = server.tool(
        name="list_executions",
        description="List active executions, the most recent finished ones, and pending questions.",
    )(_list_executions)

    tool_sessions = server.tool(
        name="list_sessions",
        description="Show the Claude session a target resumes by default and its recent sessions.",
    )(_list_sessions)

    def _list_queue(context: Context | None = None) -> list[dict[str, Any]]:
        """List queued prompts in global arrival order."""

        return [item.to_json_dict() for item in queue.get_all()]

    def _remove_queue_item(seq_id: int, context: Context | None = None) -> dict[str, Any]:
        """Drop a queued prompt by its sequence number."""

        item = queue.remove(seq_id)
        if item is None:
            raise NotFoundError(f"Queue item #{seq_id} not found")
        _emit_log(context, "info", "Removed queue item", extra={"seq_id": seq_id})
        return {"removed": item.to_json_dict()}

    tool_list_queue = server.tool(
        name="list_queue",
        description="List prompts waiting for a busy target, ordered by sequence number.",
    )(_list_queue)

    tool_remove_queue = server.tool(
        name="remove_queue_item",
        description="Remove one queued prompt by its sequence number.",
    )(_remove_queue_item)

    def _route_messages(agent: str | None = None, context: Context | None = None) -> dict[str, Any]:
        """Deliver outbox messages for an agent, or for the orchestrator when omitted."""

        result = router.route_messages(agent) if agent else router.route_orchestrator_messages()
        _emit_log(
            context,
            "info",
            "Routed messages",
            extra={"sender": agent or "orchestrator", "routed": result.routed},
        )
        return _route_payload(result)

    def _list_inbox(agent: str, context: Context | None = None) -> dict[str, Any]:
        """List unarchived inbox messages for an agent."""

        if not workspaces.exists(agent):
            raise NotFoundError(f"Agent '{agent}' not found")
        return {"agent": agent, "messages": router.get_inbox_messages(agent)}

    def _archive_inbox(agent: str, context: Context | None = None) -> dict[str, Any]:
        """Move an agent's inbox messages into the archive."""

        if not workspaces.exists(agent):
            raise NotFoundError(f"Agent '{agent}' not found")
        return {"agent": agent, "archived": router.archive_inbox_messages(agent)}

    def _broadcast_message(
        content: str,
        sender: str = "operator",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Write a message into every agent's inbox."""

        result = router.broadcast_message(content, sender=sender)
        _emit_log(context, "info", "Broadcast message", extra={"sent": result.routed})
        return {"sent": result.routed, "errors": list(result.errors)}

    def _list_agents(context: Context | None = None) -> list[dict[str, Any]]:
        """List agent workspaces with unread inbox counts."""

        payload: list[dict[str, Any]] = []
        for name in workspaces.list_agents():
            info = workspaces.agent_info(name)
            if info is None:
                continue
            payload.append(
                {
                    "name": info.name,
                    "inbox_count": info.inbox_count,
                    "last_execution": info.last_execution.isoformat() if info.last_execution else None,
                    "active": manager.is_target_active("agent", name),
                }
            )
        return payload

    def _create_agent(name: str, context: Context | None = None) -> dict[str, Any]:
        """Create the workspace directories for a new agent."""

        paths = workspaces.create_agent_structure(name)
        _emit_log(context, "info", "Created agent", extra={"agent": name})
        return {"agent": name, "root": str(paths.root)}

    tool_route = server.tool(
        name="route_messages",
        description="Move PARA-<recipient>_* files from an outbox into recipients' inboxes.",
    )(_route_messages)

    tool_inbox = server.tool(
        name="list_inbox",
        description="List unprocessed DE-*.md messages in an agent's inbox.",
    )(_list_inbox)

    tool_archive = server.tool(
        name="archive_inbox",
        description="Archive all unprocessed messages in an agent's inbox.",
    )(_archive_inbox)

    tool_broadcast = server.tool(
        name="broadcast_message",
        description="Deliver a message to every agent's inbox.",
    )(_broadcast_message)

    tool_list_agents = server.tool(
        name="list_agents",
        description="List agent workspaces with inbox counts and whether each is running.",
    )(_list_agents)

    tool_create_agent = server.tool(
        name="create_agent",
        description="Create an agent workspace with context, inbox, outbox, output, and input folders.",
    )(_create_agent)

    return ToolHandles(
        submit_prompt=tool_submit,
        cancel_execution=tool_cancel,
        answer_question=tool_answer,
        get_execution=tool_get,
        list_executions=tool_list,
        list_sessions=tool_sessions,
        list_queue=tool_list_queue,
        remove_queue_item=tool_remove_queue,
        route_messages=tool_route,
        list_inbox=tool_inbox,
        archive_inbox=tool_archive,
        broadcast_message=tool_broadcast,
        list_agents=tool_list_agents,
        create_agent=tool_create_agent,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Prefer the MCP context logger when available, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
