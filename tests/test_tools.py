from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fleet_mcp.agents import AgentWorkspaces, MailboxRouter
from fleet_mcp.claude import ClaudeResult, PermissionDenial
from fleet_mcp.config import FleetSettings
from fleet_mcp.dispatch import Dispatcher
from fleet_mcp.errors import NotFoundError, ValidationError
from fleet_mcp.execution import ExecutionManager
from fleet_mcp.queue import CommandQueue
from fleet_mcp.tools import register_tools

from stubs import Scripted, StubRunner


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class Fleet:
    def __init__(self, tmp_path: Path, *scripts: Scripted) -> None:
        self.settings = FleetSettings(BASE_PATH=str(tmp_path))
        self.settings.ensure_directories()
        self.workspaces = AgentWorkspaces(self.settings.agents_path, self.settings.orchestrator_path)
        self.router = MailboxRouter(self.workspaces)
        self.runner = StubRunner(*scripts)
        self.manager = ExecutionManager(self.runner, router=self.router)
        self.queue = CommandQueue(self.settings.queue_file, debounce_seconds=0)
        self.dispatcher = Dispatcher(self.manager, self.queue)
        self.server = StubServer()
        self.handles = register_tools(
            self.server,  # type: ignore[arg-type]
            settings=self.settings,
            manager=self.manager,
            queue=self.queue,
            dispatcher=self.dispatcher,
            router=self.router,
            workspaces=self.workspaces,
        )


def test_all_tools_are_registered(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path)

    assert set(fleet.server._tools) == {
        "submit_prompt",
        "cancel_execution",
        "answer_question",
        "get_execution",
        "list_executions",
        "list_sessions",
        "list_queue",
        "remove_queue_item",
        "route_messages",
        "list_inbox",
        "archive_inbox",
        "broadcast_message",
        "list_agents",
        "create_agent",
    }


def test_submit_prompt_starts_then_queues(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path, Scripted(hold=True, result=ClaudeResult(output="done", session_id="s1")))
    fleet.handles.create_agent.fn("alice")  # type: ignore[attr-defined]

    async def scenario():
        started = await fleet.handles.submit_prompt.fn("agent", "alice", "first")  # type: ignore[attr-defined]
        queued = await fleet.handles.submit_prompt.fn("agent", "alice", "second")  # type: ignore[attr-defined]
        listing = fleet.handles.list_queue.fn()  # type: ignore[attr-defined]
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        fleet.runner.release(0)
        await fleet.manager.wait_idle()
        return started, queued, listing

    started, queued, listing = asyncio.run(scenario())

    assert started["status"] == "started"
    assert queued["status"] == "queued"
    assert queued["item"]["seqId"] == 1
    assert [item["prompt"] for item in listing] == ["second"]
    assert fleet.runner.calls[0]["cwd"] == str(fleet.workspaces.agent_paths("alice").root)
    assert [call["prompt"] for call in fleet.runner.calls] == ["first", "second"]

    snapshot = fleet.handles.get_execution.fn(started["execution_id"])  # type: ignore[attr-defined]
    assert snapshot["status"] == "completed"
    assert snapshot["targetName"] == "alice"

    listing = fleet.handles.list_executions.fn(limit=5)  # type: ignore[attr-defined]
    assert len(listing["recent"]) == 2
    assert listing["active"] == []

    sessions = fleet.handles.list_sessions.fn("agent", "alice")  # type: ignore[attr-defined]
    assert sessions["target"] == "agent:alice"
    assert sessions["last_session_id"] == "sess-2"


def test_submit_prompt_validates_target(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path)

    with pytest.raises(NotFoundError):
        asyncio.run(fleet.handles.submit_prompt.fn("project", "missing", "hi"))  # type: ignore[attr-defined]
    with pytest.raises(ValidationError):
        asyncio.run(fleet.handles.submit_prompt.fn("agent", "../etc", "hi"))  # type: ignore[attr-defined]


def test_orchestrator_runs_in_orchestrator_directory(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path)

    async def scenario():
        await fleet.handles.submit_prompt.fn("orchestrator", "main", "plan")  # type: ignore[attr-defined]
        await fleet.manager.wait_idle()

    asyncio.run(scenario())

    assert fleet.runner.calls[0]["cwd"] == str(fleet.settings.orchestrator_path)


def test_answer_question_resumes(tmp_path: Path) -> None:
    denial = PermissionDenial(
        tool_name="AskUserQuestion",
        tool_use_id="q1",
        tool_input={"questions": [{"question": "Ship?"}]},
    )
    fleet = Fleet(tmp_path, Scripted(result=ClaudeResult(session_id="s-q", permission_denials=[denial])))
    fleet.handles.create_agent.fn("alice")  # type: ignore[attr-defined]

    async def scenario():
        started = await fleet.handles.submit_prompt.fn("agent", "alice", "release")  # type: ignore[attr-defined]
        await fleet.manager.wait_idle()
        pending = fleet.handles.list_executions.fn()["pending_questions"]  # type: ignore[attr-defined]
        answered = await fleet.handles.answer_question.fn(started["execution_id"], "yes")  # type: ignore[attr-defined]
        await fleet.manager.wait_idle()
        return started, pending, answered

    started, pending, answered = asyncio.run(scenario())

    assert pending[0]["pendingQuestion"]["toolUseId"] == "q1"
    assert answered["execution_id"] == started["execution_id"]
    assert fleet.runner.calls[1]["resume_session_id"] == "s-q"

    with pytest.raises(NotFoundError):
        asyncio.run(fleet.handles.answer_question.fn(started["execution_id"], "again"))  # type: ignore[attr-defined]


def test_cancel_and_remove_queue_item(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path, Scripted(hold=True, result=ClaudeResult()))
    fleet.handles.create_agent.fn("alice")  # type: ignore[attr-defined]

    async def scenario():
        started = await fleet.handles.submit_prompt.fn("agent", "alice", "long")  # type: ignore[attr-defined]
        queued = await fleet.handles.submit_prompt.fn("agent", "alice", "dropped")  # type: ignore[attr-defined]
        removed = fleet.handles.remove_queue_item.fn(queued["item"]["seqId"])  # type: ignore[attr-defined]
        await asyncio.sleep(0)
        cancelled = await fleet.handles.cancel_execution.fn(started["execution_id"])  # type: ignore[attr-defined]
        again = await fleet.handles.cancel_execution.fn(started["execution_id"])  # type: ignore[attr-defined]
        await fleet.manager.wait_idle()
        return removed, cancelled, again

    removed, cancelled, again = asyncio.run(scenario())

    assert removed["removed"]["prompt"] == "dropped"
    assert cancelled["cancelled"] is True
    assert again["cancelled"] is False
    assert len(fleet.runner.calls) == 1
    with pytest.raises(NotFoundError):
        fleet.handles.remove_queue_item.fn(42)  # type: ignore[attr-defined]


def test_mailbox_tools(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path)
    for name in ("alice", "bob"):
        fleet.handles.create_agent.fn(name)  # type: ignore[attr-defined]
    outbox = fleet.settings.orchestrator_path / "outbox"
    (outbox / "PARA-bob_plan.md").write_text("do the plan", encoding="utf-8")

    routed = fleet.handles.route_messages.fn()  # type: ignore[attr-defined]
    assert routed == {"routed": 1, "errors": [], "recipients": ["bob"]}

    inbox = fleet.handles.list_inbox.fn("bob")  # type: ignore[attr-defined]
    assert inbox["messages"] == ["DE-orchestrator_plan.md"]

    agents = fleet.handles.list_agents.fn()  # type: ignore[attr-defined]
    assert [(agent["name"], agent["inbox_count"]) for agent in agents] == [("alice", 0), ("bob", 1)]

    broadcast = fleet.handles.broadcast_message.fn("hello all")  # type: ignore[attr-defined]
    assert broadcast["sent"] == 2

    archived = fleet.handles.archive_inbox.fn("bob")  # type: ignore[attr-defined]
    assert archived["archived"] == 2
    assert fleet.handles.list_inbox.fn("bob")["messages"] == []  # type: ignore[attr-defined]

    with pytest.raises(NotFoundError):
        fleet.handles.list_inbox.fn("ghost")  # type: ignore[attr-defined]
    with pytest.raises(ValidationError):
        fleet.handles.create_agent.fn("bad/name")  # type: ignore[attr-defined]


def test_get_execution_unknown(tmp_path: Path) -> None:
    fleet = Fleet(tmp_path)

    with pytest.raises(NotFoundError):
        fleet.handles.get_execution.fn("missing")  # type: ignore[attr-defined]
