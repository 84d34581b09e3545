from __future__ import annotations

from pathlib import Path

import pytest

from fleet_mcp.agents import AgentWorkspaces, MailboxRouter
from fleet_mcp.errors import ValidationError


@pytest.fixture()
def workspaces(tmp_path: Path) -> AgentWorkspaces:
    workspaces = AgentWorkspaces(tmp_path / "agents", tmp_path / "orchestrator")
    for name in ("alice", "bob", "data_team"):
        workspaces.create_agent_structure(name)
    (tmp_path / "orchestrator" / "outbox").mkdir(parents=True)
    return workspaces


@pytest.fixture()
def router(workspaces: AgentWorkspaces) -> MailboxRouter:
    return MailboxRouter(workspaces)


def test_route_moves_outbox_file_into_recipient_inbox(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    bob = workspaces.agent_paths("bob")
    (alice.outbox / "PARA-bob_task.md").write_text("please review", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.routed == 1
    assert result.recipients == ["bob"]
    assert result.errors == []
    assert not (alice.outbox / "PARA-bob_task.md").exists()
    assert (bob.inbox / "DE-alice_task.md").read_text(encoding="utf-8") == "please review"


def test_route_ignores_non_outbound_files(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    (alice.outbox / "notes.md").write_text("draft", encoding="utf-8")
    (alice.outbox / "PARA-nounderscore.md").write_text("x", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.routed == 0
    assert (alice.outbox / "notes.md").exists()


def test_recipient_with_underscore_is_resolved(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    (alice.outbox / "PARA-data_team_report.md").write_text("numbers", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.recipients == ["data_team"]
    assert (workspaces.agent_paths("data_team").inbox / "DE-alice_report.md").exists()


def test_split_uses_first_known_agent_prefix_not_last_underscore(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    (alice.outbox / "PARA-bob_weekly_status_report.md").write_text("status", encoding="utf-8")
    (alice.outbox / "PARA-ghost_release_notes.md").write_text("notes", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.recipients == ["bob"]
    assert (workspaces.agent_paths("bob").inbox / "DE-alice_weekly_status_report.md").exists()
    assert result.errors == ["Unknown agent: ghost"]


def test_undecodable_message_still_appears_in_inbox_prompt(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    bob = workspaces.agent_paths("bob")
    (bob.inbox / "DE-alice_binary.md").write_bytes(b"\xff\xfeok")

    prompt = router.build_inbox_prompt("bob")

    assert "DE-alice_binary.md" in prompt
    assert "\ufffd" in prompt


def test_traversal_recipient_is_rejected(workspaces: AgentWorkspaces, router: MailboxRouter, tmp_path: Path) -> None:
    alice = workspaces.agent_paths("alice")
    (alice.outbox / "PARA-.._evil.md").write_text("escape", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.routed == 0
    assert result.errors == ["Invalid recipient: .."]
    assert (alice.outbox / "PARA-.._evil.md").exists()
    assert not any(path.name.startswith("DE-") for path in tmp_path.rglob("*"))


def test_unknown_recipient_leaves_message_in_outbox(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    (alice.outbox / "PARA-carol_hello.md").write_text("hi", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.errors == ["Unknown agent: carol"]
    assert (alice.outbox / "PARA-carol_hello.md").exists()


def test_existing_inbox_file_is_not_overwritten(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    alice = workspaces.agent_paths("alice")
    bob = workspaces.agent_paths("bob")
    (bob.inbox / "DE-alice_task.md").write_text("first", encoding="utf-8")
    (alice.outbox / "PARA-bob_task.md").write_text("second", encoding="utf-8")

    result = router.route_messages("alice")

    assert result.routed == 0
    assert len(result.errors) == 1
    assert (bob.inbox / "DE-alice_task.md").read_text(encoding="utf-8") == "first"
    assert (alice.outbox / "PARA-bob_task.md").exists()


def test_orchestrator_outbox_routes_as_orchestrator(workspaces: AgentWorkspaces, router: MailboxRouter, tmp_path: Path) -> None:
    (tmp_path / "orchestrator" / "outbox" / "PARA-alice_plan.md").write_text("plan", encoding="utf-8")

    result = router.route_orchestrator_messages()

    assert result.recipients == ["alice"]
    assert (workspaces.agent_paths("alice").inbox / "DE-orchestrator_plan.md").exists()


def test_invalid_sender_is_rejected(router: MailboxRouter, tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        router.route_from_outbox(tmp_path, "../alice")


def test_inbox_prompt_and_archive(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    bob = workspaces.agent_paths("bob")
    (bob.inbox / "DE-alice_task.md").write_text("review PR 12", encoding="utf-8")
    (bob.inbox / "DE-orchestrator_plan.md").write_text("ship it", encoding="utf-8")
    (bob.inbox / "scratch.txt").write_text("ignored", encoding="utf-8")

    assert router.get_inbox_messages("bob") == ["DE-alice_task.md", "DE-orchestrator_plan.md"]

    prompt = router.build_inbox_prompt("bob")
    assert prompt is not None
    assert prompt.startswith("You have 2 new messages in your inbox")
    assert "### DE-alice_task.md" in prompt
    assert "review PR 12" in prompt
    assert "PARA-<recipient>_<subject>.md" in prompt

    assert router.archive_inbox_messages("bob") == 2
    assert router.get_inbox_messages("bob") == []
    assert (bob.archive / "DE-alice_task.md").exists()
    assert router.build_inbox_prompt("bob") is None


def test_broadcast_reaches_every_agent(workspaces: AgentWorkspaces, router: MailboxRouter) -> None:
    result = router.broadcast_message("standup in 5", sender="operator")

    assert result.routed == 3
    assert sorted(result.recipients) == ["alice", "bob", "data_team"]
    for name in ("alice", "bob", "data_team"):
        messages = router.get_inbox_messages(name)
        assert len(messages) == 1
        assert messages[0].startswith("DE-operator_")
        assert messages[0].endswith("_broadcast.md")


def test_create_agent_rejects_bad_names(workspaces: AgentWorkspaces) -> None:
    with pytest.raises(ValidationError):
        workspaces.create_agent_structure("..")
    with pytest.raises(ValidationError):
        workspaces.create_agent_structure("a/b")


def test_agent_info_counts_inbox(workspaces: AgentWorkspaces) -> None:
    (workspaces.agent_paths("alice").inbox / "DE-bob_x.md").write_text("x", encoding="utf-8")

    info = workspaces.agent_info("alice")

    assert info is not None
    assert info.inbox_count == 1
    assert info.last_execution is None
    assert workspaces.agent_info("ghost") is None
    assert workspaces.list_agents() == ["alice", "bob", "data_team"]
