"""Fleet MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from pydantic import ValidationError

from fleet_mcp.config import FleetSettings
from fleet_mcp.sessions import SessionTracker
from fleet_mcp.storage import ExecutionHistory, HistoryEntry, PersistedQueue, QueueItem
from fleet_mcp.storage.persister import JsonPersister


def load_queue_items(settings: FleetSettings) -> list[QueueItem]:
    data = JsonPersister(settings.queue_file, "queue").read()
    if data is None:
        return []
    try:
        persisted = PersistedQueue.model_validate(data)
    except ValidationError as exc:
        print(f"Queue unreadable: {exc}")
        raise SystemExit(1)
    return sorted(persisted.items, key=lambda item: item.seq_id)


def load_history(settings: FleetSettings, limit: int) -> list[HistoryEntry]:
    return ExecutionHistory(settings.history_file).load(limit)


def cmd_queue(args: argparse.Namespace) -> None:
    items = load_queue_items(FleetSettings())
    if args.json:
        print(json.dumps([item.to_json_dict() for item in items], indent=2))
    else:
        for item in items:
            print(f"#{item.seq_id} {item.target_key} [{item.source}] {item.prompt[:60]}")


def cmd_history(args: argparse.Namespace) -> None:
    entries = load_history(FleetSettings(), args.limit)
    if args.target:
        entries = [
            entry for entry in entries if f"{entry.target_type}:{entry.target_name}" == args.target
        ]
    print(json.dumps([entry.to_json_dict() for entry in entries], indent=2))


def cmd_sessions(args: argparse.Namespace) -> None:
    tracker = SessionTracker()
    tracker.rebuild(load_history(FleetSettings(), args.limit))
    print(json.dumps(tracker.snapshot(), indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = FleetSettings()
    entries = load_history(settings, args.limit)
    items = load_queue_items(settings)

    status_counts: dict[str, int] = {}
    source_counts: dict[str, int] = {}
    total_cost = 0.0
    for entry in entries:
        status_counts[entry.status] = status_counts.get(entry.status, 0) + 1
        source_counts[entry.source] = source_counts.get(entry.source, 0) + 1
        total_cost += entry.cost_usd

    queued_by_target: dict[str, int] = {}
    for item in items:
        queued_by_target[item.target_key] = queued_by_target.get(item.target_key, 0) + 1

    metrics = {
        "executions_total": len(entries),
        "status_counts": status_counts,
        "source_counts": source_counts,
        "total_cost_usd": round(total_cost, 6),
        "queued_total": len(items),
        "queued_by_target": queued_by_target,
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fleet MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_queue = sub.add_parser("queue", help="List queued prompts")
    p_queue.add_argument("--json", action="store_true", help="Output JSON")
    p_queue.set_defaults(func=cmd_queue)

    p_history = sub.add_parser("history", help="Show persisted execution history")
    p_history.add_argument("--target", help="Filter by target key, e.g. agent:alice")
    p_history.add_argument("--limit", type=int, default=20)
    p_history.set_defaults(func=cmd_history)

    p_sessions = sub.add_parser("sessions", help="Show per-target session continuity")
    p_sessions.add_argument("--limit", type=int, default=100)
    p_sessions.set_defaults(func=cmd_sessions)

    p_metrics = sub.add_parser("metrics", help="Show execution and queue counts")
    p_metrics.add_argument("--limit", type=int, default=300)
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
