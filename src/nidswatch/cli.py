"""
NIDS Watch Command Line Interface.

Provides commands for operating NIDS Watch:
- run: Start the daemon in the foreground
- ingest: Ingest newline-delimited JSON events from a file or stdin
- alerts: Show recent alerts
- rules: List, create, update and delete rules
- audit: Show the rule audit trail
- notifications: Show pending notifications
- status: Show store statistics
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from nidswatch import __version__
from nidswatch.config import load_config
from nidswatch.errors import DecodeError, NidsWatchError, NotFoundError, ValidationError
from nidswatch.ingest.framer import iter_lines
from nidswatch.ingest.ingestor import AlertIngestor
from nidswatch.rules.audit import RuleAuditEngine
from nidswatch.store.database import EventStore


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="nidswatch",
        description="Network sensor alert ingestion and rule audit",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the daemon in the foreground")
    run_parser.add_argument(
        "--no-sensor",
        action="store_true",
        help="Do not launch the sensor process",
    )
    run_parser.set_defaults(func=cmd_run)

    # ingest command
    ingest_parser = subparsers.add_parser(
        "ingest", help="Ingest newline-delimited JSON events"
    )
    ingest_parser.add_argument(
        "file",
        nargs="?",
        help="Input file (default: stdin)",
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    # alerts command
    alerts_parser = subparsers.add_parser("alerts", help="Show recent alerts")
    alerts_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=20,
        help="Number of alerts to show",
    )
    alerts_parser.set_defaults(func=cmd_alerts)

    # rules command
    rules_parser = subparsers.add_parser("rules", help="Manage detection rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_cmd")

    rules_sub.add_parser("list", help="List rules")

    create_parser = rules_sub.add_parser("create", help="Create a rule")
    create_parser.add_argument("name", help="Rule name")
    create_parser.add_argument("pattern", help="Rule pattern")
    create_parser.add_argument("--disabled", action="store_true", help="Create disabled")
    create_parser.add_argument(
        "--notify", action="store_true", help="Notify on changes to this rule"
    )

    update_parser = rules_sub.add_parser("update", help="Update a rule")
    update_parser.add_argument("id", type=int, help="Rule ID")
    update_parser.add_argument("--name", help="New name")
    update_parser.add_argument("--pattern", help="New pattern")
    update_parser.add_argument(
        "--enabled", choices=["true", "false"], help="Enable or disable"
    )
    update_parser.add_argument(
        "--notify", choices=["true", "false"], help="Notify on change"
    )

    delete_parser = rules_sub.add_parser("delete", help="Delete a rule")
    delete_parser.add_argument("id", type=int, help="Rule ID")

    for sub in (create_parser, update_parser, delete_parser):
        sub.add_argument("--actor", type=int, help="Actor ID recorded in the audit log")

    rules_parser.set_defaults(func=cmd_rules)

    # audit command
    audit_parser = subparsers.add_parser("audit", help="Show rule audit trail")
    audit_parser.add_argument("--rule", type=int, help="Only entries for this rule")
    audit_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=50,
        help="Number of entries to show",
    )
    audit_parser.set_defaults(func=cmd_audit)

    # notifications command
    notif_parser = subparsers.add_parser(
        "notifications", help="Show pending notifications"
    )
    notif_parser.set_defaults(func=cmd_notifications)

    # status command
    status_parser = subparsers.add_parser("status", help="Show store statistics")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


def get_store(args: argparse.Namespace) -> EventStore:
    """Get event store instance from config."""
    config = load_config(args.config)
    return EventStore(
        config.database.path,
        wal_mode=config.database.wal_mode,
        busy_timeout=config.database.busy_timeout,
    )


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                for key, value in item.items():
                    print(f"  {key}: {value}")
                print()
            else:
                print(f"  {item}")
    else:
        print(data)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the daemon."""
    from nidswatch.daemon import main as daemon_main

    daemon_args = []
    if args.config:
        daemon_args.extend(["-c", args.config])
    if args.no_sensor:
        daemon_args.append("--no-sensor")

    return daemon_main(daemon_args)


def cmd_ingest(args: argparse.Namespace) -> int:
    """Ingest events from a file or stdin."""
    store = get_store(args)
    ingestor = AlertIngestor(store)
    accepted = 0
    rejected = 0

    try:
        stream = open(args.file, "rb") if args.file else sys.stdin.buffer
        try:
            for line in iter_lines(iter(lambda: stream.read(4096), b"")):
                try:
                    ingestor.ingest(line)
                    accepted += 1
                except (DecodeError, ValidationError) as e:
                    rejected += 1
                    print(f"Rejected: {e}: {line}", file=sys.stderr)
        finally:
            if args.file:
                stream.close()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except NidsWatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    output(
        {
            "accepted": accepted,
            "rejected": rejected,
            "notifications_enqueued": ingestor.enqueued,
        },
        args,
    )
    return 0 if rejected == 0 else 2


def cmd_alerts(args: argparse.Namespace) -> int:
    """Show recent alerts."""
    store = get_store(args)
    try:
        alerts = store.recent_alerts(limit=args.limit)
        if getattr(args, "json", False):
            output([a.to_dict() for a in alerts], args)
            return 0

        print(f"Recent Alerts ({len(alerts)})")
        print("=" * 78)
        if not alerts:
            print("No alerts recorded")
        for a in alerts:
            print(
                f"{a.id:>6}  {a.ts:%Y-%m-%d %H:%M:%S}  {a.severity:<8}  "
                f"{a.src_ip} -> {a.dst_ip}  {a.proto or '-'}  {a.description or ''}"
            )
        return 0
    finally:
        store.close()


def _flag(value: str | None) -> bool | None:
    if value is None:
        return None
    return value == "true"


def cmd_rules(args: argparse.Namespace) -> int:
    """List and mutate rules."""
    store = get_store(args)
    engine = RuleAuditEngine(store)
    metadata = {"origin": "cli"}

    try:
        if args.rules_cmd == "list" or args.rules_cmd is None:
            rules = store.list_rules()
            if getattr(args, "json", False):
                output([r.to_dict() for r in rules], args)
            else:
                print(f"Rules ({len(rules)})")
                print("=" * 70)
                for r in rules:
                    flags = ("enabled" if r.enabled else "disabled") + (
                        ", notify" if r.notify_on_change else ""
                    )
                    print(f"{r.id:>5}  {r.name:<30} [{flags}]  {r.pattern}")
            return 0

        if args.rules_cmd == "create":
            rule = engine.create(
                {
                    "name": args.name,
                    "pattern": args.pattern,
                    "enabled": not args.disabled,
                    "notify_on_change": args.notify,
                },
                actor_id=args.actor,
                metadata=metadata,
            )
            output(rule.to_dict(), args)
            return 0

        if args.rules_cmd == "update":
            patch = {
                "name": args.name,
                "pattern": args.pattern,
                "enabled": _flag(args.enabled),
                "notify_on_change": _flag(args.notify),
            }
            rule = engine.update(args.id, patch, actor_id=args.actor, metadata=metadata)
            output(rule.to_dict(), args)
            return 0

        if args.rules_cmd == "delete":
            engine.delete(args.id, actor_id=args.actor, metadata=metadata)
            output({"status": "deleted", "id": args.id}, args)
            return 0

        print(f"Unknown rules command: {args.rules_cmd}", file=sys.stderr)
        return 1

    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


def cmd_audit(args: argparse.Namespace) -> int:
    """Show the rule audit trail."""
    store = get_store(args)
    try:
        entries = store.list_audit(
            target_type="rule" if args.rule is not None else None,
            target_id=args.rule,
            limit=args.limit,
        )
        if getattr(args, "json", False):
            output([e.to_dict() for e in entries], args)
            return 0

        print(f"Audit Log ({len(entries)} entries)")
        print("=" * 70)
        for e in entries:
            actor = e.actor_id if e.actor_id is not None else "-"
            print(f"{e.ts:%Y-%m-%d %H:%M:%S}  {e.action:<12} rule={e.target_id} actor={actor}")
            for change in e.diff or []:
                print(f"    {change['field']}: {change['old']!r} -> {change['new']!r}")
        return 0
    finally:
        store.close()


def cmd_notifications(args: argparse.Namespace) -> int:
    """Show pending notifications."""
    store = get_store(args)
    try:
        entries = store.pending_notifications()
        if getattr(args, "json", False):
            output([n.to_dict() for n in entries], args)
            return 0

        print(f"Pending Notifications ({len(entries)})")
        print("=" * 70)
        for n in entries:
            print(f"{n.id:>6}  {n.created_at:%Y-%m-%d %H:%M:%S}  {n.event_type:<14} {n.payload}")
        return 0
    finally:
        store.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show store statistics."""
    config = load_config(args.config)
    store = get_store(args)
    try:
        stats = store.get_statistics()
    finally:
        store.close()

    status_data = {
        "version": __version__,
        "config_file": args.config or "default",
        "database": config.database.path,
        "sensor": config.sensor.executable if config.sensor.enabled else "disabled",
        **stats,
    }
    output(status_data, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
