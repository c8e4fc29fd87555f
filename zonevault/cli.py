"""
CLI - Command-line interface for zonevault.

Every subcommand is a thin caller of SnapshotManager; output goes through
ConsoleUI, or as JSON with --json.
"""

import argparse
import logging
import sys
import threading
import time
from datetime import datetime

from .config import Config, create_example_config
from .errors import ProviderError, SnapshotError, ValidationError
from .log import setup_logging
from .snapshot.manager import SnapshotManager
from .snapshot.merge import MergeStrategy
from .snapshot.models import RetentionPolicy, SnapshotCategory, parse_timestamp
from .ui import ConsoleUI

logger = logging.getLogger(__name__)

# Commands that talk to the Cloudflare API
PROVIDER_COMMANDS = {"create", "restore", "schedule", "daemon"}


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="zonevault",
        description="Zone configuration snapshots: capture, diff, merge, restore, retain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    zonevault create 023e105f4ecef8ad9ca31a8372d0c353 --description "before WAF change"
    zonevault list --zone 023e105f4ecef8ad9ca31a8372d0c353
    zonevault diff <snapshot-a> <snapshot-b>
    zonevault merge <snapshot-a> <snapshot-b> --strategy manual
    zonevault restore <snapshot> --dry-run
    zonevault prune --max-count 10 --max-age-days 30 --dry-run
    zonevault export <snapshot> --format yaml --output zone.yml
    zonevault daemon

Environment Variables:
    CLOUDFLARE_API_TOKEN      Cloudflare API token (required for create/restore)
    BACKUP_ROOT               Snapshot store directory
    BACKUP_RETENTION_DAYS     Default max snapshot age
    MAX_BACKUPS_PER_ZONE      Default max snapshots per zone
    ENABLE_AUTOMATIC_BACKUP   Start daily/weekly/cleanup jobs in daemon mode
    TIMEZONE                  Timezone for scheduled jobs
        """,
    )

    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress console output")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Print results as JSON")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--backup-root", help="Snapshot store directory")
    parser.add_argument("--api-token", help="Cloudflare API token")
    parser.add_argument("--pacing-ms", type=int, help="Delay between restore writes in milliseconds")
    parser.add_argument("--workers", type=int, help="Worker pool size")
    parser.add_argument("--timezone", help="Timezone for scheduled jobs")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Snapshot one or more zones")
    p.add_argument("zones", nargs="+", help="Zone ID(s)")
    p.add_argument("--type", default="manual", help="Snapshot type (manual, automatic, daily, weekly)")
    p.add_argument("--description", "-d", default="Manual snapshot")
    p.add_argument("--include-secrets", action="store_true", help="Keep secret values instead of redacting")
    p.add_argument("--by", dest="actor", help="Actor recorded in the audit log")

    p = sub.add_parser("list", help="List snapshots")
    p.add_argument("--zone", help="Filter by zone ID")
    p.add_argument("--type", help="Filter by snapshot type")
    p.add_argument("--limit", type=int)

    p = sub.add_parser("show", help="Show a snapshot")
    p.add_argument("snapshot")

    p = sub.add_parser("diff", help="Compare two snapshots")
    p.add_argument("snapshot_a")
    p.add_argument("snapshot_b")

    p = sub.add_parser("merge", help="Merge snapshots (first is the base)")
    p.add_argument("snapshots", nargs="+")
    p.add_argument("--strategy", default="latest", help="latest | manual")
    p.add_argument("--description", "-d", default="Merged snapshot")
    p.add_argument("--by", dest="actor")

    p = sub.add_parser("restore", help="Apply a snapshot to a zone")
    p.add_argument("snapshot")
    p.add_argument("--zone", help="Target zone (default: the snapshot's zone)")
    p.add_argument("--dry-run", action="store_true", help="Show what would change")
    p.add_argument("--accept-conflicts", action="store_true",
                   help="Allow merged snapshots with unresolved conflicts")
    p.add_argument("--by", dest="actor")

    p = sub.add_parser("prune", help="Delete snapshots beyond retention limits")
    p.add_argument("--zone", help="Zone ID (default: every zone)")
    p.add_argument("--max-age-days", type=int)
    p.add_argument("--max-count", type=int)
    p.add_argument("--exempt", action="append", default=None, help="Snapshot type to keep (repeatable)")
    p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("export", help="Export a snapshot")
    p.add_argument("snapshot")
    p.add_argument("--format", "-f", default="json", help="json | yaml | csv | xml")
    p.add_argument("--output", "-o", help="Output file (default: stdout)")

    p = sub.add_parser("verify", help="Check a stored snapshot's integrity")
    p.add_argument("snapshot")

    p = sub.add_parser("delete", help="Delete a snapshot")
    p.add_argument("snapshot")
    p.add_argument("--by", dest="actor")

    sub.add_parser("stats", help="Snapshot statistics")
    sub.add_parser("health", help="Service health check")

    p = sub.add_parser("schedule", help="Take a snapshot at a given time (runs in the foreground)")
    p.add_argument("zone")
    p.add_argument("at", help="ISO 8601 time; without an offset it is taken in the configured timezone")
    p.add_argument("--description", "-d", default="Scheduled snapshot")
    p.add_argument("--include-secrets", action="store_true")

    p = sub.add_parser("daemon", help="Run scheduled automatic backups until interrupted")
    p.add_argument("--force", action="store_true",
                   help="Enable automatic backups even if disabled in config")

    p = sub.add_parser("init", help="Write an example config file")
    p.add_argument("path", nargs="?", default="config.toml")

    return parser.parse_args(argv)


# =============================================================================
# Commands
# =============================================================================

def cmd_create(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    if len(args.zones) == 1:
        snapshot = manager.create_snapshot(
            args.zones[0],
            category=args.type,
            description=args.description,
            include_secrets=args.include_secrets,
            created_by=args.actor,
        )
        if args.json_output:
            ui.print_json(snapshot.to_dict())
        else:
            ui.print_success(f"Snapshot {snapshot.id} created for {snapshot.resource_name}")
        return 0

    result = manager.create_snapshots(
        args.zones,
        category=args.type,
        description=args.description,
        include_secrets=args.include_secrets,
        created_by=args.actor,
    )
    if args.json_output:
        ui.print_json(result.to_dict())
    else:
        ui.print_bulk_result(result)
    return 0 if not result.failed else 2


def cmd_list(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    metas = manager.list_snapshots(resource_id=args.zone, category=args.type, limit=args.limit)
    if args.json_output:
        ui.print_json([meta.to_dict() for meta in metas])
    else:
        ui.print_snapshot_list(metas)
    return 0


def cmd_show(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    snapshot = manager.get_snapshot(args.snapshot)
    if args.json_output:
        ui.print_json(snapshot.to_dict())
    else:
        ui.print_snapshot(snapshot)
    return 0


def cmd_diff(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    changeset = manager.diff_snapshots(args.snapshot_a, args.snapshot_b)
    if args.json_output:
        ui.print_json(changeset.to_dict())
    else:
        ui.print_changeset(changeset)
    return 0


def cmd_merge(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    result = manager.merge_snapshots(
        args.snapshots,
        strategy=MergeStrategy.parse(args.strategy),
        description=args.description,
        created_by=args.actor,
    )
    if args.json_output:
        ui.print_json({
            "snapshotId": result.snapshot.id,
            "mergedFrom": list(result.snapshot.merged_from),
            "conflicts": [c.to_dict() for c in result.conflicts],
            "restorable": result.restorable,
        })
    else:
        ui.print_merge_result(result)
    return 0


def cmd_restore(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    cancel = threading.Event()
    try:
        report = manager.restore_snapshot(
            args.snapshot,
            resource_id=args.zone,
            dry_run=args.dry_run,
            accept_conflicts=args.accept_conflicts,
            cancel_event=cancel,
            actor=args.actor,
        )
    except KeyboardInterrupt:
        cancel.set()
        raise
    if args.json_output:
        ui.print_json(report.to_dict())
    else:
        ui.print_restore_report(report)
    return 0 if report.success else 2


def cmd_prune(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    default = manager.retention_policy
    policy = RetentionPolicy(
        max_age_days=args.max_age_days if args.max_age_days is not None else default.max_age_days,
        max_count_per_resource=args.max_count if args.max_count is not None else default.max_count_per_resource,
        exempt_categories=tuple(args.exempt) if args.exempt is not None else default.exempt_categories,
    )
    report = manager.prune_snapshots(args.zone, policy, dry_run=args.dry_run)
    if args.json_output:
        ui.print_json(report.to_dict())
    else:
        ui.print_prune_report(report)
    return 0 if not report.errors else 2


def cmd_export(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    content = manager.export_snapshot(args.snapshot, args.format, output_path=args.output)
    if args.output:
        ui.print_success(f"Exported {args.snapshot} to {args.output} ({len(content)} bytes)")
    else:
        sys.stdout.write(content.decode("utf-8"))
        sys.stdout.write("\n")
    return 0


def cmd_verify(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    result = manager.verify_snapshot(args.snapshot)
    if args.json_output:
        ui.print_json(result.to_dict())
    else:
        ui.print_verification(args.snapshot, result)
    return 0 if result.valid else 2


def cmd_delete(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    manager.delete_snapshot(args.snapshot, actor=args.actor)
    ui.print_success(f"Deleted {args.snapshot}")
    return 0


def cmd_stats(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    stats = manager.statistics()
    if args.json_output:
        ui.print_json(stats)
    else:
        ui.print_statistics(stats)
    return 0


def cmd_health(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    health = manager.health_check()
    if args.json_output:
        ui.print_json(health)
    else:
        ui.print_health(health)
    return 0 if health["status"] == "healthy" else 2


def cmd_schedule(manager: SnapshotManager, args, ui: ConsoleUI) -> int:
    at = _parse_local_time(args.at)
    handle = manager.schedule_snapshot(
        args.zone,
        at,
        category=SnapshotCategory.SCHEDULED,
        description=args.description,
        include_secrets=args.include_secrets,
    )
    ui.print_success(f"Snapshot of {args.zone} scheduled for {handle.next_run.isoformat()} (job {handle.id})")

    manager.scheduler.start()
    while any(job.id == handle.id for job in manager.scheduled_jobs()):
        time.sleep(1)
    return 0


def cmd_daemon(manager: SnapshotManager, args, ui: ConsoleUI, config: Config) -> int:
    if not (config.schedule.enabled or args.force):
        ui.print_error("Automatic backups are disabled. Set ENABLE_AUTOMATIC_BACKUP=true or pass --force")
        return 1

    manager.enable_automatic_backups()
    manager.scheduler.start()
    ui.print_jobs(manager.scheduled_jobs())
    ui.print("[dim]Running; press Ctrl+C to stop[/]")
    while True:
        time.sleep(60)


def _parse_local_time(text: str) -> datetime:
    """ISO time; naive values are left naive for the scheduler's timezone."""
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return parse_timestamp(text)
    return value


COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "show": cmd_show,
    "diff": cmd_diff,
    "merge": cmd_merge,
    "restore": cmd_restore,
    "prune": cmd_prune,
    "export": cmd_export,
    "verify": cmd_verify,
    "delete": cmd_delete,
    "stats": cmd_stats,
    "health": cmd_health,
    "schedule": cmd_schedule,
}


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    ui = ConsoleUI(quiet=args.quiet)

    if args.command == "init":
        try:
            path = create_example_config(args.path)
        except FileExistsError as e:
            ui.print_error(str(e))
            return 1
        ui.print_success(f"Wrote {path}")
        return 0

    try:
        config = Config.load(args.config).override_from_args(args)
    except (OSError, ValueError) as e:
        ui.print_error("Failed to load configuration", e)
        return 1

    setup_logging(config.logging.level, json_format=config.logging.json)

    errors = config.validate(require_provider=args.command in PROVIDER_COMMANDS)
    if errors:
        for error in errors:
            ui.print_error(error)
        return 1

    manager = None
    try:
        manager = SnapshotManager.from_config(config)
        if args.command == "daemon":
            return cmd_daemon(manager, args, ui, config)
        return COMMANDS[args.command](manager, args, ui)

    except KeyboardInterrupt:
        ui.print("\nInterrupted by user")
        return 130

    except ValidationError as e:
        ui.print_error(str(e), e if e.violations else None)
        return 1

    except (SnapshotError, ProviderError) as e:
        ui.print_error(str(e))
        logger.debug("Command %s failed", args.command, exc_info=True)
        return 1

    finally:
        if manager is not None:
            manager.close()


if __name__ == "__main__":
    sys.exit(main())
