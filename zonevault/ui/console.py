"""
ConsoleUI - Rich-based console interface.

Formats snapshots, diffs, merge/restore/prune reports and service status.
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box

from ..snapshot.models import format_timestamp


STATUS_STYLES = {
    "applied": "green",
    "would_apply": "cyan",
    "skipped": "yellow",
}

KIND_STYLES = {
    "added": "green",
    "removed": "red",
    "modified": "yellow",
}


def _short(value: Any, width: int = 60) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return text if len(text) <= width else text[:width - 3] + "..."


def _size(num_bytes: int) -> str:
    for unit in ("B", "KB", "MB"):
        if num_bytes < 1024:
            return f"{num_bytes:.0f} {unit}" if unit == "B" else f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f} GB"


class ConsoleUI:
    """
    Rich console interface for zonevault.
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        self.quiet = quiet
        self.console = console or Console()

    def print(self, *args, **kwargs):
        """Print to console."""
        if self.quiet:
            return
        self.console.print(*args, **kwargs)

    def print_header(self, title: str):
        """Print a section header."""
        if self.quiet:
            return
        self.console.print()
        self.console.rule(f"[bold blue]{title}[/]")

    def print_json(self, data: Any):
        """Machine-readable output; printed even in quiet mode."""
        self.console.print_json(json.dumps(data, default=str))

    def print_error(self, message: str, exception: Optional[Exception] = None):
        """Display error message."""
        self.console.print(f"[bold red]Error:[/] {escape(str(message))}")
        if exception:
            self.console.print(f"[dim]{type(exception).__name__}: {escape(str(exception))}[/]")
            for violation in getattr(exception, "violations", None) or []:
                self.console.print(f"  [red]-[/] {escape(str(violation))}")

    def print_success(self, message: str):
        self.print(f"[green]:heavy_check_mark:[/] {message}")

    def print_warning(self, message: str):
        self.print(f"[yellow]![/] {message}")

    # =========================================================================
    # Snapshots
    # =========================================================================

    def print_snapshot_list(self, metas: List):
        """Table of snapshot metadata."""
        if self.quiet:
            return
        if not metas:
            self.console.print("[dim]No snapshots found[/]")
            return

        table = Table(title="Snapshots", box=box.SIMPLE)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Zone")
        table.add_column("Type", style="magenta")
        table.add_column("Created (UTC)")
        table.add_column("Size", justify="right")
        table.add_column("Description", style="dim")

        for meta in metas:
            table.add_row(
                meta.id,
                meta.resource_name,
                meta.category,
                meta.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                _size(meta.size),
                meta.description,
            )
        self.console.print(table)

    def print_snapshot(self, snapshot):
        """Snapshot summary plus its settings."""
        if self.quiet:
            return

        info = Table(show_header=False, box=None)
        info.add_column("Key", style="dim")
        info.add_column("Value")
        info.add_row("ID", snapshot.id)
        info.add_row("Zone", f"{snapshot.resource_name} ({snapshot.resource_id})")
        info.add_row("Type", snapshot.category.value)
        info.add_row("Created", format_timestamp(snapshot.created_at))
        info.add_row("Created by", snapshot.created_by or "system")
        info.add_row("Description", snapshot.description)
        info.add_row("Secrets", "included" if snapshot.include_secrets else "redacted")
        if snapshot.merged_from:
            info.add_row("Merged from", ", ".join(snapshot.merged_from))
            info.add_row("Conflicts", f"{len(snapshot.conflicts)} ({len(snapshot.unresolved_conflicts)} unresolved)")
        self.console.print(Panel(info, title="Snapshot", border_style="cyan"))

        for title, section in (("Zone Settings", snapshot.resource_settings),
                               ("Local Config", snapshot.local_config)):
            if not section:
                continue
            table = Table(title=title, box=box.SIMPLE)
            table.add_column("Setting", style="dim")
            table.add_column("Value")
            for key, value in section.items():
                table.add_row(key, _short(value))
            self.console.print(table)

        if snapshot.firewall_rules:
            table = Table(title="Firewall Rules", box=box.SIMPLE)
            table.add_column("Action", style="magenta")
            table.add_column("Expression")
            table.add_column("Description", style="dim")
            for rule in snapshot.firewall_rules:
                table.add_row(rule.action, rule.expression, rule.description)
            self.console.print(table)

    def print_changeset(self, changeset):
        """Diff between two snapshots."""
        if self.quiet:
            return
        self.print_header(f"{changeset.snapshot_a} -> {changeset.snapshot_b}")
        if changeset.is_empty:
            self.console.print("[green]Snapshots are identical[/]")
            return

        table = Table(box=box.SIMPLE)
        table.add_column("", no_wrap=True)
        table.add_column("Section", style="dim")
        table.add_column("Field")
        table.add_column("Old")
        table.add_column("New")
        for change in changeset:
            style = KIND_STYLES.get(change.kind.value, "white")
            table.add_row(
                f"[{style}]{change.kind.value}[/]",
                change.section,
                change.field,
                "" if change.old_value is None else _short(change.old_value, 40),
                "" if change.new_value is None else _short(change.new_value, 40),
            )
        self.console.print(table)
        self.console.print(f"[dim]{len(changeset)} change(s)[/]")

    def print_merge_result(self, result):
        if self.quiet:
            return
        snapshot = result.snapshot
        self.print_success(f"Merged {len(snapshot.merged_from)} snapshots into {snapshot.id}")
        if not result.conflicts:
            return

        table = Table(title="Conflicts", box=box.SIMPLE)
        table.add_column("Section", style="dim")
        table.add_column("Field")
        table.add_column("Values")
        table.add_column("Resolution")
        for conflict in result.conflicts:
            resolution = conflict.resolution or "[red]unresolved[/]"
            table.add_row(conflict.section, conflict.field, _short(list(conflict.values), 50), resolution)
        self.console.print(table)
        if not result.restorable:
            self.print_warning("Unresolved conflicts: restore requires --accept-conflicts")

    # =========================================================================
    # Reports
    # =========================================================================

    def print_restore_report(self, report):
        if self.quiet:
            return
        title = "Restore Preview" if report.dry_run else "Restore"
        self.print_header(f"{title}: {report.snapshot_id} -> {report.resource_id}")

        table = Table(box=box.SIMPLE)
        table.add_column("Status")
        table.add_column("Section", style="dim")
        table.add_column("Field")
        table.add_column("Value")
        for change in report.changes:
            style = STATUS_STYLES.get(change["status"], "white")
            table.add_row(f"[{style}]{change['status']}[/]", change["section"],
                          change["field"], _short(change["value"], 50))
        for error in report.errors:
            table.add_row("[red]error[/]", error["section"], error["field"], error["message"])
        self.console.print(table)

        if report.cancelled:
            self.print_warning("Restore was cancelled before completion")
        elif report.errors:
            self.console.print(f"[bold red]{len(report.errors)} field(s) failed[/]")
        else:
            self.print_success("Restore completed" if not report.dry_run else "Dry run completed")

    def print_prune_report(self, report):
        if self.quiet:
            return
        verb = "Would delete" if report.dry_run else "Deleted"
        if report.deleted:
            table = Table(title=verb, box=box.SIMPLE)
            table.add_column("ID", style="cyan")
            table.add_column("Zone")
            table.add_column("Created (UTC)")
            table.add_column("Reason", style="yellow")
            for entry in report.deleted:
                meta = entry["meta"]
                table.add_row(meta.id, meta.resource_name,
                              meta.created_at.strftime("%Y-%m-%d %H:%M:%S"), entry["reason"])
            self.console.print(table)
        self.console.print(
            f"{verb} {len(report.deleted)}, retained {len(report.retained)}, "
            f"freed {_size(report.total_size_freed)}"
        )
        for error in report.errors:
            self.print_error(f"{error['id']}: {error['message']}")

    def print_verification(self, snapshot_id: str, result):
        if self.quiet:
            return
        table = Table(show_header=False, box=None)
        table.add_column("Check", style="dim")
        table.add_column("Result")
        for name, passed in result.checks.items():
            icon = "[green]:heavy_check_mark:[/]" if passed else "[red]:x:[/]"
            table.add_row(name.replace("_", " "), icon)
        border = "green" if result.valid else "red"
        status = "valid" if result.valid else "invalid"
        self.console.print(Panel(table, title=f"{snapshot_id}: {status}", border_style=border))
        for error in result.errors:
            self.console.print(f"  [red]error:[/] {error}")
        for warning in result.warnings:
            self.console.print(f"  [yellow]warning:[/] {warning}")

    def print_bulk_result(self, result):
        if self.quiet:
            return
        for entry in result.results:
            self.print_success(f"{entry['resourceName']}: {entry['snapshotId']}")
        for entry in result.errors:
            self.console.print(f"[red]:x:[/] {entry['resourceId']}: {entry['error']}")
        self.console.print(f"[dim]{result.successful}/{result.total} zones succeeded[/]")

    def print_statistics(self, stats: Dict[str, Any]):
        if self.quiet:
            return
        self.print_header("Snapshot Statistics")

        table = Table(show_header=False, box=None)
        table.add_column("Key", style="dim")
        table.add_column("Value")
        table.add_row("Total snapshots", str(stats["totalSnapshots"]))
        table.add_row("Total size", _size(stats["totalSize"]))
        table.add_row("Oldest", stats["oldestSnapshot"] or "-")
        table.add_row("Newest", stats["newestSnapshot"] or "-")
        self.console.print(table)

        by_type = Table(title="By type", box=box.SIMPLE)
        by_type.add_column("Type", style="magenta")
        by_type.add_column("Count", justify="right")
        by_type.add_column("Size", justify="right")
        for category, bucket in stats["byCategory"].items():
            by_type.add_row(category, str(bucket["count"]), _size(bucket["size"]))
        self.console.print(by_type)

        if stats["zones"]:
            zones = Table(title="By zone", box=box.SIMPLE)
            zones.add_column("Zone")
            zones.add_column("Count", justify="right")
            zones.add_column("Size", justify="right")
            zones.add_column("Last snapshot")
            for zone in stats["zones"].values():
                zones.add_row(zone["name"], str(zone["count"]), _size(zone["size"]), zone["lastSnapshot"])
            self.console.print(zones)

    def print_health(self, health: Dict[str, Any]):
        styles = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}
        style = styles.get(health["status"], "white")
        table = Table(show_header=False, box=None)
        table.add_column("Check", style="dim")
        table.add_column("Value")
        for name, value in health["checks"].items():
            table.add_row(name, str(value))
        self.console.print(Panel(table, title=f"[{style}]{health['status']}[/]", border_style=style))
        for error in health["errors"]:
            self.console.print(f"  [red]-[/] {error}")

    def print_jobs(self, jobs: List):
        if self.quiet:
            return
        if not jobs:
            self.console.print("[dim]No scheduled jobs[/]")
            return
        table = Table(title="Scheduled Jobs", box=box.SIMPLE)
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Schedule")
        table.add_column("Next run (UTC)")
        for job in jobs:
            table.add_row(job.id, job.name, job.cron or "once",
                          job.next_run.strftime("%Y-%m-%d %H:%M"))
        self.console.print(table)
