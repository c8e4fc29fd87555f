"""
Snapshot restore - applies configuration from a snapshot back to a zone.
"""

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import ConflictUnresolved, PartialApplyError, UpstreamUnavailable
from .diff import FIREWALL_RULES, LOCAL_CONFIG, RESOURCE_SETTINGS
from .models import FirewallRule, Snapshot, is_redacted

logger = logging.getLogger(__name__)

APPLIED = "applied"
WOULD_APPLY = "would_apply"
SKIPPED = "skipped"

RESTORED_SUFFIX = " (restored from snapshot)"

# Captured for reference; the settings endpoint cannot write them back
NON_RESTORABLE_SETTINGS = {"dns_records"}


@dataclass
class RestoreReport:
    """Outcome of a restore, one entry per setting, rule and local config write."""
    snapshot_id: str
    resource_id: str
    dry_run: bool = False
    changes: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled

    @property
    def partial(self) -> bool:
        return bool(self.errors) and any(c["status"] == APPLIED for c in self.changes)

    def count(self, status: str) -> int:
        return sum(1 for c in self.changes if c["status"] == status)

    def add_change(self, section: str, field_name: str, value: Any, status: str) -> None:
        self.changes.append({
            "section": section,
            "field": field_name,
            "value": value,
            "status": status,
        })

    def add_error(self, section: str, field_name: str, message: str) -> None:
        self.errors.append({
            "section": section,
            "field": field_name,
            "message": message,
        })

    def raise_for_errors(self) -> None:
        """Raise PartialApplyError if any field failed."""
        if self.errors:
            raise PartialApplyError(self.resource_id, self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshotId": self.snapshot_id,
            "resourceId": self.resource_id,
            "dryRun": self.dry_run,
            "cancelled": self.cancelled,
            "success": self.success,
            "changes": self.changes,
            "errors": self.errors,
        }


class RestoreExecutor:
    """Writes a snapshot's configuration through the Settings Provider."""

    def __init__(
        self,
        provider,
        local_store,
        recorder,
        pacing_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize restore executor.

        Args:
            provider: SettingsProvider receiving the settings and rules
            local_store: LocalConfigStore receiving the local config
            recorder: ActivityRecorder
            pacing_interval: Seconds between consecutive provider writes
            sleep: Blocking sleep used for pacing
        """
        self.provider = provider
        self.local_store = local_store
        self.recorder = recorder
        self.pacing_interval = pacing_interval
        self._sleep = sleep

    def restore(
        self,
        snapshot: Snapshot,
        resource_id: Optional[str] = None,
        dry_run: bool = False,
        accept_conflicts: bool = False,
        cancel_event: Optional[threading.Event] = None,
        actor: Optional[str] = None,
    ) -> RestoreReport:
        """
        Restore a snapshot.

        Preconditions are checked before any write. After that, a failing
        field is recorded in the report and the remaining fields are still
        attempted.

        Args:
            snapshot: Snapshot to apply
            resource_id: Target zone, defaults to the snapshot's zone
            dry_run: Report intended changes without calling collaborators
            accept_conflicts: Allow a merged snapshot with unresolved conflicts
            cancel_event: Set to stop before the next provider call
            actor: Recorded in the activity entry

        Returns:
            RestoreReport

        Raises:
            ValidationError: Snapshot is malformed
            ConflictUnresolved: Unresolved merge conflicts and not accepted
            UpstreamUnavailable: Target zone unreachable
        """
        target = resource_id or snapshot.resource_id

        for warning in snapshot.validate():
            logger.debug("%s: %s", snapshot.id, warning)

        unresolved = snapshot.unresolved_conflicts
        if unresolved and not accept_conflicts:
            raise ConflictUnresolved(snapshot.id, unresolved)

        if not dry_run:
            try:
                self.provider.check_access(target)
            except Exception as e:
                raise UpstreamUnavailable(f"Cannot access zone {target}: {e}", resource_id=target) from e

        report = RestoreReport(snapshot_id=snapshot.id, resource_id=target, dry_run=dry_run)
        pacer = _Pacer(self.pacing_interval, self._sleep, cancel_event)

        # =====================================================================
        # Resource settings
        # =====================================================================
        for key, value in snapshot.resource_settings.items():
            if key in NON_RESTORABLE_SETTINGS or is_redacted(value):
                report.add_change(RESOURCE_SETTINGS, key, value, SKIPPED)
                continue
            if dry_run:
                report.add_change(RESOURCE_SETTINGS, key, value, WOULD_APPLY)
                continue
            if not pacer.proceed():
                report.cancelled = True
                break
            try:
                self.provider.apply_setting(target, key, value)
                report.add_change(RESOURCE_SETTINGS, key, value, APPLIED)
            except Exception as e:
                logger.warning("Failed to restore setting %s on %s: %s", key, target, e)
                report.add_error(RESOURCE_SETTINGS, key, str(e))

        # =====================================================================
        # Firewall rules (additive)
        # =====================================================================
        if not report.cancelled:
            for rule in snapshot.firewall_rules:
                restored = FirewallRule(
                    expression=rule.expression,
                    action=rule.action,
                    description=f"{rule.description}{RESTORED_SUFFIX}",
                    priority=rule.priority,
                )
                if dry_run:
                    report.add_change(FIREWALL_RULES, rule.label, restored.to_dict(), WOULD_APPLY)
                    continue
                if not pacer.proceed():
                    report.cancelled = True
                    break
                try:
                    self.provider.create_firewall_rule(target, restored)
                    report.add_change(FIREWALL_RULES, rule.label, restored.to_dict(), APPLIED)
                except Exception as e:
                    logger.warning("Failed to restore firewall rule %s on %s: %s", rule.label, target, e)
                    report.add_error(FIREWALL_RULES, rule.label, str(e))

        # =====================================================================
        # Local config (single save, after all provider calls)
        # =====================================================================
        if snapshot.local_config and not report.cancelled:
            local_config = copy.deepcopy(snapshot.local_config)
            if dry_run:
                report.add_change(LOCAL_CONFIG, "*", local_config, WOULD_APPLY)
            elif pacer.cancelled():
                report.cancelled = True
            else:
                try:
                    self.local_store.save(target, local_config)
                    report.add_change(LOCAL_CONFIG, "*", local_config, APPLIED)
                except Exception as e:
                    logger.warning("Failed to restore local config for %s: %s", target, e)
                    report.add_error(LOCAL_CONFIG, "*", str(e))

        if not dry_run:
            self._record(snapshot, report, actor)

        logger.info(
            "Restore of %s to %s%s: %d applied, %d skipped, %d errors%s",
            snapshot.id, target, " (dry run)" if dry_run else "",
            report.count(APPLIED), report.count(SKIPPED), len(report.errors),
            ", cancelled" if report.cancelled else "",
        )
        return report

    def _record(self, snapshot: Snapshot, report: RestoreReport, actor: Optional[str]) -> None:
        try:
            self.recorder.record(
                "RESTORE_SNAPSHOT",
                report.resource_id,
                {
                    "snapshotId": snapshot.id,
                    "sourceResourceId": snapshot.resource_id,
                    "totalChanges": report.count(APPLIED),
                    "totalErrors": len(report.errors),
                    "cancelled": report.cancelled,
                },
                actor=actor,
            )
        except Exception:
            logger.exception("Failed to record activity for restore of %s", snapshot.id)


class _Pacer:
    """Spaces consecutive provider writes and observes cancellation."""

    def __init__(self, interval: float, sleep: Callable[[float], None],
                 cancel_event: Optional[threading.Event]):
        self.interval = interval
        self.sleep = sleep
        self.cancel_event = cancel_event
        self.calls = 0

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def proceed(self) -> bool:
        """False when cancelled; otherwise waits out the pacing interval."""
        if self.cancelled():
            return False
        if self.calls and self.interval > 0:
            self.sleep(self.interval)
            if self.cancelled():
                return False
        self.calls += 1
        return True
