"""
Snapshot manager - high-level snapshot operations.

Wires the builder, store, diff/merge engines, restore executor, retention
manager and scheduler together. Operations on one zone are serialized by a
per-zone lock; different zones proceed in parallel up to the worker bound.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import SnapshotError
from ..log import log_event
from .capture import SnapshotBuilder
from .diff import ChangeSet, diff
from .merge import MergeResult, MergeStrategy, merge
from .models import RetentionPolicy, Snapshot, SnapshotCategory, SnapshotMeta, format_timestamp
from .restore import RestoreExecutor, RestoreReport
from .retention import PruneReport, RetentionManager
from .scheduler import JobHandle, Scheduler
from .store import SnapshotStore
from .verifier import VerificationResult, verify

logger = logging.getLogger(__name__)

AUTOMATIC_JOB_NAMES = ("daily", "weekly", "cleanup")


@dataclass
class BulkResult:
    """Per-zone outcome of a bulk snapshot run."""
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
            "errors": self.errors,
        }


class SnapshotManager:
    """Operations surface of the snapshot engine."""

    def __init__(
        self,
        provider,
        local_store,
        store: SnapshotStore,
        recorder,
        scheduler: Optional[Scheduler] = None,
        retention_policy: Optional[RetentionPolicy] = None,
        parallelism: int = 5,
        pacing_interval: float = 0.1,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
        managed_zones: Sequence[str] = (),
        schedule_specs: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize snapshot manager.

        Args:
            provider: SettingsProvider
            local_store: LocalConfigStore
            store: SnapshotStore
            recorder: ActivityRecorder
            scheduler: Scheduler for deferred and automatic snapshots
            retention_policy: Default policy for prune and the cleanup job
            parallelism: Worker bound for bulk snapshots
            pacing_interval: Seconds between restore writes
            retry_attempts: Attempts per collaborator read during capture
            retry_backoff: First retry delay in seconds
            managed_zones: Zones covered by automatic backups (default: every stored zone)
            schedule_specs: Cron expressions keyed by daily / weekly / cleanup
        """
        self.provider = provider
        self.local_store = local_store
        self.store = store
        self.recorder = recorder
        self.scheduler = scheduler
        self.retention_policy = retention_policy or RetentionPolicy()
        self.parallelism = parallelism
        self.managed_zones = list(managed_zones)
        self.schedule_specs = {
            "daily": "0 2 * * *",
            "weekly": "0 3 * * 0",
            "cleanup": "0 4 * * *",
        }
        self.schedule_specs.update(schedule_specs or {})

        self.builder = SnapshotBuilder(
            provider, local_store, store, recorder,
            retry_attempts=retry_attempts, retry_backoff=retry_backoff,
        )
        self.executor = RestoreExecutor(provider, local_store, recorder, pacing_interval=pacing_interval)
        self.retention = RetentionManager(store, recorder)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._automatic_jobs: Dict[str, JobHandle] = {}
        self._scheduled: Dict[str, JobHandle] = {}

    @classmethod
    def from_config(cls, config) -> "SnapshotManager":
        """Build a manager and its collaborators from a Config."""
        from ..providers import (
            CloudflareSettingsProvider,
            JsonLocalConfigStore,
            JsonlActivityRecorder,
            NullActivityRecorder,
            PostgresLocalConfigStore,
        )
        from .store import FileSnapshotStore

        provider = CloudflareSettingsProvider(
            api_token=config.provider.api_token,
            base_url=config.provider.api_base_url,
            timeout=config.provider.timeout,
        )
        if config.local_config.backend == "postgres":
            local_store = PostgresLocalConfigStore(dsn=config.local_config.dsn)
        else:
            local_store = JsonLocalConfigStore(config.local_config.path)

        store = FileSnapshotStore(config.storage.root)
        store.ensure_layout()

        if config.activity.path:
            recorder = JsonlActivityRecorder(config.activity.path)
        else:
            recorder = NullActivityRecorder()

        scheduler = Scheduler(
            max_workers=config.workers.parallelism,
            timezone=config.schedule.timezone,
        )
        return cls(
            provider=provider,
            local_store=local_store,
            store=store,
            recorder=recorder,
            scheduler=scheduler,
            retention_policy=config.retention_policy(),
            parallelism=config.workers.parallelism,
            pacing_interval=config.provider.pacing_interval,
            retry_attempts=config.provider.retry_attempts,
            retry_backoff=config.provider.retry_backoff,
            managed_zones=config.schedule.zones,
            schedule_specs={
                "daily": config.schedule.daily,
                "weekly": config.schedule.weekly,
                "cleanup": config.schedule.cleanup,
            },
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        """Stop the scheduler, if any."""
        if self.scheduler is not None:
            self.scheduler.shutdown()

    def _lock_for(self, resource_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = self._locks[resource_id] = threading.Lock()
            return lock

    def _record(self, action: str, resource_id: str, details: Dict[str, Any], actor=None) -> None:
        try:
            self.recorder.record(action, resource_id, details, actor=actor)
        except Exception:
            logger.exception("Failed to record %s for %s", action, resource_id)

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create_snapshot(
        self,
        resource_id: str,
        category=SnapshotCategory.MANUAL,
        description: str = "Manual snapshot",
        include_secrets: bool = False,
        created_by: Optional[str] = None,
    ) -> Snapshot:
        """
        Capture and store a snapshot of one zone.

        Raises:
            ValidationError, UpstreamUnavailable, PersistError
        """
        with self._lock_for(resource_id):
            return self.builder.build(
                resource_id,
                category=category,
                description=description,
                include_secrets=include_secrets,
                created_by=created_by,
            )

    def create_snapshots(
        self,
        resource_ids: Iterable[str],
        category=SnapshotCategory.MANUAL,
        description: str = "Bulk snapshot",
        include_secrets: bool = False,
        created_by: Optional[str] = None,
    ) -> BulkResult:
        """
        Snapshot several zones concurrently.

        A failing zone does not stop the others; it is listed in `errors`.
        """
        SnapshotCategory.parse(category)
        resource_ids = list(dict.fromkeys(resource_ids))
        result = BulkResult()
        if not resource_ids:
            return result

        with ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="bulk") as pool:
            futures = {
                pool.submit(
                    self.create_snapshot, resource_id, category, description,
                    include_secrets, created_by,
                ): resource_id
                for resource_id in resource_ids
            }
            for future in as_completed(futures):
                resource_id = futures[future]
                try:
                    snapshot = future.result()
                except SnapshotError as e:
                    logger.warning("Snapshot of %s failed: %s", resource_id, e)
                    result.errors.append({
                        "resourceId": resource_id,
                        "error": str(e),
                        "type": type(e).__name__,
                    })
                else:
                    result.results.append({
                        "resourceId": resource_id,
                        "resourceName": snapshot.resource_name,
                        "snapshotId": snapshot.id,
                    })

        order = {resource_id: index for index, resource_id in enumerate(resource_ids)}
        result.results.sort(key=lambda r: order[r["resourceId"]])
        result.errors.sort(key=lambda r: order[r["resourceId"]])

        logger.info("Bulk snapshot: %d/%d zones succeeded", result.successful, result.total)
        return result

    def restore_snapshot(
        self,
        snapshot_id: str,
        resource_id: Optional[str] = None,
        dry_run: bool = False,
        accept_conflicts: bool = False,
        cancel_event: Optional[threading.Event] = None,
        actor: Optional[str] = None,
    ) -> RestoreReport:
        """
        Apply a stored snapshot to a zone (its own zone by default).

        Raises:
            SnapshotNotFound, ValidationError, ConflictUnresolved, UpstreamUnavailable
        """
        snapshot = self.store.get(snapshot_id)
        target = resource_id or snapshot.resource_id
        with self._lock_for(target):
            return self.executor.restore(
                snapshot,
                resource_id=target,
                dry_run=dry_run,
                accept_conflicts=accept_conflicts,
                cancel_event=cancel_event,
                actor=actor,
            )

    def delete_snapshot(self, snapshot_id: str, actor: Optional[str] = None) -> None:
        """
        Delete a stored snapshot.

        Raises:
            SnapshotNotFound, PersistError
        """
        snapshot = self.store.get(snapshot_id)
        self.store.delete(snapshot_id)
        self._record("DELETE_SNAPSHOT", snapshot.resource_id, {"snapshotId": snapshot_id}, actor=actor)
        logger.info("Deleted snapshot %s", snapshot_id)

    def merge_snapshots(
        self,
        snapshot_ids: Sequence[str],
        strategy=MergeStrategy.LATEST_WINS,
        description: str = "Merged snapshot",
        created_by: Optional[str] = None,
        persist: bool = True,
    ) -> MergeResult:
        """
        Merge stored snapshots in the given order and store the result.

        Raises:
            InsufficientInput, SnapshotNotFound, PersistError
        """
        snapshots = [self.store.get(snapshot_id) for snapshot_id in snapshot_ids]
        if len({s.resource_id for s in snapshots}) > 1:
            logger.warning("Merging snapshots of different zones; the first zone is kept")

        result = merge(snapshots, strategy=strategy, description=description, created_by=created_by)
        if persist:
            self.store.put(result.snapshot)
            self._record(
                "MERGE_SNAPSHOTS",
                result.snapshot.resource_id,
                {
                    "snapshotId": result.snapshot.id,
                    "mergedFrom": list(result.snapshot.merged_from),
                    "conflicts": len(result.conflicts),
                    "unresolved": len(result.unresolved),
                    "strategy": MergeStrategy.parse(strategy).value,
                },
                actor=created_by,
            )
        return result

    def prune_snapshots(
        self,
        resource_id: Optional[str] = None,
        policy: Optional[RetentionPolicy] = None,
        dry_run: bool = False,
    ) -> PruneReport:
        """Apply a retention policy to one zone, or to every zone when none is given."""
        policy = policy or self.retention_policy
        if resource_id is None:
            return self.retention.prune_all(policy, dry_run=dry_run)
        with self._lock_for(resource_id):
            return self.retention.prune(resource_id, policy, dry_run=dry_run)

    # =========================================================================
    # Query Operations
    # =========================================================================

    def list_snapshots(self, resource_id=None, category=None, limit=None) -> List[SnapshotMeta]:
        """List snapshot metadata, newest first."""
        return self.store.list(resource_id=resource_id, category=category, limit=limit)

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        return self.store.get(snapshot_id)

    def diff_snapshots(self, snapshot_a: str, snapshot_b: str) -> ChangeSet:
        return diff(self.store.get(snapshot_a), self.store.get(snapshot_b))

    def export_snapshot(self, snapshot_id: str, fmt="json", output_path: Optional[str] = None) -> bytes:
        from ..export import export_snapshot
        return export_snapshot(self.store.get(snapshot_id), fmt, output_path=output_path)

    def verify_snapshot(self, snapshot_id: str) -> VerificationResult:
        """Structural integrity check of the stored record."""
        return verify(self.store.get_raw(snapshot_id))

    def statistics(self) -> Dict[str, Any]:
        """Counts and sizes per category and per zone, from listing metadata."""
        by_category = {c.value: {"count": 0, "size": 0} for c in SnapshotCategory}
        zones: Dict[str, Dict[str, Any]] = {}
        oldest: Optional[datetime] = None
        newest: Optional[datetime] = None
        total_size = 0

        metas = self.store.list()
        for meta in metas:
            bucket = by_category.setdefault(meta.category, {"count": 0, "size": 0})
            bucket["count"] += 1
            bucket["size"] += meta.size
            total_size += meta.size

            if oldest is None or meta.created_at < oldest:
                oldest = meta.created_at
            if newest is None or meta.created_at > newest:
                newest = meta.created_at

            zone = zones.setdefault(meta.resource_id, {
                "name": meta.resource_name, "count": 0, "size": 0, "lastSnapshot": None,
            })
            zone["count"] += 1
            zone["size"] += meta.size
            if zone["lastSnapshot"] is None or meta.created_at > zone["lastSnapshot"]:
                zone["lastSnapshot"] = meta.created_at

        for zone in zones.values():
            zone["lastSnapshot"] = format_timestamp(zone["lastSnapshot"])

        return {
            "totalSnapshots": len(metas),
            "totalSize": total_size,
            "byCategory": by_category,
            "oldestSnapshot": format_timestamp(oldest) if oldest else None,
            "newestSnapshot": format_timestamp(newest) if newest else None,
            "zones": zones,
        }

    def health_check(self) -> Dict[str, Any]:
        """
        Check the store and scheduler.

        Returns:
            {"status": healthy | degraded | unhealthy, "checks", "statistics", "errors"}
        """
        health: Dict[str, Any] = {
            "status": "healthy",
            "checks": {
                "storeAccessible": False,
                "schedulerRunning": self.scheduler is not None and self.scheduler.running,
                "automaticBackups": bool(self._automatic_jobs),
                "scheduledJobs": len(self.scheduler.jobs()) if self.scheduler is not None else 0,
            },
            "statistics": None,
            "errors": [],
        }

        root = getattr(self.store, "root", None)
        if root is not None and not Path(root).is_dir():
            health["errors"].append(f"Snapshot directory not accessible: {root}")
        else:
            health["checks"]["storeAccessible"] = True

        try:
            health["statistics"] = self.statistics()
        except (OSError, SnapshotError) as e:
            health["status"] = "unhealthy"
            health["errors"].append(str(e))
            return health

        if self._automatic_jobs and not health["checks"]["schedulerRunning"]:
            health["errors"].append("Automatic backups are enabled but the scheduler is not running")
        if health["errors"]:
            health["status"] = "degraded"
        return health

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _require_scheduler(self) -> Scheduler:
        if self.scheduler is None:
            raise SnapshotError("No scheduler configured")
        return self.scheduler

    def schedule_snapshot(
        self,
        resource_id: str,
        at: datetime,
        category=SnapshotCategory.SCHEDULED,
        description: str = "Scheduled snapshot",
        include_secrets: bool = False,
        created_by: Optional[str] = None,
    ) -> JobHandle:
        """
        Take a snapshot of a zone once, at `at`.

        Raises:
            ValidationError: `at` is in the past, or bad category
        """
        scheduler = self._require_scheduler()
        SnapshotCategory.parse(category)

        def run():
            try:
                return self.create_snapshot(
                    resource_id, category=category, description=description,
                    include_secrets=include_secrets, created_by=created_by,
                )
            finally:
                self._scheduled.pop(handle.id, None)

        handle = scheduler.schedule_once(at, run, name=f"snapshot {resource_id}")
        self._scheduled[handle.id] = handle
        self._record(
            "SCHEDULE_SNAPSHOT",
            resource_id,
            {"jobId": handle.id, "scheduledFor": handle.next_run.isoformat()},
            actor=created_by,
        )
        return handle

    def cancel_scheduled(self, job_id: str) -> bool:
        """Cancel a one-shot snapshot. False if no such job is pending."""
        scheduler = self._require_scheduler()
        self._scheduled.pop(job_id, None)
        return scheduler.cancel(job_id)

    def scheduled_jobs(self) -> List[JobHandle]:
        return self._require_scheduler().jobs()

    def enable_automatic_backups(self) -> List[JobHandle]:
        """Register the daily, weekly and cleanup jobs. Idempotent."""
        scheduler = self._require_scheduler()
        if not self._automatic_jobs:
            jobs = {
                "daily": lambda: self.run_automatic_backup(SnapshotCategory.DAILY),
                "weekly": lambda: self.run_automatic_backup(SnapshotCategory.WEEKLY),
                "cleanup": lambda: self.prune_snapshots(),
            }
            for name in AUTOMATIC_JOB_NAMES:
                self._automatic_jobs[name] = scheduler.schedule_recurring(
                    self.schedule_specs[name], jobs[name], name=f"automatic {name}",
                )
            logger.info("Automatic backup jobs enabled")
        return list(self._automatic_jobs.values())

    def disable_automatic_backups(self) -> None:
        scheduler = self._require_scheduler()
        for handle in self._automatic_jobs.values():
            scheduler.cancel(handle)
        self._automatic_jobs.clear()
        logger.info("Automatic backup jobs disabled")

    def run_automatic_backup(self, category=SnapshotCategory.DAILY) -> BulkResult:
        """Snapshot every managed zone (every stored zone if none configured)."""
        category = SnapshotCategory.parse(category)
        zones = self.managed_zones or self.store.resource_ids()
        logger.info("Starting %s automatic backup of %d zones", category.value, len(zones))
        result = self.create_snapshots(
            zones,
            category=category,
            description=f"Automatic {category.value} snapshot",
        )
        log_event(logger, logging.INFO, "Automatic backup completed",
                  category=category.value, total=result.total,
                  successful=result.successful, failed=result.failed)
        return result
