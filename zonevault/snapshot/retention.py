"""
Snapshot retention - per-zone count and age limits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..errors import SnapshotError
from .models import RetentionPolicy, SnapshotCategory, SnapshotMeta, utcnow
from .store import SnapshotStore

logger = logging.getLogger(__name__)

EXCEEDED_LIMIT = "exceeded_limit"
EXPIRED = "expired"


@dataclass
class PruneReport:
    """What a prune deleted (or would delete) and what it kept."""
    dry_run: bool = False
    deleted: List[Dict[str, Any]] = field(default_factory=list)   # {"meta": SnapshotMeta, "reason": str}
    retained: List[SnapshotMeta] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    total_size_freed: int = 0

    @property
    def deleted_ids(self) -> List[str]:
        return [entry["meta"].id for entry in self.deleted]

    def extend(self, other: "PruneReport") -> None:
        self.deleted.extend(other.deleted)
        self.retained.extend(other.retained)
        self.errors.extend(other.errors)
        self.total_size_freed += other.total_size_freed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "deleted": [
                {**entry["meta"].to_dict(), "reason": entry["reason"]}
                for entry in self.deleted
            ],
            "retained": [meta.to_dict() for meta in self.retained],
            "errors": self.errors,
            "totalSizeFreed": self.total_size_freed,
        }


class RetentionManager:
    """Deletes snapshots beyond a policy's count or age limit."""

    def __init__(
        self,
        store: SnapshotStore,
        recorder=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.recorder = recorder
        self.clock = clock

    def plan(self, metas: List[SnapshotMeta], policy: RetentionPolicy) -> List[Dict[str, Any]]:
        """
        Decide which snapshots of one zone violate the policy.

        Args:
            metas: One zone's snapshots
            policy: Limits to apply

        Returns:
            [{"meta": SnapshotMeta, "reason": "exceeded_limit" | "expired"}]
        """
        policy.validate()
        cutoff = self.clock() - timedelta(days=policy.max_age_days)
        exempt = {SnapshotCategory.parse(c).value for c in policy.exempt_categories}

        candidates = sorted(
            (m for m in metas if m.category not in exempt),
            key=lambda m: (m.created_at, m.id),
            reverse=True,
        )

        doomed = []
        for index, meta in enumerate(candidates):
            if index >= policy.max_count_per_resource:
                doomed.append({"meta": meta, "reason": EXCEEDED_LIMIT})
            elif meta.created_at < cutoff:
                doomed.append({"meta": meta, "reason": EXPIRED})
        return doomed

    def prune(
        self,
        resource_id: str,
        policy: Optional[RetentionPolicy] = None,
        dry_run: bool = False,
    ) -> PruneReport:
        """
        Apply a retention policy to one zone.

        Args:
            resource_id: Zone whose snapshots are pruned
            policy: Limits, defaults to RetentionPolicy()
            dry_run: Compute the exact deletion set without deleting

        Returns:
            PruneReport

        Raises:
            ValidationError: If the policy is invalid
        """
        policy = policy or RetentionPolicy()
        metas = self.store.list(resource_id=resource_id)
        doomed = self.plan(metas, policy)
        doomed_ids = {entry["meta"].id for entry in doomed}

        report = PruneReport(dry_run=dry_run)
        report.retained = [m for m in metas if m.id not in doomed_ids]

        for entry in doomed:
            meta = entry["meta"]
            if not dry_run:
                try:
                    self.store.delete(meta.id)
                except SnapshotError as e:
                    logger.warning("Failed to delete snapshot %s: %s", meta.id, e)
                    report.errors.append({"id": meta.id, "message": str(e)})
                    continue
            report.deleted.append(entry)
            report.total_size_freed += meta.size

        if report.deleted and not dry_run and self.recorder is not None:
            try:
                self.recorder.record(
                    "PRUNE_SNAPSHOTS",
                    resource_id,
                    {
                        "deleted": report.deleted_ids,
                        "totalSizeFreed": report.total_size_freed,
                        "maxAgeDays": policy.max_age_days,
                        "maxCount": policy.max_count_per_resource,
                    },
                )
            except Exception:
                logger.exception("Failed to record activity for prune of %s", resource_id)

        logger.info(
            "Pruned %s%s: %d deleted, %d retained, %d errors, %d bytes freed",
            resource_id, " (dry run)" if dry_run else "",
            len(report.deleted), len(report.retained), len(report.errors),
            report.total_size_freed,
        )
        return report

    def prune_all(self, policy: Optional[RetentionPolicy] = None, dry_run: bool = False) -> PruneReport:
        """Apply a retention policy to every zone in the store."""
        policy = policy or RetentionPolicy()
        policy.validate()

        resource_ids = self.store.resource_ids()
        report = PruneReport(dry_run=dry_run)
        for resource_id in resource_ids:
            report.extend(self.prune(resource_id, policy, dry_run=dry_run))
        return report
