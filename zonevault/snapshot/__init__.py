"""
Snapshot engine for zonevault.

Captures point-in-time copies of a zone's configuration and works with them:

- Capture from the Settings Provider and Local Config Store
- Durable, append-only storage with metadata listing
- Field-level diff and N-way merge with explicit conflicts
- Paced restore with dry-run and partial-failure reporting
- Count/age retention, cron and one-shot scheduling
- Integrity verification

Scope: zone settings, firewall rules and the local security config record
"""

from .models import (
    Snapshot,
    SnapshotCategory,
    SnapshotMeta,
    FirewallRule,
    Conflict,
    SettingsBundle,
    RetentionPolicy,
)
from .store import SnapshotStore, FileSnapshotStore
from .diff import diff, Change, ChangeKind, ChangeSet
from .merge import merge, MergeStrategy, MergeResult
from .capture import SnapshotBuilder
from .restore import RestoreExecutor, RestoreReport
from .retention import RetentionManager, PruneReport
from .scheduler import Scheduler, CronSpec, JobHandle
from .verifier import verify, VerificationResult
from .manager import SnapshotManager, BulkResult

__all__ = [
    'Snapshot',
    'SnapshotCategory',
    'SnapshotMeta',
    'FirewallRule',
    'Conflict',
    'SettingsBundle',
    'RetentionPolicy',
    'SnapshotStore',
    'FileSnapshotStore',
    'diff',
    'Change',
    'ChangeKind',
    'ChangeSet',
    'merge',
    'MergeStrategy',
    'MergeResult',
    'SnapshotBuilder',
    'RestoreExecutor',
    'RestoreReport',
    'RetentionManager',
    'PruneReport',
    'Scheduler',
    'CronSpec',
    'JobHandle',
    'verify',
    'VerificationResult',
    'SnapshotManager',
    'BulkResult',
]
