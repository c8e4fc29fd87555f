"""
zonevault - Zone Configuration Snapshot Engine

Captures point-in-time copies of a Cloudflare zone's settings, firewall
rules and locally tracked security config; stores them durably; diffs,
merges and restores them; enforces retention and schedules automatic
snapshots.

Usage:
    # As a module
    python -m zonevault create <zone-id>

    # Programmatically
    from zonevault import Config, SnapshotManager

    manager = SnapshotManager.from_config(Config.load())
    snapshot = manager.create_snapshot("<zone-id>", description="before WAF change")
"""

__version__ = "1.0.0"

# Main exports
from .config import Config
from .errors import (
    SnapshotError,
    UpstreamUnavailable,
    PersistError,
    ValidationError,
    InsufficientInput,
    SnapshotNotFound,
    ConflictUnresolved,
    PartialApplyError,
    ProviderError,
    ProviderErrorKind,
)
from .snapshot import (
    Snapshot,
    SnapshotCategory,
    SnapshotManager,
    RetentionPolicy,
    MergeStrategy,
)
from .export import ExportFormat, export_snapshot, load_snapshot

__all__ = [
    # Version
    "__version__",
    # Engine
    "Config",
    "SnapshotManager",
    "Snapshot",
    "SnapshotCategory",
    "RetentionPolicy",
    "MergeStrategy",
    # Export
    "ExportFormat",
    "export_snapshot",
    "load_snapshot",
    # Errors
    "SnapshotError",
    "UpstreamUnavailable",
    "PersistError",
    "ValidationError",
    "InsufficientInput",
    "SnapshotNotFound",
    "ConflictUnresolved",
    "PartialApplyError",
    "ProviderError",
    "ProviderErrorKind",
]
