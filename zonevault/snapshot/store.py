"""
Snapshot store - durable, append-only snapshot persistence.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..errors import PersistError, SnapshotNotFound, ValidationError
from .models import Snapshot, SnapshotCategory, SnapshotMeta

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


class SnapshotStore(ABC):
    """Base interface for snapshot backends.

    Implementations: FileSnapshotStore.
    """

    @abstractmethod
    def put(self, snapshot: Snapshot) -> SnapshotMeta:
        """Persist a snapshot atomically. Returns its listing metadata."""
        pass

    @abstractmethod
    def get(self, snapshot_id: str) -> Snapshot:
        """Load a snapshot by ID."""
        pass

    @abstractmethod
    def get_raw(self, snapshot_id: str) -> bytes:
        """Stored bytes of a snapshot, for integrity checks."""
        pass

    @abstractmethod
    def list(self, resource_id=None, category=None, limit=None) -> List[SnapshotMeta]:
        """List snapshot metadata, newest first, without loading bodies."""
        pass

    @abstractmethod
    def delete(self, snapshot_id: str) -> None:
        """Delete a snapshot by ID."""
        pass

    def resource_ids(self) -> List[str]:
        """Every resource with at least one stored snapshot."""
        return sorted({meta.resource_id for meta in self.list()})


class FileSnapshotStore(SnapshotStore):
    """
    Snapshots as JSON files under a root directory.

    Layout:
        <root>/<category>/<resourceName>_<createdAt>_<id>.json
        <root>/<category>/<resourceName>_<createdAt>_<id>.meta.json

    The sidecar holds the listing metadata so `list` never parses bodies.
    """

    def __init__(self, root):
        self.root = Path(root)

    def ensure_layout(self) -> None:
        """Create one directory per category."""
        try:
            for category in SnapshotCategory:
                (self.root / category.value).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistError(f"Cannot create snapshot directories under {self.root}: {e}") from e

    # =========================================================================
    # Writes
    # =========================================================================

    def put(self, snapshot: Snapshot) -> SnapshotMeta:
        body_path = self.root / snapshot.record_name
        meta_path = _meta_path(body_path)

        if body_path.exists():
            raise PersistError(f"Snapshot {snapshot.id} already exists")

        body = json.dumps(snapshot.to_dict(), indent=2, default=str).encode("utf-8")
        meta = SnapshotMeta(
            id=snapshot.id,
            resource_id=snapshot.resource_id,
            resource_name=snapshot.resource_name,
            category=snapshot.category.value,
            created_at=snapshot.created_at,
            description=snapshot.description,
            size=len(body),
            record_name=snapshot.record_name,
        )

        try:
            body_path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(body_path, body)
            # The sidecar makes the snapshot visible to list()
            _atomic_write(meta_path, json.dumps(meta.to_dict(), indent=2).encode("utf-8"))
        except OSError as e:
            if body_path.exists():
                body_path.unlink()
            raise PersistError(f"Failed to write snapshot {snapshot.id}: {e}") from e

        logger.debug("Stored snapshot %s at %s", snapshot.id, body_path)
        return meta

    def delete(self, snapshot_id: str) -> None:
        body_path = self._find(snapshot_id)
        try:
            _meta_path(body_path).unlink(missing_ok=True)
            body_path.unlink()
        except OSError as e:
            raise PersistError(f"Failed to delete snapshot {snapshot_id}: {e}") from e
        logger.debug("Deleted snapshot %s", snapshot_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, snapshot_id: str) -> Snapshot:
        raw = self.get_raw(snapshot_id)
        try:
            return Snapshot.from_dict(json.loads(raw))
        except json.JSONDecodeError as e:
            raise PersistError(f"Snapshot {snapshot_id} is not valid JSON: {e}") from e

    def get_raw(self, snapshot_id: str) -> bytes:
        path = self._find(snapshot_id)
        try:
            return path.read_bytes()
        except OSError as e:
            raise PersistError(f"Failed to read snapshot {snapshot_id}: {e}") from e

    def list(self, resource_id=None, category=None, limit=None) -> List[SnapshotMeta]:
        if category is not None:
            categories = [SnapshotCategory.parse(category).value]
        else:
            categories = [c.value for c in SnapshotCategory]

        metas = []
        for name in categories:
            directory = self.root / name
            if not directory.is_dir():
                continue
            for meta_path in directory.glob(f"*{META_SUFFIX}"):
                try:
                    meta = SnapshotMeta.from_dict(json.loads(meta_path.read_text()))
                except (OSError, ValueError, KeyError, TypeError, ValidationError) as e:
                    logger.warning("Skipping unreadable snapshot metadata %s: %s", meta_path.name, e)
                    continue
                if resource_id is not None and meta.resource_id != resource_id:
                    continue
                metas.append(meta)

        metas.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        if limit is not None:
            metas = metas[:limit]
        return metas

    def _find(self, snapshot_id: str) -> Path:
        if not snapshot_id or "/" in snapshot_id or "*" in snapshot_id:
            raise SnapshotNotFound(snapshot_id)
        for path in self.root.glob(f"*/*_{snapshot_id}.json"):
            if not path.name.endswith(META_SUFFIX):
                return path
        raise SnapshotNotFound(snapshot_id)


def _meta_path(body_path: Path) -> Path:
    return body_path.with_name(body_path.name[:-len(".json")] + META_SUFFIX)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write to a temp file in the same directory, then rename into place."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
