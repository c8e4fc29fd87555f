"""Activity audit log.

Appends structured JSON entries to a JSON Lines file.
Each entry records one mutating engine operation (create, merge, restore,
prune, delete) with timestamp, actor, resource and operation details.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path

from .base import ActivityRecorder

DEFAULT_ACTIVITY_FILE = Path.home() / ".zonevault" / "activity.jsonl"


class JsonlActivityRecorder(ActivityRecorder):

    def __init__(self, path=None):
        self.path = Path(path).expanduser() if path else DEFAULT_ACTIVITY_FILE
        self._lock = threading.Lock()

    def record(self, action, resource_id, details, actor=None):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "resource_id": resource_id,
            "actor": actor,
            "details": dict(details),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(self.path, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def entries(self):
        """Read back all recorded entries, oldest first."""
        if not self.path.exists():
            return []
        with open(self.path) as f:
            return [json.loads(line) for line in f if line.strip()]


class NullActivityRecorder(ActivityRecorder):
    """Discards entries. Used when no audit path is configured."""

    def record(self, action, resource_id, details, actor=None):
        pass
