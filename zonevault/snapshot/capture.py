"""
Snapshot capture - collects a zone's configuration into a new snapshot.
"""

import copy
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import PersistError, UpstreamUnavailable, ValidationError, is_retryable
from .models import REDACTED, Snapshot, SnapshotCategory
from .store import SnapshotStore

logger = logging.getLogger(__name__)

# Setting names that hold credentials
SECRET_NAME_PATTERN = re.compile(r"(token|secret|password|api_key|private_key)", re.IGNORECASE)

# DNS record types whose content may carry secrets (verification tokens, DKIM keys)
SECRET_RECORD_TYPES = {"TXT"}


def redact_settings(settings: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Replace secret-bearing values with the redaction marker.

    Returns a new mapping; the input is left untouched.
    """
    redacted = {}
    for key, value in settings.items():
        if SECRET_NAME_PATTERN.search(key):
            redacted[key] = REDACTED
        elif isinstance(value, list):
            redacted[key] = [_redact_record(item) for item in value]
        else:
            redacted[key] = copy.deepcopy(value)
    return redacted


def _redact_record(item: Any) -> Any:
    if isinstance(item, Mapping) and str(item.get("type", "")).upper() in SECRET_RECORD_TYPES:
        record = copy.deepcopy(dict(item))
        if "content" in record:
            record["content"] = REDACTED
        return record
    return copy.deepcopy(item)


class SnapshotBuilder:
    """Captures zone configuration and persists it as a snapshot."""

    def __init__(
        self,
        provider,
        local_store,
        store: SnapshotStore,
        recorder,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
        max_backoff: float = 5.0,
    ):
        """
        Initialize snapshot builder.

        Args:
            provider: SettingsProvider for live zone settings
            local_store: LocalConfigStore for the locally tracked config
            store: SnapshotStore the new snapshot is written to
            recorder: ActivityRecorder receiving one entry per snapshot
            retry_attempts: Attempts per collaborator read
            retry_backoff: First backoff delay in seconds (doubles each retry)
            max_backoff: Upper bound for a single backoff delay
        """
        self.provider = provider
        self.local_store = local_store
        self.store = store
        self.recorder = recorder
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.max_backoff = max_backoff

    def build(
        self,
        resource_id: str,
        category=SnapshotCategory.MANUAL,
        description: str = "Manual snapshot",
        include_secrets: bool = False,
        created_by: Optional[str] = None,
    ) -> Snapshot:
        """
        Capture and persist a snapshot of a zone.

        Args:
            resource_id: Zone to capture
            category: Partition to store under (not `merged`)
            description: Free text
            include_secrets: Keep secret-bearing values instead of redacting
            created_by: Actor, None for system-triggered snapshots

        Returns:
            The persisted snapshot

        Raises:
            ValidationError: Bad category
            UpstreamUnavailable: A read failed beyond the retry budget
            PersistError: The store write failed
        """
        category = SnapshotCategory.parse(category)
        if category == SnapshotCategory.MERGED:
            raise ValidationError("Merged snapshots are produced by merge, not capture")

        # Both reads are independent and read-only
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="capture") as pool:
            bundle_future = pool.submit(
                self._read, "Settings provider", self.provider.get_settings, resource_id)
            local_future = pool.submit(
                self._read, "Local config store", self.local_store.load, resource_id)
            bundle = bundle_future.result()
            local_config = local_future.result()

        settings = bundle.settings if include_secrets else redact_settings(bundle.settings)

        snapshot = Snapshot.create(
            resource_id=resource_id,
            resource_name=bundle.resource_name or resource_id,
            category=category,
            resource_settings=settings,
            local_config=local_config or {},
            firewall_rules=bundle.firewall_rules,
            created_by=created_by,
            description=description,
            resource_status=bundle.status,
            include_secrets=include_secrets,
        )

        for warning in snapshot.validate():
            logger.warning("%s: %s", snapshot.id, warning)

        try:
            meta = self.store.put(snapshot)
        except PersistError:
            raise
        except OSError as e:
            raise PersistError(f"Failed to persist snapshot {snapshot.id}: {e}") from e

        try:
            self.recorder.record(
                "CREATE_SNAPSHOT",
                resource_id,
                {
                    "snapshotId": snapshot.id,
                    "recordName": meta.record_name,
                    "type": category.value,
                    "description": description,
                    "includeSecrets": include_secrets,
                },
                actor=created_by,
            )
        except Exception:
            logger.exception("Failed to record activity for snapshot %s", snapshot.id)

        logger.info("Snapshot created: %s (%s, %s, %d bytes)",
                    snapshot.id, snapshot.resource_name, category.value, meta.size)
        return snapshot

    def _read(self, label: str, fn: Callable[[str], Any], resource_id: str) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=0, max=self.max_backoff),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(fn, resource_id)
        except Exception as e:
            raise UpstreamUnavailable(
                f"{label} unavailable for {resource_id}: {e}", resource_id=resource_id
            ) from e
