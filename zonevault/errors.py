"""
Error taxonomy for the snapshot engine.

SnapshotError: base for every engine failure
ProviderError: raised by Settings Provider implementations, classified by kind
PartialApplyError: per-field restore failures (reported, not thrown by default)
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ProviderErrorKind(str, Enum):
    """Classification of collaborator failures."""
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


RETRYABLE_KINDS = {ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.TRANSIENT}


class SnapshotError(Exception):
    """Base class for snapshot engine errors."""


class UpstreamUnavailable(SnapshotError):
    """Settings Provider or Local Config Store unreachable after retries."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id


class PersistError(SnapshotError):
    """Snapshot Store read or write failure."""


class ValidationError(SnapshotError):
    """Malformed snapshot, unknown category or invalid policy values."""

    def __init__(self, message: str, violations: Optional[List[str]] = None):
        super().__init__(message)
        self.violations = violations or []


class InsufficientInput(ValidationError):
    """Merge called with fewer than two snapshots."""


class SnapshotNotFound(SnapshotError):
    """No snapshot with the requested id."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot '{snapshot_id}' not found")
        self.snapshot_id = snapshot_id


class ConflictUnresolved(SnapshotError):
    """Merged snapshot still carries unresolved conflicts."""

    def __init__(self, snapshot_id: str, conflicts: List[Any]):
        super().__init__(
            f"Snapshot '{snapshot_id}' has {len(conflicts)} unresolved merge conflict(s)"
        )
        self.snapshot_id = snapshot_id
        self.conflicts = conflicts


class PartialApplyError(SnapshotError):
    """One or more settings or rules failed during restore."""

    def __init__(self, resource_id: str, errors: List[Dict[str, Any]]):
        fields = ", ".join(str(e.get("field")) for e in errors)
        super().__init__(f"Restore to '{resource_id}' failed for: {fields}")
        self.resource_id = resource_id
        self.errors = errors


class ProviderError(Exception):
    """
    Failure reported by a Settings Provider call.

    Carries the HTTP status (when there is one) and a kind used by the
    builder to decide whether the call is worth retrying.
    """

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.TRANSIENT,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @classmethod
    def from_status(cls, status_code: int, message: str) -> "ProviderError":
        """Classify an HTTP status code."""
        if status_code in (401, 403):
            kind = ProviderErrorKind.AUTH
        elif status_code == 404:
            kind = ProviderErrorKind.NOT_FOUND
        elif status_code == 429:
            kind = ProviderErrorKind.RATE_LIMIT
        elif status_code >= 500:
            kind = ProviderErrorKind.TRANSIENT
        else:
            kind = ProviderErrorKind.INVALID
        return cls(message, kind=kind, status_code=status_code)


def is_retryable(error: BaseException) -> bool:
    """True for transient collaborator failures (network, timeout, 429, 5xx)."""
    if isinstance(error, ProviderError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))
