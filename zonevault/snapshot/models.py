"""
Data models for the snapshot engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import copy
import re
import uuid

from ..errors import ValidationError


SCHEMA_VERSION = "1.0"
KNOWN_SCHEMA_VERSIONS = ("1.0",)
SCHEMA_VERSION_PATTERN = re.compile(r"^\d+\.\d+$")

REDACTED = "[REDACTED]"


class SnapshotCategory(str, Enum):
    """Partition a snapshot is stored under."""
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    DAILY = "daily"
    WEEKLY = "weekly"
    SCHEDULED = "scheduled"
    MERGED = "merged"

    @classmethod
    def parse(cls, value: Any) -> "SnapshotCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ValidationError(f"Unknown snapshot category: {value!r}. Valid: {valid}")


# Zone settings recognized from the Cloudflare settings API
KNOWN_RESOURCE_SETTINGS = {
    '0rtt',
    'advanced_ddos',
    'always_online',
    'always_use_https',
    'automatic_https_rewrites',
    'bot_fight_mode',
    'brotli',
    'browser_cache_ttl',
    'browser_check',
    'browser_integrity_check',
    'cache_level',
    'challenge_ttl',
    'ciphers',
    'development_mode',
    'dns_records',
    'early_hints',
    'email_obfuscation',
    'hotlink_protection',
    'http2',
    'http3',
    'ip_geolocation',
    'ipv6',
    'min_tls_version',
    'minify',
    'mirage',
    'opportunistic_encryption',
    'opportunistic_onion',
    'polish',
    'privacy_pass',
    'rocket_loader',
    'security_header',
    'security_level',
    'server_side_exclude',
    'ssl',
    'ssl_mode',
    'super_bot_fight_mode',
    'tls_1_3',
    'tls_client_auth',
    'waf',
    'websockets',
}

# Columns of the locally tracked security configuration record
KNOWN_LOCAL_CONFIG_KEYS = {
    'security_level',
    'ssl_mode',
    'always_use_https',
    'min_tls_version',
    'opportunistic_encryption',
    'tls_1_3',
    'automatic_https_rewrites',
    'bot_fight_mode',
    'super_bot_fight_mode',
    'browser_integrity_check',
    'challenge_ttl',
    'privacy_pass',
    'security_headers',
    'ddos_protection',
    'rate_limiting',
    'waf',
    'ip_access_rules',
    'country_access_rules',
    'scrape_shield',
    'development_mode',
    'development_mode_expires',
    'config_version',
    'is_template',
    'template_name',
    'notes',
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO 8601 UTC with microseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def generate_snapshot_id(created_at: datetime) -> str:
    """Creation time prefix + random 128-bit suffix, so ids sort by time."""
    stamp = created_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{uuid.uuid4().hex}"


# =============================================================================
# Read-only containers
# =============================================================================

def _read_only(self, *args, **kwargs):
    raise TypeError(f"{type(self).__name__} is read-only; copy.deepcopy() it to edit")


class FrozenDict(dict):
    """dict that rejects mutation. Copies are plain, editable dicts."""

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __copy__(self):
        return dict(self)

    def __deepcopy__(self, memo):
        return {key: copy.deepcopy(value, memo) for key, value in self.items()}

    def __reduce__(self):
        return (dict, (copy.deepcopy(self),))


class FrozenList(list):
    """list that rejects mutation. Copies are plain, editable lists."""

    __setitem__ = __delitem__ = __iadd__ = __imul__ = _read_only
    append = extend = insert = pop = remove = clear = sort = reverse = _read_only

    def __copy__(self):
        return list(self)

    def __deepcopy__(self, memo):
        return [copy.deepcopy(value, memo) for value in self]

    def __reduce__(self):
        return (list, (copy.deepcopy(self),))


def freeze(value: Any) -> Any:
    """Recursively wrap mappings and lists in their read-only counterparts."""
    if isinstance(value, Mapping):
        return FrozenDict((key, freeze(item)) for key, item in value.items())
    if isinstance(value, list):
        return FrozenList(freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class FirewallRule:
    """A firewall rule; identity for diff/merge is (expression, action)."""
    expression: str
    action: str
    description: str = ""
    priority: Optional[int] = None

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.expression, self.action)

    @property
    def label(self) -> str:
        return f"{self.action}: {self.expression}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression": self.expression,
            "action": self.action,
            "description": self.description,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FirewallRule":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Firewall rule must be an object, got {type(data).__name__}")
        expression = data.get("expression")
        if expression is None and isinstance(data.get("filter"), Mapping):
            # Cloudflare nests the expression under the rule's filter
            expression = data["filter"].get("expression")
        action = data.get("action")
        if not expression or not action:
            raise ValidationError("Firewall rule requires 'expression' and 'action'")
        return cls(
            expression=str(expression),
            action=str(action),
            description=data.get("description") or "",
            priority=data.get("priority"),
        )


@dataclass(frozen=True)
class Conflict:
    """A field or rule on which merged snapshots disagree."""
    section: str                       # resource_settings, local_config, firewall_rules
    field: str
    values: Tuple[Any, ...]            # every input's value, in input order
    snapshot_ids: Tuple[str, ...] = ()
    resolution: Optional[str] = None   # "latest_wins" or None when left to the caller

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "field": self.field,
            "values": list(self.values),
            "snapshotIds": list(self.snapshot_ids),
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conflict":
        return cls(
            section=data.get("section", ""),
            field=data.get("field", ""),
            values=tuple(data.get("values") or ()),
            snapshot_ids=tuple(data.get("snapshotIds") or ()),
            resolution=data.get("resolution"),
        )


@dataclass(frozen=True)
class Snapshot:
    """Captured configuration of a resource at a point in time."""

    # Identity
    id: str
    resource_id: str
    resource_name: str
    category: SnapshotCategory
    created_at: datetime

    # Captured configuration
    resource_settings: Dict[str, Any] = field(default_factory=dict)
    local_config: Dict[str, Any] = field(default_factory=dict)
    firewall_rules: Tuple[FirewallRule, ...] = ()

    # Metadata
    created_by: Optional[str] = None
    description: str = ""
    resource_status: Optional[str] = None
    schema_version: str = SCHEMA_VERSION
    include_secrets: bool = False

    # Merge provenance (category == merged)
    merged_from: Tuple[str, ...] = ()
    conflicts: Tuple[Conflict, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "category", SnapshotCategory.parse(self.category))
        object.__setattr__(self, "resource_settings", freeze(self.resource_settings))
        object.__setattr__(self, "local_config", freeze(self.local_config))
        object.__setattr__(self, "firewall_rules", tuple(self.firewall_rules))
        object.__setattr__(self, "merged_from", tuple(self.merged_from))
        object.__setattr__(self, "conflicts", tuple(self.conflicts))

    @classmethod
    def create(
        cls,
        resource_id: str,
        resource_name: str,
        category: Any,
        resource_settings: Mapping[str, Any],
        local_config: Mapping[str, Any],
        firewall_rules: Sequence[FirewallRule] = (),
        created_by: Optional[str] = None,
        description: str = "",
        resource_status: Optional[str] = None,
        include_secrets: bool = False,
        merged_from: Sequence[str] = (),
        conflicts: Sequence[Conflict] = (),
        created_at: Optional[datetime] = None,
    ) -> 'Snapshot':
        """Create a new snapshot with generated ID and timestamp."""
        created_at = created_at or utcnow()
        return cls(
            id=generate_snapshot_id(created_at),
            resource_id=resource_id,
            resource_name=resource_name,
            category=category,
            created_at=created_at,
            resource_settings=copy.deepcopy(dict(resource_settings)),
            local_config=copy.deepcopy(dict(local_config)),
            firewall_rules=tuple(firewall_rules),
            created_by=created_by,
            description=description,
            resource_status=resource_status,
            include_secrets=include_secrets,
            merged_from=tuple(merged_from),
            conflicts=tuple(conflicts),
        )

    @property
    def record_name(self) -> str:
        """Store address: {category}/{resourceName}_{createdAt}_{id}.json"""
        stamp = re.sub(r"[:.]", "-", format_timestamp(self.created_at))
        return f"{self.category.value}/{safe_name(self.resource_name)}_{stamp}_{self.id}.json"

    @property
    def unresolved_conflicts(self) -> List[Conflict]:
        return [c for c in self.conflicts if not c.resolved]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted record layout."""
        metadata: Dict[str, Any] = {
            "id": self.id,
            "createdAt": format_timestamp(self.created_at),
            "createdBy": self.created_by,
            "version": self.schema_version,
            "type": self.category.value,
            "description": self.description,
            "includeSecrets": self.include_secrets,
        }
        if self.category == SnapshotCategory.MERGED or self.merged_from:
            metadata["mergedFrom"] = list(self.merged_from)
            metadata["conflicts"] = [c.to_dict() for c in self.conflicts]

        return {
            "metadata": metadata,
            "resource": {
                "id": self.resource_id,
                "name": self.resource_name,
                "status": self.resource_status,
            },
            "settings": {
                "resourceSettings": copy.deepcopy(self.resource_settings),
                "localConfig": copy.deepcopy(self.local_config),
            },
            "firewall": {
                "rules": [rule.to_dict() for rule in self.firewall_rules],
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Snapshot':
        """Create from the persisted record layout."""
        if not isinstance(data, Mapping):
            raise ValidationError("Snapshot record must be a JSON object")

        sections = {}
        for name in ("metadata", "resource", "settings", "firewall"):
            section = data.get(name) or {}
            if not isinstance(section, Mapping):
                raise ValidationError(f"Snapshot section '{name}' must be an object")
            sections[name] = section
        metadata = sections["metadata"]
        resource = sections["resource"]
        settings = sections["settings"]
        firewall = sections["firewall"]

        rules = firewall.get("rules") or []
        if not isinstance(rules, list) or not all(isinstance(r, Mapping) for r in rules):
            raise ValidationError("firewall.rules must be a list of objects")
        conflicts = metadata.get("conflicts") or []
        if not isinstance(conflicts, list) or not all(isinstance(c, Mapping) for c in conflicts):
            raise ValidationError("metadata.conflicts must be a list of objects")

        violations = []
        if not metadata.get("id"):
            violations.append("metadata.id is required")
        if not metadata.get("createdAt"):
            violations.append("metadata.createdAt is required")
        if not resource.get("id"):
            violations.append("resource.id is required")
        if violations:
            raise ValidationError("Invalid snapshot record", violations)

        resource_settings = settings.get("resourceSettings") or {}
        local_config = settings.get("localConfig") or {}
        if not isinstance(resource_settings, Mapping) or not isinstance(local_config, Mapping):
            raise ValidationError("settings.resourceSettings and settings.localConfig must be objects")

        return cls(
            id=metadata["id"],
            resource_id=resource["id"],
            resource_name=resource.get("name") or resource["id"],
            category=metadata.get("type", SnapshotCategory.MANUAL.value),
            created_at=parse_timestamp(metadata["createdAt"]),
            resource_settings=dict(resource_settings),
            local_config=dict(local_config),
            firewall_rules=tuple(FirewallRule.from_dict(r) for r in rules),
            created_by=metadata.get("createdBy"),
            description=metadata.get("description") or "",
            resource_status=resource.get("status"),
            schema_version=metadata.get("version") or SCHEMA_VERSION,
            include_secrets=bool(metadata.get("includeSecrets", False)),
            merged_from=tuple(metadata.get("mergedFrom") or ()),
            conflicts=tuple(Conflict.from_dict(c) for c in conflicts),
        )

    def validate(self) -> List[str]:
        """
        Check structural rules.

        Returns:
            Warnings (unknown keys are tolerated for forward compatibility)

        Raises:
            ValidationError: If the snapshot is structurally unusable
        """
        violations = []
        if not self.id:
            violations.append("id is required")
        if not self.resource_id:
            violations.append("resource_id is required")
        if not isinstance(self.resource_settings, Mapping):
            violations.append("resource_settings must be a mapping")
        if not isinstance(self.local_config, Mapping):
            violations.append("local_config must be a mapping")
        for index, rule in enumerate(self.firewall_rules):
            if not isinstance(rule, FirewallRule) or not rule.expression or not rule.action:
                violations.append(f"firewall rule {index} requires expression and action")
        if self.category == SnapshotCategory.MERGED and not self.merged_from:
            violations.append("merged snapshot requires merged_from")
        if violations:
            raise ValidationError(f"Snapshot '{self.id}' is malformed", violations)

        warnings = []
        for key in self.resource_settings:
            if key not in KNOWN_RESOURCE_SETTINGS:
                warnings.append(f"Unrecognized resource setting: {key}")
        for key in self.local_config:
            if key not in KNOWN_LOCAL_CONFIG_KEYS:
                warnings.append(f"Unrecognized local config key: {key}")
        if self.schema_version not in KNOWN_SCHEMA_VERSIONS:
            warnings.append(f"Unrecognized schema version: {self.schema_version}")
        return warnings


@dataclass
class SnapshotMeta:
    """Summary info for listing snapshots."""
    id: str
    resource_id: str
    resource_name: str
    category: str
    created_at: datetime
    description: str = ""
    size: int = 0
    record_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resourceId": self.resource_id,
            "resourceName": self.resource_name,
            "category": self.category,
            "createdAt": format_timestamp(self.created_at),
            "description": self.description,
            "size": self.size,
            "recordName": self.record_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SnapshotMeta':
        return cls(
            id=data["id"],
            resource_id=data["resourceId"],
            resource_name=data.get("resourceName", ""),
            category=data["category"],
            created_at=parse_timestamp(data["createdAt"]),
            description=data.get("description", ""),
            size=int(data.get("size", 0)),
            record_name=data.get("recordName", ""),
        )


@dataclass
class SettingsBundle:
    """Settings fetched from (or applied to) the Settings Provider."""
    resource_id: str
    resource_name: str
    settings: Dict[str, Any] = field(default_factory=dict)
    firewall_rules: List[FirewallRule] = field(default_factory=list)
    status: Optional[str] = None


@dataclass
class RetentionPolicy:
    """Retention limits supplied per prune invocation."""
    max_age_days: int = 30
    max_count_per_resource: int = 10
    exempt_categories: Tuple[str, ...] = ()

    def validate(self) -> None:
        violations = []
        if not isinstance(self.max_age_days, int) or self.max_age_days < 1:
            violations.append("max_age_days must be a positive integer")
        if not isinstance(self.max_count_per_resource, int) or self.max_count_per_resource < 1:
            violations.append("max_count_per_resource must be a positive integer")
        for category in self.exempt_categories:
            SnapshotCategory.parse(category)
        if violations:
            raise ValidationError("Invalid retention policy", violations)


def safe_name(name: str) -> str:
    """Make a resource name usable as a file name component."""
    cleaned = re.sub(r"[^A-Za-z0-9.-]+", "-", name or "").strip("-.")
    return cleaned or "resource"


def is_redacted(value: Any) -> bool:
    """True when a value (or anything nested in it) carries the redaction marker."""
    if value == REDACTED:
        return True
    if isinstance(value, Mapping):
        return any(is_redacted(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(is_redacted(v) for v in value)
    return False
