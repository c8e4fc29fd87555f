"""
Snapshot integrity verification - structural checks on stored bytes.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .models import (
    KNOWN_LOCAL_CONFIG_KEYS,
    KNOWN_RESOURCE_SETTINGS,
    KNOWN_SCHEMA_VERSIONS,
    SCHEMA_VERSION_PATTERN,
    SnapshotCategory,
)

CHECK_NAMES = (
    "has_metadata",
    "has_resource_info",
    "has_settings",
    "valid_structure",
    "readable_content",
)

REQUIRED_SECTIONS = ("metadata", "resource", "settings")


@dataclass
class VerificationResult:
    """Outcome of verify(): errors make it invalid, warnings do not."""
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checks: Dict[str, bool] = field(default_factory=lambda: {name: False for name in CHECK_NAMES})
    size: int = 0

    def fail(self, message: str) -> None:
        self.valid = False
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "checks": self.checks,
            "size": self.size,
        }


def verify(raw: bytes) -> VerificationResult:
    """
    Verify a stored snapshot record.

    Never raises; every problem is reported in the result.

    Args:
        raw: Record bytes as stored

    Returns:
        VerificationResult
    """
    result = VerificationResult(size=len(raw or b""))

    if not raw:
        result.fail("Empty snapshot record")
        return result

    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        result.fail(f"Unreadable snapshot record: {e}")
        return result

    if not isinstance(data, Mapping):
        result.fail("Snapshot record is not a JSON object")
        return result

    result.checks["readable_content"] = True

    metadata = data.get("metadata")
    resource = data.get("resource")
    settings = data.get("settings")

    # Metadata
    if isinstance(metadata, Mapping) and metadata.get("id") and metadata.get("createdAt"):
        result.checks["has_metadata"] = True
    else:
        result.fail("Missing or invalid metadata (id and createdAt are required)")
    if isinstance(metadata, Mapping):
        _check_version(metadata, result)
        category = metadata.get("type")
        if category is not None and category not in {c.value for c in SnapshotCategory}:
            result.warnings.append(f"Unrecognized snapshot type: {category}")

    # Resource
    if isinstance(resource, Mapping) and resource.get("id"):
        result.checks["has_resource_info"] = True
        if not resource.get("name"):
            result.warnings.append("Resource name is missing")
    else:
        result.fail("Missing or invalid resource information (resource.id is required)")

    # Settings
    if isinstance(settings, Mapping) and (
        isinstance(settings.get("resourceSettings"), Mapping)
        or isinstance(settings.get("localConfig"), Mapping)
    ):
        result.checks["has_settings"] = True
        _check_keys(settings.get("resourceSettings"), KNOWN_RESOURCE_SETTINGS,
                    "resource setting", result)
        _check_keys(settings.get("localConfig"), KNOWN_LOCAL_CONFIG_KEYS,
                    "local config key", result)
    else:
        result.fail("No resource settings or local config found")

    # Structure
    missing = [name for name in REQUIRED_SECTIONS if name not in data]
    result.checks["valid_structure"] = not missing
    if missing:
        result.fail(f"Invalid snapshot structure, missing: {', '.join(missing)}")

    _check_rules(data.get("firewall"), result)
    return result


def _check_version(metadata: Mapping[str, Any], result: VerificationResult) -> None:
    version = metadata.get("version")
    if version is None:
        result.warnings.append("Schema version is missing")
    elif not SCHEMA_VERSION_PATTERN.match(str(version)):
        result.fail(f"Unparseable schema version: {version!r}")
    elif str(version) not in KNOWN_SCHEMA_VERSIONS:
        result.warnings.append(f"Unrecognized schema version: {version}")


def _check_keys(section: Any, known, label: str, result: VerificationResult) -> None:
    if not isinstance(section, Mapping):
        return
    for key in section:
        if key not in known:
            result.warnings.append(f"Unrecognized {label}: {key}")


def _check_rules(firewall: Any, result: VerificationResult) -> None:
    if firewall is None:
        return
    rules = firewall.get("rules") if isinstance(firewall, Mapping) else None
    if not isinstance(rules, list):
        result.warnings.append("firewall.rules is not a list")
        return
    for index, rule in enumerate(rules):
        if not isinstance(rule, Mapping) or not rule.get("expression") or not rule.get("action"):
            result.warnings.append(f"Firewall rule {index} is missing expression or action")
