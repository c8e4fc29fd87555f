"""
Snapshot diff - field-level comparison between two snapshots.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping

from .models import FirewallRule, Snapshot

RESOURCE_SETTINGS = "resource_settings"
LOCAL_CONFIG = "local_config"
FIREWALL_RULES = "firewall_rules"


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


@dataclass(frozen=True)
class Change:
    """A single differing entry."""
    kind: ChangeKind
    section: str
    field: str
    old_value: Any = None
    new_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "section": self.section,
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
        }


@dataclass
class ChangeSet:
    """Difference between two snapshots."""
    snapshot_a: str
    snapshot_b: str
    changes: List[Change] = field(default_factory=list)

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def by_section(self, section: str) -> List[Change]:
        return [c for c in self.changes if c.section == section]

    def by_kind(self, kind: ChangeKind) -> List[Change]:
        return [c for c in self.changes if c.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshotA": self.snapshot_a,
            "snapshotB": self.snapshot_b,
            "identical": self.is_empty,
            "changes": [c.to_dict() for c in self.changes],
        }


def diff(a: Snapshot, b: Snapshot) -> ChangeSet:
    """
    Compare two snapshots.

    id, created_at and description are ignored. Firewall rules are matched by
    (expression, action), so rule ordering never produces a change.

    Args:
        a: Older / reference snapshot
        b: Newer / compared snapshot

    Returns:
        ChangeSet with one Change per differing entry
    """
    changes = []
    changes.extend(diff_mappings(RESOURCE_SETTINGS, a.resource_settings, b.resource_settings))
    changes.extend(diff_mappings(LOCAL_CONFIG, a.local_config, b.local_config))
    changes.extend(diff_rules(a.firewall_rules, b.firewall_rules))
    return ChangeSet(snapshot_a=a.id, snapshot_b=b.id, changes=changes)


def diff_mappings(section: str, old: Mapping[str, Any], new: Mapping[str, Any]) -> List[Change]:
    changes = []
    # Keys of `old` first in their order, then keys only in `new`
    keys = list(old) + [k for k in new if k not in old]
    for key in keys:
        if key not in new:
            changes.append(Change(ChangeKind.REMOVED, section, key, old_value=old[key]))
        elif key not in old:
            changes.append(Change(ChangeKind.ADDED, section, key, new_value=new[key]))
        elif old[key] != new[key]:
            changes.append(Change(ChangeKind.MODIFIED, section, key,
                                  old_value=old[key], new_value=new[key]))
    return changes


def diff_rules(old_rules, new_rules) -> List[Change]:
    old = index_rules(old_rules)
    new = index_rules(new_rules)
    changes = []
    for identity, rule in old.items():
        other = new.get(identity)
        if other is None:
            changes.append(Change(ChangeKind.REMOVED, FIREWALL_RULES, rule.label,
                                  old_value=rule.to_dict()))
        elif other != rule:
            changes.append(Change(ChangeKind.MODIFIED, FIREWALL_RULES, rule.label,
                                  old_value=rule.to_dict(), new_value=other.to_dict()))
    for identity, rule in new.items():
        if identity not in old:
            changes.append(Change(ChangeKind.ADDED, FIREWALL_RULES, rule.label,
                                  new_value=rule.to_dict()))
    return changes


def index_rules(rules) -> Dict[tuple, FirewallRule]:
    """Rules keyed by identity; a later duplicate identity wins."""
    indexed: Dict[tuple, FirewallRule] = {}
    for rule in rules:
        indexed[rule.identity] = rule
    return indexed
