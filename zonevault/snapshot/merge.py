"""
Snapshot merge - N-way combination with explicit conflict detection.

The first snapshot is the base. Later snapshots contribute keys the base
lacks; a key present with a different value is a Conflict. Under
LATEST_WINS the later value is taken and the conflict is marked resolved;
under MANUAL_ONLY the base value stays and the conflict is left for the
caller, which makes the merged snapshot ineligible for restore.
Unresolved conflicts already carried by an input are inherited by the
result, whatever the strategy.
"""

import copy
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import ConflictUnresolved, InsufficientInput, ValidationError
from .diff import FIREWALL_RULES, LOCAL_CONFIG, RESOURCE_SETTINGS
from .models import Conflict, FirewallRule, Snapshot, SnapshotCategory

logger = logging.getLogger(__name__)


class MergeStrategy(str, Enum):
    LATEST_WINS = "latest_wins"
    MANUAL_ONLY = "manual_only"

    @classmethod
    def parse(cls, value) -> "MergeStrategy":
        if isinstance(value, cls):
            return value
        aliases = {"latest": cls.LATEST_WINS, "manual": cls.MANUAL_ONLY}
        text = str(value).lower().replace("-", "_")
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            raise ValidationError(f"Unknown merge strategy: {value!r}")


@dataclass
class MergeResult:
    """Merged snapshot plus every conflict found while building it."""
    snapshot: Snapshot
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def unresolved(self) -> List[Conflict]:
        return [c for c in self.conflicts if not c.resolved]

    @property
    def restorable(self) -> bool:
        return not self.unresolved

    def raise_for_conflicts(self) -> None:
        if self.unresolved:
            raise ConflictUnresolved(self.snapshot.id, self.unresolved)


def merge(
    snapshots: Sequence[Snapshot],
    strategy=MergeStrategy.LATEST_WINS,
    description: str = "Merged snapshot",
    created_by: Optional[str] = None,
) -> MergeResult:
    """
    Merge snapshots in input order.

    Args:
        snapshots: At least two snapshots; the first is the base
        strategy: LATEST_WINS or MANUAL_ONLY
        description: Description of the merged snapshot
        created_by: Actor requesting the merge

    Returns:
        MergeResult with a new `merged` snapshot and the conflict list

    Raises:
        InsufficientInput: If fewer than two snapshots are given
    """
    if len(snapshots) < 2:
        raise InsufficientInput("At least 2 snapshots are required for merging")
    strategy = MergeStrategy.parse(strategy)
    latest_wins = strategy == MergeStrategy.LATEST_WINS

    base = snapshots[0]
    settings = copy.deepcopy(base.resource_settings)
    local_config = copy.deepcopy(base.local_config)
    rules: "OrderedDict[Tuple[str, str], FirewallRule]" = OrderedDict()
    for rule in base.firewall_rules:
        rules.setdefault(rule.identity, rule)

    conflicting: "OrderedDict[Tuple[str, Any], None]" = OrderedDict()

    for snapshot in snapshots[1:]:
        for section, merged, incoming in (
            (RESOURCE_SETTINGS, settings, snapshot.resource_settings),
            (LOCAL_CONFIG, local_config, snapshot.local_config),
        ):
            for key, value in incoming.items():
                if key not in merged:
                    merged[key] = copy.deepcopy(value)
                elif merged[key] != value:
                    conflicting[(section, key)] = None
                    if latest_wins:
                        merged[key] = copy.deepcopy(value)

        for rule in snapshot.firewall_rules:
            existing = rules.get(rule.identity)
            if existing is None:
                rules[rule.identity] = rule
            elif existing != rule:
                conflicting[(FIREWALL_RULES, rule.identity)] = None
                if latest_wins:
                    rules[rule.identity] = rule

    conflicts = [
        _build_conflict(section, key, snapshots, latest_wins)
        for section, key in conflicting
    ]
    for snapshot in snapshots:
        for inherited in snapshot.unresolved_conflicts:
            if inherited not in conflicts:
                conflicts.append(inherited)

    merged_snapshot = Snapshot.create(
        resource_id=base.resource_id,
        resource_name=base.resource_name,
        category=SnapshotCategory.MERGED,
        resource_settings=settings,
        local_config=local_config,
        firewall_rules=list(rules.values()),
        created_by=created_by,
        description=description,
        resource_status=base.resource_status,
        include_secrets=all(s.include_secrets for s in snapshots),
        merged_from=[s.id for s in snapshots],
        conflicts=conflicts,
    )

    logger.info(
        "Merged %d snapshots into %s (%d conflicts, strategy=%s)",
        len(snapshots), merged_snapshot.id, len(conflicts), strategy.value,
    )
    return MergeResult(snapshot=merged_snapshot, conflicts=conflicts)


def _build_conflict(section: str, key, snapshots: Sequence[Snapshot], latest_wins: bool) -> Conflict:
    values: List[Any] = []
    ids: List[str] = []
    if section == FIREWALL_RULES:
        for snapshot in snapshots:
            for rule in snapshot.firewall_rules:
                if rule.identity == key:
                    values.append(rule.to_dict())
                    ids.append(snapshot.id)
                    break
        field_name = f"{key[1]}: {key[0]}"
    else:
        for snapshot in snapshots:
            source: Dict[str, Any] = getattr(snapshot, section)
            if key in source:
                values.append(copy.deepcopy(source[key]))
                ids.append(snapshot.id)
        field_name = key

    return Conflict(
        section=section,
        field=field_name,
        values=tuple(values),
        snapshot_ids=tuple(ids),
        resolution=MergeStrategy.LATEST_WINS.value if latest_wins else None,
    )
