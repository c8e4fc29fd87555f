"""Tests for N-way snapshot merge."""

import pytest

from zonevault.errors import ConflictUnresolved, InsufficientInput, ValidationError
from zonevault.snapshot.diff import FIREWALL_RULES, LOCAL_CONFIG, RESOURCE_SETTINGS
from zonevault.snapshot.merge import MergeStrategy, merge
from zonevault.snapshot.models import SnapshotCategory
from zonevault.tests.mocks import make_snapshot


def test_merging_a_snapshot_with_itself_has_no_conflicts():
    snapshot = make_snapshot()
    result = merge([snapshot, snapshot])

    assert result.conflicts == []
    assert result.restorable
    assert result.snapshot.resource_settings == snapshot.resource_settings
    assert result.snapshot.local_config == snapshot.local_config
    assert result.snapshot.firewall_rules == snapshot.firewall_rules


def test_merged_snapshot_provenance():
    a = make_snapshot(description="a")
    b = make_snapshot(description="b")
    merged = merge([a, b], description="combined", created_by="ops@example.com").snapshot

    assert merged.category == SnapshotCategory.MERGED
    assert merged.merged_from == (a.id, b.id)
    assert merged.id not in (a.id, b.id)
    assert merged.description == "combined"
    assert merged.created_by == "ops@example.com"
    merged.validate()


def test_manual_only_keeps_base_and_records_conflict():
    a = make_snapshot(settings={"ssl": "full"})
    b = make_snapshot(settings={"ssl": "strict"})

    result = merge([a, b], strategy=MergeStrategy.MANUAL_ONLY)

    [conflict] = result.conflicts
    assert conflict.section == RESOURCE_SETTINGS
    assert conflict.field == "ssl"
    assert list(conflict.values) == ["full", "strict"]
    assert conflict.snapshot_ids == (a.id, b.id)
    assert not conflict.resolved
    assert result.snapshot.resource_settings["ssl"] == "full"
    assert not result.restorable
    assert result.snapshot.unresolved_conflicts == [conflict]
    with pytest.raises(ConflictUnresolved):
        result.raise_for_conflicts()


def test_latest_wins_takes_later_value():
    a = make_snapshot(settings={"ssl": "full"})
    b = make_snapshot(settings={"ssl": "strict"})

    result = merge([a, b], strategy="latest")

    [conflict] = result.conflicts
    assert conflict.resolved
    assert conflict.resolution == "latest_wins"
    assert result.snapshot.resource_settings["ssl"] == "strict"
    assert result.restorable


def test_later_snapshots_fill_missing_keys():
    a = make_snapshot(settings={"ssl": "full"}, local_config={"waf": True})
    b = make_snapshot(settings={"http3": "on"}, local_config={"notes": "from b"})
    c = make_snapshot(settings={"brotli": "on"}, local_config={})

    merged = merge([a, b, c]).snapshot

    assert merged.resource_settings == {"ssl": "full", "http3": "on", "brotli": "on"}
    assert merged.local_config == {"waf": True, "notes": "from b"}


def test_three_way_conflict_lists_every_value():
    a = make_snapshot(local_config={"security_level": "medium"})
    b = make_snapshot(local_config={})
    c = make_snapshot(local_config={"security_level": "under_attack"})
    d = make_snapshot(local_config={"security_level": "high"})

    result = merge([a, b, c, d], strategy=MergeStrategy.MANUAL_ONLY)

    [conflict] = result.conflicts
    assert conflict.section == LOCAL_CONFIG
    assert list(conflict.values) == ["medium", "under_attack", "high"]
    assert conflict.snapshot_ids == (a.id, c.id, d.id)


def test_firewall_rules_are_unioned_by_identity():
    block = {"expression": '(ip.geoip.country eq "T1")', "action": "block", "description": "Tor"}
    allow = {"expression": "(ip.src in {192.0.2.0/24})", "action": "allow", "description": "office"}
    a = make_snapshot(rules=[block])
    b = make_snapshot(rules=[block, allow])

    result = merge([a, b])

    assert [r.action for r in result.snapshot.firewall_rules] == ["block", "allow"]
    assert result.conflicts == []


def test_firewall_rule_attribute_conflict():
    a = make_snapshot(rules=[{"expression": "(cf.threat_score gt 14)", "action": "block", "priority": 1}])
    b = make_snapshot(rules=[{"expression": "(cf.threat_score gt 14)", "action": "block", "priority": 5}])

    result = merge([a, b], strategy=MergeStrategy.MANUAL_ONLY)

    [conflict] = result.conflicts
    assert conflict.section == FIREWALL_RULES
    assert conflict.field == "block: (cf.threat_score gt 14)"
    assert [v["priority"] for v in conflict.values] == [1, 5]
    assert result.snapshot.firewall_rules[0].priority == 1


def test_conflicts_survive_serialization():
    from zonevault.snapshot.models import Snapshot

    a = make_snapshot(settings={"ssl": "full"})
    b = make_snapshot(settings={"ssl": "strict"})
    merged = merge([a, b], strategy=MergeStrategy.MANUAL_ONLY).snapshot

    restored = Snapshot.from_dict(merged.to_dict())
    assert restored.merged_from == (a.id, b.id)
    assert len(restored.unresolved_conflicts) == 1


@pytest.mark.parametrize("strategy", [MergeStrategy.LATEST_WINS, MergeStrategy.MANUAL_ONLY])
def test_remerging_keeps_unresolved_conflicts(strategy):
    a = make_snapshot(settings={"ssl": "full"})
    b = make_snapshot(settings={"ssl": "strict"})
    conflicted = merge([a, b], strategy=MergeStrategy.MANUAL_ONLY).snapshot
    extra = make_snapshot(local_config={"waf": "on"})

    result = merge([conflicted, extra], strategy=strategy)

    assert not result.restorable
    assert result.snapshot.unresolved_conflicts == conflicted.unresolved_conflicts
    with pytest.raises(ConflictUnresolved):
        result.raise_for_conflicts()


def test_remerging_the_same_conflicted_snapshot_does_not_duplicate():
    a = make_snapshot(settings={"ssl": "full"})
    b = make_snapshot(settings={"ssl": "strict"})
    conflicted = merge([a, b], strategy=MergeStrategy.MANUAL_ONLY).snapshot

    result = merge([conflicted, conflicted])

    assert len(result.unresolved) == 1


@pytest.mark.parametrize("count", [0, 1])
def test_needs_two_snapshots(count):
    with pytest.raises(InsufficientInput):
        merge([make_snapshot() for _ in range(count)])


def test_insufficient_input_is_a_validation_error():
    assert issubclass(InsufficientInput, ValidationError)


def test_unknown_strategy():
    with pytest.raises(ValidationError):
        MergeStrategy.parse("first_wins")
