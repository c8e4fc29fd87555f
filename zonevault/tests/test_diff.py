"""Tests for snapshot diff."""

from datetime import timedelta

from zonevault.snapshot.diff import (
    FIREWALL_RULES,
    LOCAL_CONFIG,
    RESOURCE_SETTINGS,
    ChangeKind,
    diff,
)
from zonevault.tests.mocks import FIXED_NOW, ZONE_FIREWALL_RULES, make_snapshot


def test_snapshot_against_itself_is_empty():
    snapshot = make_snapshot()
    changeset = diff(snapshot, snapshot)
    assert changeset.is_empty
    assert len(changeset) == 0
    assert changeset.to_dict()["identical"] is True


def test_identity_and_description_are_ignored():
    a = make_snapshot(description="first", created_at=FIXED_NOW)
    b = make_snapshot(description="second", created_at=FIXED_NOW + timedelta(hours=1))
    assert diff(a, b).is_empty


def test_setting_changes():
    a = make_snapshot(settings={"ssl": "full", "http3": "on", "brotli": "on"})
    b = make_snapshot(settings={"ssl": "strict", "brotli": "on", "0rtt": "on"})

    changes = {(c.kind, c.field): c for c in diff(a, b).by_section(RESOURCE_SETTINGS)}

    assert set(changes) == {
        (ChangeKind.MODIFIED, "ssl"),
        (ChangeKind.REMOVED, "http3"),
        (ChangeKind.ADDED, "0rtt"),
    }
    modified = changes[(ChangeKind.MODIFIED, "ssl")]
    assert (modified.old_value, modified.new_value) == ("full", "strict")


def test_nested_values_compare_structurally():
    a = make_snapshot(local_config={"rate_limiting": {"enabled": True, "threshold": 100}})
    b = make_snapshot(local_config={"rate_limiting": {"threshold": 100, "enabled": True}})
    c = make_snapshot(local_config={"rate_limiting": {"enabled": True, "threshold": 50}})

    assert diff(a, b).is_empty
    [change] = diff(a, c).by_section(LOCAL_CONFIG)
    assert change.kind == ChangeKind.MODIFIED
    assert change.field == "rate_limiting"


def test_rule_order_does_not_matter():
    a = make_snapshot(rules=ZONE_FIREWALL_RULES)
    b = make_snapshot(rules=list(reversed(ZONE_FIREWALL_RULES)))
    assert diff(a, b).is_empty


def test_rule_changes():
    tor, wordpress = ZONE_FIREWALL_RULES
    renamed = dict(tor, description="Block Tor")
    new_rule = {"expression": "(ip.src in {192.0.2.0/24})", "action": "allow"}

    a = make_snapshot(rules=[tor, wordpress])
    b = make_snapshot(rules=[renamed, new_rule])

    changeset = diff(a, b)
    kinds = {c.field: c.kind for c in changeset.by_section(FIREWALL_RULES)}

    assert kinds == {
        'block: (ip.geoip.country eq "T1")': ChangeKind.MODIFIED,
        'challenge: (http.request.uri.path contains "/wp-login.php")': ChangeKind.REMOVED,
        "allow: (ip.src in {192.0.2.0/24})": ChangeKind.ADDED,
    }
    assert len(changeset.by_kind(ChangeKind.ADDED)) == 1


def test_sections_are_independent():
    a = make_snapshot(settings={"ssl": "full"}, local_config={"ssl_mode": "full"})
    b = make_snapshot(settings={"ssl": "full"}, local_config={"ssl_mode": "strict"})

    changeset = diff(a, b)
    assert changeset.by_section(RESOURCE_SETTINGS) == []
    assert [c.field for c in changeset.by_section(LOCAL_CONFIG)] == ["ssl_mode"]
