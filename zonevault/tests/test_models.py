"""Tests for snapshot data models."""

import copy
import json
from datetime import datetime, timedelta, timezone

import pytest

from zonevault.errors import ValidationError
from zonevault.snapshot.models import (
    REDACTED,
    FirewallRule,
    RetentionPolicy,
    Snapshot,
    SnapshotCategory,
    format_timestamp,
    is_redacted,
    parse_timestamp,
    safe_name,
)
from zonevault.tests.mocks import FIXED_NOW, ZONE_ID, make_snapshot


class TestSnapshotCategory:

    def test_parse_is_case_insensitive(self):
        assert SnapshotCategory.parse("DAILY") is SnapshotCategory.DAILY
        assert SnapshotCategory.parse(SnapshotCategory.WEEKLY) is SnapshotCategory.WEEKLY

    def test_parse_unknown_raises(self):
        with pytest.raises(ValidationError, match="Unknown snapshot category"):
            SnapshotCategory.parse("hourly")


class TestTimestamps:

    def test_format_uses_utc_with_z_suffix(self):
        value = datetime(2024, 5, 1, 14, 30, 5, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-05-01T12:30:05.123456Z"

    def test_parse_round_trip(self):
        assert parse_timestamp(format_timestamp(FIXED_NOW)) == FIXED_NOW

    def test_parse_naive_is_utc(self):
        assert parse_timestamp("2024-05-01T12:00:00") == FIXED_NOW

    @pytest.mark.parametrize("value", ["", "yesterday", None])
    def test_parse_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_timestamp(value)


class TestFirewallRule:

    def test_from_cloudflare_payload_reads_nested_filter(self):
        rule = FirewallRule.from_dict({
            "action": "block",
            "description": "Block Tor exit nodes",
            "priority": 1,
            "filter": {"expression": '(ip.geoip.country eq "T1")'},
        })
        assert rule.expression == '(ip.geoip.country eq "T1")'
        assert rule.identity == ('(ip.geoip.country eq "T1")', "block")
        assert rule.label == 'block: (ip.geoip.country eq "T1")'

    def test_missing_action_rejected(self):
        with pytest.raises(ValidationError):
            FirewallRule.from_dict({"expression": "(ip.src eq 192.0.2.1)"})


class TestSnapshot:

    def test_create_generates_time_ordered_ids(self):
        older = make_snapshot(created_at=FIXED_NOW)
        newer = make_snapshot(created_at=FIXED_NOW + timedelta(seconds=1))
        assert older.id != newer.id
        assert older.id < newer.id
        assert older.id.startswith("20240501T120000000000Z-")

    def test_create_copies_input_mappings(self):
        settings = {"ssl": "full"}
        snapshot = make_snapshot(settings=settings)
        settings["ssl"] = "off"
        assert snapshot.resource_settings == {"ssl": "full"}

    def test_record_name(self):
        snapshot = make_snapshot(category="daily")
        assert snapshot.record_name == (
            f"daily/example.com_2024-05-01T12-00-00-000000Z_{snapshot.id}.json"
        )

    def test_dict_round_trip(self):
        snapshot = make_snapshot(created_by="ops@example.com", description="before WAF change")
        restored = Snapshot.from_dict(snapshot.to_dict())
        assert restored == snapshot

    def test_to_dict_layout(self):
        data = make_snapshot().to_dict()
        assert set(data) == {"metadata", "resource", "settings", "firewall"}
        assert data["metadata"]["type"] == "manual"
        assert data["metadata"]["version"] == "1.0"
        assert data["resource"]["id"] == ZONE_ID
        assert "mergedFrom" not in data["metadata"]

    def test_from_dict_reports_every_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            Snapshot.from_dict({"metadata": {}, "resource": {}})
        assert len(exc_info.value.violations) == 3

    @pytest.mark.parametrize("section, value", [
        ("metadata", [1]),
        ("resource", "z"),
        ("settings", [{"resourceSettings": {}}]),
        ("firewall", 7),
    ])
    def test_from_dict_rejects_non_object_sections(self, section, value):
        data = make_snapshot().to_dict()
        data[section] = value
        with pytest.raises(ValidationError, match=section):
            Snapshot.from_dict(data)

    @pytest.mark.parametrize("rules", [{"expression": "x"}, ["(ip.src eq 192.0.2.1)"]])
    def test_from_dict_rejects_malformed_rule_list(self, rules):
        data = make_snapshot().to_dict()
        data["firewall"]["rules"] = rules
        with pytest.raises(ValidationError, match="firewall.rules"):
            Snapshot.from_dict(data)

    def test_captured_settings_are_read_only(self):
        snapshot = make_snapshot(settings={"ssl": "full", "minify": {"css": "on"}, "dns_records": [{"type": "A"}]})

        with pytest.raises(TypeError):
            snapshot.resource_settings["ssl"] = "off"
        with pytest.raises(TypeError):
            snapshot.resource_settings["minify"]["css"] = "off"
        with pytest.raises(TypeError):
            snapshot.resource_settings["dns_records"].append({"type": "AAAA"})
        with pytest.raises(TypeError):
            snapshot.local_config.update({"waf": "off"})
        assert snapshot.resource_settings == {"ssl": "full", "minify": {"css": "on"}, "dns_records": [{"type": "A"}]}

    def test_deep_copy_of_settings_is_editable(self):
        snapshot = make_snapshot(settings={"minify": {"css": "on"}, "dns_records": [{"type": "A"}]})

        settings = copy.deepcopy(snapshot.resource_settings)
        settings["minify"]["css"] = "off"
        settings["dns_records"].append({"type": "AAAA"})

        assert type(settings) is dict
        assert snapshot.resource_settings["minify"] == {"css": "on"}
        assert json.loads(json.dumps(snapshot.resource_settings)) == {"minify": {"css": "on"}, "dns_records": [{"type": "A"}]}

    def test_validate_warns_on_unknown_keys(self):
        snapshot = make_snapshot(settings={"ssl": "full", "quantum_mode": "on"},
                                 local_config={"favourite_colour": "orange"})
        warnings = snapshot.validate()
        assert "Unrecognized resource setting: quantum_mode" in warnings
        assert "Unrecognized local config key: favourite_colour" in warnings

    def test_validate_rejects_merged_without_sources(self):
        snapshot = make_snapshot(category=SnapshotCategory.MERGED)
        with pytest.raises(ValidationError) as exc_info:
            snapshot.validate()
        assert "merged snapshot requires merged_from" in exc_info.value.violations


class TestRetentionPolicy:

    def test_defaults_are_valid(self):
        RetentionPolicy().validate()

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            RetentionPolicy(max_age_days=0, max_count_per_resource=-1).validate()
        assert len(exc_info.value.violations) == 2

    def test_unknown_exempt_category_rejected(self):
        with pytest.raises(ValidationError):
            RetentionPolicy(exempt_categories=("forever",)).validate()


def test_safe_name():
    assert safe_name("example.com") == "example.com"
    assert safe_name("my zone/../prod") == "my-zone-..-prod"
    assert safe_name("") == "resource"


def test_is_redacted_looks_into_nested_values():
    assert is_redacted(REDACTED)
    assert is_redacted([{"type": "TXT", "content": REDACTED}])
    assert not is_redacted({"css": "on"})
