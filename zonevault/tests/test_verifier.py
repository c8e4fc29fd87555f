"""Tests for stored snapshot verification."""

import json

import pytest

from zonevault.snapshot.verifier import CHECK_NAMES, verify
from zonevault.tests.mocks import make_snapshot


def _raw(data) -> bytes:
    return json.dumps(data).encode("utf-8")


@pytest.fixture
def record():
    return make_snapshot().to_dict()


def test_valid_record(record):
    result = verify(_raw(record))

    assert result.valid
    assert result.errors == []
    assert result.warnings == []
    assert all(result.checks[name] for name in CHECK_NAMES)
    assert result.size == len(_raw(record))


@pytest.mark.parametrize("raw", [b"", b"{not json", b"\xff\xfe", b"[1, 2, 3]"])
def test_unreadable_input_never_raises(raw):
    result = verify(raw)
    assert not result.valid
    assert not result.checks["readable_content"]


def test_missing_resource(record):
    del record["resource"]

    result = verify(_raw(record))

    assert not result.valid
    assert not result.checks["has_resource_info"]
    assert not result.checks["valid_structure"]
    assert result.checks["has_metadata"]


def test_missing_metadata_id(record):
    record["metadata"]["id"] = ""
    result = verify(_raw(record))
    assert not result.valid
    assert not result.checks["has_metadata"]


def test_settings_must_be_objects(record):
    record["settings"] = {"resourceSettings": ["ssl"], "localConfig": None}
    result = verify(_raw(record))
    assert not result.valid
    assert not result.checks["has_settings"]


def test_local_config_alone_is_enough(record):
    record["settings"] = {"localConfig": {"ssl_mode": "full"}}
    assert verify(_raw(record)).valid


def test_missing_version_is_a_warning(record):
    del record["metadata"]["version"]
    result = verify(_raw(record))
    assert result.valid
    assert result.warnings == ["Schema version is missing"]


def test_unknown_version_is_a_warning(record):
    record["metadata"]["version"] = "2.0"
    result = verify(_raw(record))
    assert result.valid
    assert result.warnings == ["Unrecognized schema version: 2.0"]


def test_unparseable_version_is_an_error(record):
    record["metadata"]["version"] = "v-next"
    assert not verify(_raw(record)).valid


def test_unknown_keys_are_warnings(record):
    record["settings"]["resourceSettings"]["quantum_mode"] = "on"
    record["settings"]["localConfig"]["favourite_colour"] = "orange"
    record["metadata"]["type"] = "hourly"

    result = verify(_raw(record))

    assert result.valid
    assert set(result.warnings) == {
        "Unrecognized resource setting: quantum_mode",
        "Unrecognized local config key: favourite_colour",
        "Unrecognized snapshot type: hourly",
    }


def test_malformed_firewall_rule_is_a_warning(record):
    record["firewall"]["rules"].append({"expression": "(ip.src eq 192.0.2.1)"})
    result = verify(_raw(record))
    assert result.valid
    assert result.warnings == ["Firewall rule 2 is missing expression or action"]


def test_to_dict(record):
    data = verify(_raw(record)).to_dict()
    assert set(data) == {"valid", "errors", "warnings", "checks", "size"}
