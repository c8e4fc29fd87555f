"""Tests for snapshot capture."""

import threading

import pytest

from zonevault.errors import (
    PersistError,
    ProviderError,
    ProviderErrorKind,
    UpstreamUnavailable,
    ValidationError,
)
from zonevault.snapshot.capture import SnapshotBuilder, redact_settings
from zonevault.snapshot.models import REDACTED, SnapshotCategory
from zonevault.tests.mocks import (
    LOCAL_CONFIG,
    UNKNOWN_ZONE_ID,
    ZONE_ID,
    ZONE_NAME,
    MockLocalConfigStore,
    MockSettingsProvider,
    RecordingActivityRecorder,
)


@pytest.fixture
def builder(provider, local_store, store, recorder):
    return SnapshotBuilder(provider, local_store, store, recorder, retry_backoff=0)


def test_build_captures_and_persists(builder, store):
    snapshot = builder.build(ZONE_ID, description="before WAF change", created_by="ops@example.com")

    assert snapshot.resource_id == ZONE_ID
    assert snapshot.resource_name == ZONE_NAME
    assert snapshot.resource_status == "active"
    assert snapshot.category == SnapshotCategory.MANUAL
    assert snapshot.local_config == LOCAL_CONFIG
    assert snapshot.resource_settings["ssl"] == "full"
    assert len(snapshot.firewall_rules) == 2
    assert store.get(snapshot.id) == snapshot


def test_build_records_activity(builder, recorder):
    snapshot = builder.build(ZONE_ID, category="daily", created_by="ops@example.com")

    [entry] = recorder.entries
    assert entry["action"] == "CREATE_SNAPSHOT"
    assert entry["resource_id"] == ZONE_ID
    assert entry["actor"] == "ops@example.com"
    assert entry["details"]["snapshotId"] == snapshot.id
    assert entry["details"]["type"] == "daily"
    assert entry["details"]["recordName"] == snapshot.record_name


def test_txt_record_content_is_redacted_by_default(builder):
    snapshot = builder.build(ZONE_ID)

    a_record, txt_record = snapshot.resource_settings["dns_records"]
    assert a_record["content"] == "192.0.2.10"
    assert txt_record["content"] == REDACTED
    assert txt_record["name"] == "_acme-challenge.example.com"
    assert snapshot.include_secrets is False


def test_include_secrets_keeps_values(builder):
    snapshot = builder.build(ZONE_ID, include_secrets=True)

    txt_record = snapshot.resource_settings["dns_records"][1]
    assert txt_record["content"] == "verification-token-abc123"
    assert snapshot.include_secrets is True


def test_redact_settings_by_name():
    settings = {"origin_api_token": "abc", "ssl": "full", "Client_Secret": "s3cret"}
    redacted = redact_settings(settings)

    assert redacted == {"origin_api_token": REDACTED, "ssl": "full", "Client_Secret": REDACTED}
    assert settings["origin_api_token"] == "abc"


def test_transient_failures_are_retried(builder, provider):
    provider.transient_failures = 2

    snapshot = builder.build(ZONE_ID)

    assert snapshot.resource_name == ZONE_NAME
    assert len(provider.calls_to("get_settings")) == 3


def test_retry_budget_exhausted(builder, provider, store):
    provider.transient_failures = 5

    with pytest.raises(UpstreamUnavailable) as exc_info:
        builder.build(ZONE_ID)

    assert exc_info.value.resource_id == ZONE_ID
    assert len(provider.calls_to("get_settings")) == 3
    assert store.list() == []


def test_permanent_errors_are_not_retried(builder, provider, recorder, store):
    provider.settings_error = ProviderError("Unauthorized", kind=ProviderErrorKind.AUTH, status_code=403)

    with pytest.raises(UpstreamUnavailable):
        builder.build(ZONE_ID)

    assert len(provider.calls_to("get_settings")) == 1
    assert store.list() == []
    assert recorder.entries == []


def test_unknown_zone(builder):
    with pytest.raises(UpstreamUnavailable, match="Settings provider unavailable"):
        builder.build(UNKNOWN_ZONE_ID)


def test_local_store_failure(builder, local_store, store):
    local_store.load_error = ConnectionError("database is restarting")

    with pytest.raises(UpstreamUnavailable, match="Local config store unavailable"):
        builder.build(ZONE_ID)

    assert local_store.loads == [ZONE_ID] * 3
    assert store.list() == []


def test_zone_without_local_config(builder, local_store):
    local_store.configs.clear()
    snapshot = builder.build(ZONE_ID)
    assert snapshot.local_config == {}


def test_merged_category_is_rejected(builder, provider):
    with pytest.raises(ValidationError):
        builder.build(ZONE_ID, category=SnapshotCategory.MERGED)
    assert provider.calls == []


def test_unknown_category_is_rejected(builder):
    with pytest.raises(ValidationError):
        builder.build(ZONE_ID, category="hourly")


def test_store_failure_is_persist_error(provider, local_store, recorder, tmp_path):
    blocker = tmp_path / "backups"
    blocker.write_text("not a directory")
    from zonevault.snapshot.store import FileSnapshotStore

    builder = SnapshotBuilder(provider, local_store, FileSnapshotStore(blocker), recorder, retry_backoff=0)

    with pytest.raises(PersistError):
        builder.build(ZONE_ID)
    assert recorder.entries == []


def test_recorder_failure_does_not_fail_the_snapshot(provider, local_store, store):
    builder = SnapshotBuilder(provider, local_store, store, RecordingActivityRecorder(fail=True),
                              retry_backoff=0)

    snapshot = builder.build(ZONE_ID)

    assert store.get(snapshot.id) == snapshot


class RendezvousProvider(MockSettingsProvider):
    """Blocks get_settings until the local config read has started too."""

    def __init__(self, barrier):
        super().__init__()
        self.barrier = barrier

    def get_settings(self, resource_id):
        self.barrier.wait()
        return super().get_settings(resource_id)


class RendezvousLocalStore(MockLocalConfigStore):

    def __init__(self, barrier):
        super().__init__()
        self.barrier = barrier

    def load(self, resource_id):
        self.barrier.wait()
        return super().load(resource_id)


def test_provider_and_local_store_are_read_concurrently(store, recorder):
    # Sequential reads would leave one party waiting until the barrier breaks
    barrier = threading.Barrier(2, timeout=5)
    builder = SnapshotBuilder(
        RendezvousProvider(barrier), RendezvousLocalStore(barrier), store, recorder,
        retry_attempts=1, retry_backoff=0,
    )

    snapshot = builder.build(ZONE_ID)

    assert not barrier.broken
    assert snapshot.local_config == LOCAL_CONFIG
    assert snapshot.resource_settings["ssl"] == "full"
