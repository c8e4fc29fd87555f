"""Shared fixtures: mock collaborators, a store under tmp_path, a manager."""

import pytest

from zonevault.snapshot.manager import SnapshotManager
from zonevault.snapshot.scheduler import Scheduler
from zonevault.snapshot.store import FileSnapshotStore
from zonevault.tests.mocks import (
    FIXED_NOW,
    MockLocalConfigStore,
    MockSettingsProvider,
    RecordingActivityRecorder,
)


@pytest.fixture
def provider():
    return MockSettingsProvider()


@pytest.fixture
def local_store():
    return MockLocalConfigStore()


@pytest.fixture
def recorder():
    return RecordingActivityRecorder()


@pytest.fixture
def store(tmp_path):
    store = FileSnapshotStore(tmp_path / "backups")
    store.ensure_layout()
    return store


@pytest.fixture
def scheduler():
    scheduler = Scheduler(max_workers=2, clock=lambda: FIXED_NOW)
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def manager(provider, local_store, store, recorder):
    manager = SnapshotManager(
        provider, local_store, store, recorder,
        pacing_interval=0, retry_backoff=0,
    )
    yield manager
    manager.close()


@pytest.fixture
def scheduled_manager(provider, local_store, store, recorder, scheduler):
    manager = SnapshotManager(
        provider, local_store, store, recorder,
        scheduler=scheduler, pacing_interval=0, retry_backoff=0,
    )
    yield manager
    manager.close()
