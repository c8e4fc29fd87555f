"""
Mock components for testing zonevault.

These mocks use realistic Cloudflare zone data (golden_data.py) to stand
in for the Cloudflare API, the local config database and the audit log
without network or database access.
"""

from .golden_data import (
    FIXED_NOW,
    ZONE_ID,
    ZONE_NAME,
    SECOND_ZONE_ID,
    SECOND_ZONE_NAME,
    UNKNOWN_ZONE_ID,
    ZONE_SETTINGS,
    ZONE_FIREWALL_RULES,
    LOCAL_CONFIG,
    CLOUDFLARE_API_RESPONSES,
    get_zone,
    build_zones,
)

from .mock_provider import (
    MockSettingsProvider,
    MockLocalConfigStore,
    RecordingActivityRecorder,
)
from .mock_snapshot import make_snapshot

__all__ = [
    # Collaborator mocks
    'MockSettingsProvider',
    'MockLocalConfigStore',
    'RecordingActivityRecorder',
    # Snapshot factory
    'make_snapshot',
    # Golden data
    'FIXED_NOW',
    'ZONE_ID',
    'ZONE_NAME',
    'SECOND_ZONE_ID',
    'SECOND_ZONE_NAME',
    'UNKNOWN_ZONE_ID',
    'ZONE_SETTINGS',
    'ZONE_FIREWALL_RULES',
    'LOCAL_CONFIG',
    'CLOUDFLARE_API_RESPONSES',
    'get_zone',
    'build_zones',
]
