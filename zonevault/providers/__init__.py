"""
Collaborators the snapshot engine talks to through narrow interfaces.
"""

from .base import SettingsProvider, LocalConfigStore, ActivityRecorder
from .activity import JsonlActivityRecorder, NullActivityRecorder
from .cloudflare import CloudflareSettingsProvider
from .local_config import JsonLocalConfigStore, PostgresLocalConfigStore

__all__ = [
    'SettingsProvider',
    'LocalConfigStore',
    'ActivityRecorder',
    'JsonlActivityRecorder',
    'NullActivityRecorder',
    'CloudflareSettingsProvider',
    'JsonLocalConfigStore',
    'PostgresLocalConfigStore',
]
