from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping

from ..snapshot.models import FirewallRule, SettingsBundle


class SettingsProvider(ABC):
    """External service holding a resource's live settings.

    Implementations: CloudflareSettingsProvider.
    Failures are raised as ProviderError (or ConnectionError/TimeoutError).
    """

    @abstractmethod
    def get_settings(self, resource_id: str) -> SettingsBundle:
        """Fetch settings, firewall rules and resource identity."""
        pass

    @abstractmethod
    def apply_setting(self, resource_id: str, key: str, value: Any) -> None:
        """Set a single setting on the live resource."""
        pass

    @abstractmethod
    def create_firewall_rule(self, resource_id: str, rule: FirewallRule) -> None:
        """Create a new firewall rule. Never replaces existing rules."""
        pass

    def check_access(self, resource_id: str) -> None:
        """Raise ProviderError if the resource cannot be reached."""
        self.get_settings(resource_id)


class LocalConfigStore(ABC):
    """Record store holding a resource's locally tracked configuration.

    Implementations: JsonLocalConfigStore, PostgresLocalConfigStore.
    """

    @abstractmethod
    def load(self, resource_id: str) -> Dict[str, Any]:
        """Return the local config, or {} if none is tracked."""
        pass

    @abstractmethod
    def save(self, resource_id: str, config: Mapping[str, Any]) -> None:
        """Replace the local config in one transaction."""
        pass


class ActivityRecorder(ABC):
    """Append-only audit sink. One record per mutating operation."""

    @abstractmethod
    def record(self, action: str, resource_id: str, details: Mapping[str, Any], actor=None) -> None:
        pass
