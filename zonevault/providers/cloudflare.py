"""
Cloudflare v4 API as a Settings Provider.

Reads and writes for a single zone are issued one after another to stay
inside the API's rate limits; callers parallelize across zones.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ..errors import ProviderError, ProviderErrorKind
from ..snapshot.models import FirewallRule, SettingsBundle
from .base import SettingsProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_TIMEOUT = 30.0
USER_AGENT = "zonevault/1.0"


class CloudflareSettingsProvider(SettingsProvider):
    """Zone settings, firewall rules and DNS records through the Cloudflare API."""

    PAGE_SIZE = 100

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_token: Cloudflare API token (Bearer)
            base_url: API root, overridable for tests and proxies
            timeout: Per-request timeout in seconds
            session: Optional pre-built requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        })

    # =========================================================================
    # SettingsProvider
    # =========================================================================

    def get_settings(self, resource_id: str) -> SettingsBundle:
        zone = self._request("GET", f"/zones/{resource_id}")["result"]

        settings: Dict[str, Any] = {}
        for item in self._request("GET", f"/zones/{resource_id}/settings")["result"]:
            settings[item["id"]] = item.get("value")

        dns_records = [
            {
                "type": record.get("type"),
                "name": record.get("name"),
                "content": record.get("content"),
                "ttl": record.get("ttl"),
                "proxied": record.get("proxied"),
            }
            for record in self._get_paginated(f"/zones/{resource_id}/dns_records")
        ]
        if dns_records:
            settings["dns_records"] = dns_records

        rules = [
            FirewallRule.from_dict(rule)
            for rule in self._get_paginated(f"/zones/{resource_id}/firewall/rules")
        ]

        return SettingsBundle(
            resource_id=resource_id,
            resource_name=zone.get("name", resource_id),
            settings=settings,
            firewall_rules=rules,
            status=zone.get("status"),
        )

    def apply_setting(self, resource_id: str, key: str, value: Any) -> None:
        self._request("PATCH", f"/zones/{resource_id}/settings/{key}", json={"value": value})
        logger.info("Updated setting %s on zone %s", key, resource_id)

    def create_firewall_rule(self, resource_id: str, rule: FirewallRule) -> None:
        payload = [{
            "filter": {"expression": rule.expression},
            "action": rule.action,
            "description": rule.description,
            "priority": rule.priority if rule.priority is not None else 1,
        }]
        self._request("POST", f"/zones/{resource_id}/firewall/rules", json=payload)
        logger.info("Created firewall rule '%s' on zone %s", rule.label, resource_id)

    def check_access(self, resource_id: str) -> None:
        self._request("GET", f"/zones/{resource_id}")

    # =========================================================================
    # HTTP
    # =========================================================================

    def _get_paginated(self, path: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = self._request("GET", path, params={"page": page, "per_page": self.PAGE_SIZE})
            items.extend(body.get("result") or [])
            info = body.get("result_info") or {}
            if page >= int(info.get("total_pages") or 1):
                return items
            page += 1

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        started = time.monotonic()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ProviderError(f"{method} {path} timed out after {self.timeout}s",
                                kind=ProviderErrorKind.TRANSIENT) from e
        except requests.ConnectionError as e:
            raise ProviderError(f"{method} {path} failed: {e}",
                                kind=ProviderErrorKind.TRANSIENT) from e

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug("%s %s -> %s (%dms)", method, path, response.status_code, duration_ms)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            raise ProviderError.from_status(
                response.status_code,
                f"{method} {path} returned {response.status_code}: {self._error_message(body)}",
            )
        if body.get("success") is False:
            raise ProviderError(f"{method} {path} rejected: {self._error_message(body)}",
                                kind=ProviderErrorKind.INVALID,
                                status_code=response.status_code)
        return body

    @staticmethod
    def _error_message(body: Dict[str, Any]) -> str:
        errors = body.get("errors") or []
        messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
        return "; ".join(messages) or "no error detail"
