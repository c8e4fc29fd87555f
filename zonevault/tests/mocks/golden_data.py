"""
Golden Test Data - Realistic Cloudflare zone configuration for mock testing.

This module contains zone settings, firewall rules, DNS records and locally
tracked security config shaped the way the Cloudflare v4 API and the
security_configs table return them. The raw API payloads further down are
what the HTTP fakes in test_cloudflare serve.

The data is organized by:
1. Zones (a production site and a smaller shop zone)
2. Locally tracked security config per zone
3. Raw Cloudflare API responses
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict


# Reference "now" for clocks in retention and scheduler tests
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# ZONES
# =============================================================================

ZONE_ID = "023e105f4ecef8ad9ca31a8372d0c353"
ZONE_NAME = "example.com"

SECOND_ZONE_ID = "9a7806061c88ada191ed06f989cc3dac"
SECOND_ZONE_NAME = "shop.example.org"

UNKNOWN_ZONE_ID = "ffffffffffffffffffffffffffffffff"

ZONE_SETTINGS = {
    "ssl": "full",
    "min_tls_version": "1.2",
    "always_use_https": "on",
    "security_level": "medium",
    "browser_cache_ttl": 14400,
    "minify": {"css": "on", "html": "off", "js": "on"},
    "dns_records": [
        {
            "type": "A",
            "name": "example.com",
            "content": "192.0.2.10",
            "ttl": 1,
            "proxied": True,
        },
        {
            "type": "TXT",
            "name": "_acme-challenge.example.com",
            "content": "verification-token-abc123",
            "ttl": 120,
            "proxied": False,
        },
    ],
}

ZONE_FIREWALL_RULES = [
    {
        "expression": '(ip.geoip.country eq "T1")',
        "action": "block",
        "description": "Block Tor exit nodes",
        "priority": 1,
    },
    {
        "expression": '(http.request.uri.path contains "/wp-login.php")',
        "action": "challenge",
        "description": "Challenge WordPress logins",
        "priority": 2,
    },
]

SECOND_ZONE_SETTINGS = {
    "ssl": "strict",
    "min_tls_version": "1.3",
    "always_use_https": "on",
    "security_level": "high",
    "http3": "on",
}

SECOND_ZONE_FIREWALL_RULES = [
    {
        "expression": '(cf.threat_score gt 14)',
        "action": "managed_challenge",
        "description": "Challenge suspicious clients",
        "priority": 1,
    },
]


# =============================================================================
# LOCAL CONFIG
# =============================================================================

LOCAL_CONFIG = {
    "security_level": "medium",
    "ssl_mode": "full",
    "waf": True,
    "rate_limiting": {"enabled": True, "threshold": 100, "period": 60},
    "config_version": 3,
    "notes": "Baseline after onboarding",
}

SECOND_LOCAL_CONFIG = {
    "security_level": "high",
    "ssl_mode": "strict",
    "waf": True,
    "config_version": 1,
}


ZONES = {
    ZONE_ID: {
        "name": ZONE_NAME,
        "status": "active",
        "settings": ZONE_SETTINGS,
        "firewall_rules": ZONE_FIREWALL_RULES,
        "local_config": LOCAL_CONFIG,
    },
    SECOND_ZONE_ID: {
        "name": SECOND_ZONE_NAME,
        "status": "active",
        "settings": SECOND_ZONE_SETTINGS,
        "firewall_rules": SECOND_ZONE_FIREWALL_RULES,
        "local_config": SECOND_LOCAL_CONFIG,
    },
}


def get_zone(zone_id: str) -> Dict[str, Any]:
    """Deep copy of a golden zone, so tests can mutate it freely."""
    return copy.deepcopy(ZONES[zone_id])


def build_zones() -> Dict[str, Dict[str, Any]]:
    return {zone_id: get_zone(zone_id) for zone_id in ZONES}


# =============================================================================
# RAW CLOUDFLARE API RESPONSES
# =============================================================================

CLOUDFLARE_API_RESPONSES = {
    "zone": {
        "success": True,
        "errors": [],
        "result": {
            "id": ZONE_ID,
            "name": ZONE_NAME,
            "status": "active",
            "paused": False,
            "type": "full",
        },
    },
    "settings": {
        "success": True,
        "errors": [],
        "result": [
            {"id": "ssl", "value": "full", "editable": True},
            {"id": "min_tls_version", "value": "1.2", "editable": True},
            {"id": "always_use_https", "value": "on", "editable": True},
            {"id": "minify", "value": {"css": "on", "html": "off", "js": "on"}, "editable": True},
        ],
    },
    "dns_records_page_1": {
        "success": True,
        "errors": [],
        "result": [
            {"id": "372e6795", "type": "A", "name": "example.com", "content": "192.0.2.10",
             "ttl": 1, "proxied": True, "locked": False},
        ],
        "result_info": {"page": 1, "per_page": 100, "total_pages": 2, "count": 1, "total_count": 2},
    },
    "dns_records_page_2": {
        "success": True,
        "errors": [],
        "result": [
            {"id": "9f1c3a2b", "type": "TXT", "name": "_acme-challenge.example.com",
             "content": "verification-token-abc123", "ttl": 120, "proxied": False},
        ],
        "result_info": {"page": 2, "per_page": 100, "total_pages": 2, "count": 1, "total_count": 2},
    },
    "firewall_rules": {
        "success": True,
        "errors": [],
        "result": [
            {
                "id": "372e67954025e0ba6aaa6d586b9e0b60",
                "paused": False,
                "description": "Block Tor exit nodes",
                "action": "block",
                "priority": 1,
                "filter": {
                    "id": "6f58318e7fa2",
                    "expression": '(ip.geoip.country eq "T1")',
                },
            },
        ],
        "result_info": {"page": 1, "per_page": 100, "total_pages": 1, "count": 1, "total_count": 1},
    },
    "rate_limited": {
        "success": False,
        "errors": [{"code": 10000, "message": "Rate limited. Please wait and consider throttling your request speed"}],
        "result": None,
    },
    "forbidden": {
        "success": False,
        "errors": [{"code": 9109, "message": "Unauthorized to access requested resource"}],
        "result": None,
    },
    "rejected": {
        "success": False,
        "errors": [{"code": 1007, "message": "Invalid value for zone setting ssl"}],
        "result": None,
    },
    "ok": {
        "success": True,
        "errors": [],
        "result": {},
    },
}
