"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "vodhub",
    "environment": "dev",
    "http": {
        "timeout_seconds": 15.0,
        "connect_timeout_seconds": 5.0,
        "follow_redirects": True,
        "user_agent": "vodhub/0.1.0",
        "max_retries": 2,
        "backoff_base": 0.5,
        "max_backoff": 8.0,
    },
    "config_source": {
        "url": None,
        "max_retries": 3,
        "cache_ttl_seconds": 3600,
    },
    "aggregator": {
        "deadline_seconds": 10.0,
        "min_site_timeout_seconds": 1.0,
        "max_concurrency": 16,
        "search_ttl_seconds": 600,
        "category_ttl_seconds": 900,
        "detail_ttl_seconds": 1800,
        "play_ttl_seconds": 120,
    },
    "registry": {
        "degraded_after": 2,
        "failed_after": 5,
        "probe_keyword": "test",
        "warm_up": False,
    },
    "cache": {
        "max_bytes": 32 * 1024 * 1024,
        "persist": False,
    },
    "store": {
        "backend": "memory",
        "dir": "./.cache/vodhub",
        "redis_url": "redis://localhost:6379/0",
    },
    "plugins": {
        "work_dir": "./.cache/vodhub/plugins",
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
}
