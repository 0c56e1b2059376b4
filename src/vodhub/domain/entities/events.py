"""Notifications carried by the event channel."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RegistryChanged:
    key: str
    # registered | updated | replaced | unregistered | enabled | disabled |
    # loaded | load_failed | health | health_reset
    reason: str


@dataclass(frozen=True)
class ConfigRefreshed:
    url: str
    site_count: int
