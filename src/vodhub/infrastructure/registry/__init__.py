from __future__ import annotations

from .registry import STORE_PREFIX, SiteRegistry

__all__ = ["STORE_PREFIX", "SiteRegistry"]
