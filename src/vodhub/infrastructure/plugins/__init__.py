from __future__ import annotations

from .context import SiteContext
from .handle import SitePlugin, missing_capabilities, probe_capabilities

__all__ = ["SiteContext", "SitePlugin", "missing_capabilities", "probe_capabilities"]
