from __future__ import annotations

from .result_cache import ResultCache, measure

__all__ = ["ResultCache", "measure"]
