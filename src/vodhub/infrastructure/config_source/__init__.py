from __future__ import annotations

from .fetcher import ConfigFetcher, decode_document
from .parser import ParsedConfig, parse, parse_config

__all__ = ["ConfigFetcher", "ParsedConfig", "decode_document", "parse", "parse_config"]
