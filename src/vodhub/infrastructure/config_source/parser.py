"""Site config document parser.

Turns a raw (possibly commented, possibly truncated) JSON document into
canonical :class:`SiteDescriptor` objects. Legacy TVBox-style entries
(``type``/``api``/``jar``/``spider``) are mapped onto the canonical shape.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Iterator, Mapping, Optional
from urllib.parse import urljoin, urlsplit

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from vodhub.domain.entities import Capability, RuntimeKind, SiteDescriptor
from vodhub.domain.errors import ConfigValidationError

log = structlog.get_logger(__name__)

# Control characters JSON never allows outside strings (tab/newline/CR are kept).
_ILLEGAL_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SITES_KEY = re.compile(r'"sites"\s*:\s*\[')
_MD5_SUFFIX = re.compile(r";md5;([0-9a-fA-F]{32})\s*$")

_SUFFIX_KIND: dict[str, RuntimeKind] = {
    ".jar": RuntimeKind.ARCHIVE,
    ".zip": RuntimeKind.ARCHIVE,
    ".js": RuntimeKind.SCRIPT,
    ".py": RuntimeKind.SCRIPT,
    ".yaml": RuntimeKind.INTERPRETED,
    ".yml": RuntimeKind.INTERPRETED,
    ".json": RuntimeKind.INTERPRETED,
}

_LEGACY_TYPE_KIND: dict[str, RuntimeKind] = {
    "JAR": RuntimeKind.ARCHIVE,
    "JS": RuntimeKind.SCRIPT,
    "PY": RuntimeKind.INTERPRETED,
}

_DEFAULT_CAPABILITIES = frozenset(
    {Capability.CATEGORY_LIST, Capability.DETAIL, Capability.PLAY_RESOLVE}
)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", ""})


class _Unmappable(ValueError):
    """Entry cannot be expressed as a SiteDescriptor."""


@dataclass
class ParsedConfig:
    descriptors: list[SiteDescriptor] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dropped: int = 0
    used_fallback: bool = False


class RawSite(BaseModel):
    """One ``sites[]`` entry in any of the accepted shapes."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    key: Optional[str] = Field(default=None, validation_alias=AliasChoices("key", "id"))
    name: Optional[str] = None
    runtime_kind: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("runtimeKind", "runtime_kind")
    )
    type: Any = None
    location: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sourceLocation", "source_location", "api", "url"),
    )
    jar: Optional[str] = None
    capabilities: Optional[list[str]] = None
    enabled: Any = True
    searchable: Any = True
    quick_searchable: Any = Field(
        default=True,
        validation_alias=AliasChoices("quickSearch", "quick_searchable", "quickSearchable"),
    )
    version: Any = None
    update_time: Any = Field(
        default=None,
        validation_alias=AliasChoices("updateTime", "update_time", "updatedAt"),
    )
    ext: Any = None
    categories: Optional[list[Any]] = None
    timeout: Optional[float] = None
    headers: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("headers", "header")
    )


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside of string literals."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def clean_document(text: str) -> str:
    text = text.lstrip("\ufeff")
    return _ILLEGAL_CONTROL.sub("", strip_comments(text))


def _iter_array_elements(text: str, start: int) -> Iterator[str]:
    """Yield the raw text of each top-level element of the array at *start*.

    *start* points just past ``[``. Stops at the closing bracket or at the
    end of input; a truncated trailing element is not yielded.
    """
    depth = 0
    in_string = False
    elem_start: int | None = None
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            if depth == 0 and elem_start is None:
                elem_start = i
        elif ch in "{[":
            if depth == 0:
                elem_start = i
            depth += 1
        elif ch in "}]":
            if depth == 0:
                # End of the sites array
                return
            depth -= 1
            if depth == 0 and elem_start is not None:
                yield text[elem_start : i + 1]
                elem_start = None
        elif ch == "," and depth == 0:
            elem_start = None
        i += 1


def extract_sites(text: str) -> list[Any] | None:
    """Best-effort recovery of the ``sites`` array from a broken document."""
    match = _SITES_KEY.search(text)
    if match is None:
        return None
    sites: list[Any] = []
    for raw in _iter_array_elements(text, match.end()):
        try:
            sites.append(json.loads(raw, strict=False))
        except ValueError:
            log.warning("config_fallback_element_invalid", snippet=raw[:80])
    return sites


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise _Unmappable(f"not a boolean: {value!r}")


def _infer_kind(location: str) -> RuntimeKind | None:
    path = urlsplit(location).path or location
    suffix = PurePosixPath(path).suffix.lower()
    return _SUFFIX_KIND.get(suffix)


def _resolve_location(location: str, base_url: str | None) -> str:
    location = location.strip()
    parts = urlsplit(location)
    if parts.scheme in ("http", "https", "file") or location.startswith("/"):
        return location
    if not base_url:
        return location
    base_parts = urlsplit(base_url)
    if base_parts.scheme in ("http", "https"):
        return urljoin(base_url, location)
    base_path = base_parts.path if base_parts.scheme == "file" else base_url
    return str(PurePosixPath(base_path).parent / location)


def _resolve_kind_and_location(
    raw: RawSite, spider: str | None
) -> tuple[RuntimeKind, str]:
    if raw.runtime_kind:
        try:
            kind = RuntimeKind(raw.runtime_kind)
        except ValueError as e:
            raise _Unmappable(f"unknown runtime kind {raw.runtime_kind!r}") from e
        if not raw.location:
            raise _Unmappable("missing source location")
        return kind, raw.location

    location = raw.location or ""
    legacy = raw.type
    if isinstance(legacy, str) and legacy.strip().isdigit():
        legacy = int(legacy.strip())

    # Class-name api: payload lives in the per-site jar or the global spider.
    if location.startswith("csp_") and legacy in (3, None, "JAR", "jar"):
        archive = raw.jar or spider
        if not archive:
            raise _Unmappable(f"{location} needs a jar/spider archive")
        return RuntimeKind.ARCHIVE, archive

    if isinstance(legacy, str):
        kind = _LEGACY_TYPE_KIND.get(legacy.strip().upper())
        if kind is None:
            raise _Unmappable(f"unknown legacy type {legacy!r}")
        if not location:
            raise _Unmappable("missing source location")
        return kind, location

    if isinstance(legacy, int) and legacy not in (3,):
        # 0/1 (CMS xml/json), 4 (remote) carry no plugin payload.
        raise _Unmappable(f"legacy type {legacy} has no plugin payload")

    if not location:
        raise _Unmappable("missing source location")
    inferred = _infer_kind(_MD5_SUFFIX.sub("", location))
    if inferred is None:
        raise _Unmappable(f"cannot infer runtime kind from {location!r}")
    return inferred, location


def _capabilities(raw: RawSite, searchable: bool, warnings: list[str]) -> frozenset[Capability]:
    if raw.capabilities is None:
        caps = set(_DEFAULT_CAPABILITIES)
        if searchable:
            caps.add(Capability.SEARCH)
        return frozenset(caps)

    caps = set()
    for name in raw.capabilities:
        try:
            caps.add(Capability(str(name)))
        except ValueError:
            warnings.append(f"{raw.key}: unknown capability {name!r} dropped")
            log.warning("config_capability_unknown", site=raw.key, capability=name)
    return frozenset(caps)


def to_descriptor(
    raw: RawSite,
    *,
    spider: str | None = None,
    base_url: str | None = None,
    warnings: list[str] | None = None,
) -> SiteDescriptor:
    """Map one raw entry onto a descriptor; raises ``_Unmappable``."""
    warnings = warnings if warnings is not None else []
    key = (raw.key or "").strip()
    if not key:
        raise _Unmappable("missing key")

    kind, location = _resolve_kind_and_location(raw, spider)

    checksum: str | None = None
    md5 = _MD5_SUFFIX.search(location)
    if md5 is not None:
        checksum = md5.group(1).lower()
        location = location[: md5.start()]
    location = _resolve_location(location, base_url)

    searchable = _to_bool(raw.searchable, True)
    update_time = raw.update_time
    if update_time is not None:
        try:
            update_time = int(update_time)
        except (TypeError, ValueError) as e:
            raise _Unmappable(f"bad updateTime {raw.update_time!r}") from e

    return SiteDescriptor(
        key=key,
        name=(raw.name or "").strip() or key,
        runtime_kind=kind,
        source_location=location,
        capabilities=_capabilities(raw, searchable, warnings),
        enabled=_to_bool(raw.enabled, True),
        searchable=searchable,
        quick_searchable=_to_bool(raw.quick_searchable, True),
        version=str(raw.version) if raw.version is not None else None,
        update_time=update_time,
        ext=raw.ext,
        categories=tuple(str(c) for c in raw.categories or ()),
        timeout=raw.timeout if raw.timeout and raw.timeout > 0 else None,
        checksum=checksum,
        headers=tuple(sorted((str(k), str(v)) for k, v in (raw.headers or {}).items())),
    )


def _load_document(text: str) -> tuple[list[Any] | None, str | None, bool]:
    """Return ``(sites, spider, used_fallback)``."""
    try:
        doc = json.loads(text, strict=False)
    except ValueError as e:
        log.warning("config_parse_fallback", error=str(e))
        return extract_sites(text), _extract_spider(text), True

    if isinstance(doc, list):
        return doc, None, False
    if isinstance(doc, Mapping):
        sites = doc.get("sites")
        spider = doc.get("spider")
        return (
            sites if isinstance(sites, list) else None,
            spider if isinstance(spider, str) else None,
            False,
        )
    return None, None, False


def _extract_spider(text: str) -> str | None:
    match = re.search(r'"spider"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
    if match is None:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return None


def parse_config(raw_document: str, *, base_url: str | None = None) -> ParsedConfig:
    """Parse *raw_document* and report dropped entries.

    Raises:
        ConfigValidationError: No valid descriptor could be produced.
    """
    result = ParsedConfig()
    text = clean_document(raw_document)
    sites, spider, result.used_fallback = _load_document(text)

    if sites is None:
        raise ConfigValidationError("config document has no 'sites' array")

    by_key: dict[str, SiteDescriptor] = {}
    dropped = 0
    for index, entry in enumerate(sites):
        if not isinstance(entry, Mapping):
            result.warnings.append(f"sites[{index}]: not an object")
            dropped += 1
            continue
        try:
            raw = RawSite.model_validate(entry)
            descriptor = to_descriptor(
                raw, spider=spider, base_url=base_url, warnings=result.warnings
            )
        except (ValidationError, _Unmappable) as e:
            label = entry.get("key") or entry.get("name") or f"sites[{index}]"
            result.warnings.append(f"{label}: {e}")
            log.warning("config_site_dropped", site=label, reason=str(e))
            dropped += 1
            continue
        if descriptor.key in by_key:
            log.info("config_duplicate_site", site=descriptor.key)
            del by_key[descriptor.key]
        by_key[descriptor.key] = descriptor

    if not by_key:
        raise ConfigValidationError(
            f"config document yielded no valid sites ({len(sites)} entries)"
        )

    result.descriptors = list(by_key.values())
    result.dropped = dropped
    log.info(
        "config_parsed",
        sites=len(result.descriptors),
        dropped=dropped,
        fallback=result.used_fallback,
    )
    return result


def parse(raw_document: str, *, base_url: str | None = None) -> list[SiteDescriptor]:
    return parse_config(raw_document, base_url=base_url).descriptors
