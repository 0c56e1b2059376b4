"""Normalization of raw plugin return values into media entities.

Plugins may return the canonical entities, plain dicts with canonical keys,
or dicts in the TVBox ``vod_*`` vocabulary; all of them end up as
``MediaRecord`` / ``MediaDetail`` / ``PlayableSource`` tagged with the
originating site key.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Mapping

import structlog

from vodhub.domain.entities import (
    EpisodeGroup,
    MediaDetail,
    MediaRecord,
    PlayableSource,
)
from vodhub.domain.errors import PluginInvocationError

log = structlog.get_logger(__name__)

_PEOPLE_SPLIT = re.compile(r"\s*[,/，、]\s*")
_YEAR = re.compile(r"(\d{4})")


def _pick(data: dict[str, Any], *names: str) -> Any:
    """Pop the first non-empty value among *names* (all names are removed)."""
    found: Any = None
    for name in names:
        value = data.pop(name, None)
        if found is None and value not in (None, ""):
            found = value
    return found


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _as_year(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _YEAR.search(str(value))
    return int(match.group(1)) if match else None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    number = _as_int(value)
    if number is not None:
        return number != 0
    return str(value or "").strip().lower() == "true"


def _as_people(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [p for p in _PEOPLE_SPLIT.split(str(value).strip()) if p]


def _unwrap_list(raw: Any, site: str) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, Mapping) and "list" in raw:
        raw = raw["list"]
    if isinstance(raw, (list, tuple)):
        return list(raw)
    raise PluginInvocationError(
        f"expected a list of records, got {type(raw).__name__}", site=site
    )


def to_record(item: Any, site: str) -> MediaRecord | None:
    """Map one raw item; returns None for items without a title."""
    if isinstance(item, MediaRecord):
        return dataclasses.replace(item, site=site)
    if not isinstance(item, Mapping):
        return None

    data = dict(item)
    data.pop("site", None)
    title = _as_str(_pick(data, "title", "name", "vod_name"))
    if title is None:
        return None

    extra = dict(data.pop("extra", None) or {})
    record = MediaRecord(
        title=title,
        site=site,
        id=_as_str(_pick(data, "id", "vod_id")),
        cover=_as_str(_pick(data, "cover", "pic", "vod_pic")),
        year=_as_year(_pick(data, "year", "vod_year")),
        remarks=_as_str(_pick(data, "remarks", "vod_remarks")),
        category=_as_str(_pick(data, "category", "type_name")),
        score=_as_float(_pick(data, "score", "vod_score")),
        updated_at=_as_int(_pick(data, "updated_at", "updatedAt", "vod_time")),
    )
    extra.update(data)
    record.extra = extra
    return record


def to_records(raw: Any, site: str) -> list[MediaRecord]:
    records: list[MediaRecord] = []
    skipped = 0
    for item in _unwrap_list(raw, site):
        record = to_record(item, site)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        log.debug("plugin_records_skipped", site=site, skipped=skipped)
    return records


def _episodes_from_tvbox(play_from: Any, play_url: Any) -> list[EpisodeGroup]:
    """``vod_play_from``/``vod_play_url``: ``$$$`` per source, ``#`` per episode,
    ``name$id`` per entry."""
    sources = str(play_from or "").split("$$$")
    playlists = str(play_url or "").split("$$$")
    groups: list[EpisodeGroup] = []
    for index, playlist in enumerate(playlists):
        if not playlist.strip():
            continue
        source = sources[index].strip() if index < len(sources) else ""
        episodes: list[dict[str, str]] = []
        for number, entry in enumerate(playlist.split("#"), start=1):
            entry = entry.strip()
            if not entry:
                continue
            name, sep, ep_id = entry.partition("$")
            if not sep:
                name, ep_id = f"{number}", entry
            episodes.append({"name": name.strip(), "id": ep_id.strip()})
        groups.append(EpisodeGroup(source=source or f"source{index + 1}", episodes=episodes))
    return groups


def _episodes(value: Any) -> list[EpisodeGroup]:
    groups: list[EpisodeGroup] = []
    for group in value or []:
        if isinstance(group, EpisodeGroup):
            groups.append(group)
        elif isinstance(group, Mapping):
            groups.append(
                EpisodeGroup(
                    source=str(group.get("source") or group.get("name") or ""),
                    episodes=[
                        {"name": str(e.get("name", "")), "id": str(e.get("id", ""))}
                        for e in group.get("episodes") or []
                        if isinstance(e, Mapping)
                    ],
                )
            )
    return groups


def to_detail(raw: Any, site: str, requested_id: str) -> MediaDetail:
    if isinstance(raw, MediaDetail):
        return dataclasses.replace(raw, site=site)
    if isinstance(raw, Mapping) and "list" in raw:
        items = _unwrap_list(raw, site)
        raw = items[0] if items else None
    if not isinstance(raw, Mapping):
        raise PluginInvocationError(
            f"detail for {requested_id!r} is {type(raw).__name__}, expected a mapping",
            site=site,
        )

    data = dict(raw)
    data.pop("site", None)
    detail_id = _as_str(_pick(data, "id", "vod_id")) or requested_id
    title = _as_str(_pick(data, "title", "name", "vod_name")) or detail_id

    play_from = data.pop("vod_play_from", None)
    play_url = data.pop("vod_play_url", None)
    episodes = _episodes(data.pop("episodes", None))
    if not episodes and play_url:
        episodes = _episodes_from_tvbox(play_from, play_url)

    extra = dict(data.pop("extra", None) or {})
    detail = MediaDetail(
        id=detail_id,
        title=title,
        site=site,
        cover=_as_str(_pick(data, "cover", "pic", "vod_pic")),
        year=_as_year(_pick(data, "year", "vod_year")),
        description=_as_str(_pick(data, "description", "content", "vod_content")),
        actors=_as_people(_pick(data, "actors", "vod_actor")),
        directors=_as_people(_pick(data, "directors", "vod_director")),
        episodes=episodes,
    )
    extra.update(data)
    detail.extra = extra
    return detail


def to_playable(raw: Any, site: str) -> PlayableSource:
    if isinstance(raw, PlayableSource):
        return dataclasses.replace(raw, site=site)
    if isinstance(raw, str):
        if not raw.strip():
            raise PluginInvocationError("empty playable url", site=site)
        return PlayableSource(url=raw.strip(), site=site)
    if not isinstance(raw, Mapping):
        raise PluginInvocationError(
            f"playable is {type(raw).__name__}, expected a mapping or url", site=site
        )

    data = dict(raw)
    data.pop("site", None)
    url = _as_str(_pick(data, "url", "playUrl"))
    if url is None:
        raise PluginInvocationError("playable has no url", site=site)
    headers = _pick(data, "headers", "header") or {}
    if not isinstance(headers, Mapping):
        headers = {}
    parse = _pick(data, "parse")
    fmt = _as_str(_pick(data, "format"))
    extra = dict(data.pop("extra", None) or {})
    extra.update(data)
    return PlayableSource(
        url=url,
        site=site,
        headers={str(k): str(v) for k, v in headers.items()},
        parse=_as_flag(parse),
        format=fmt,
        extra=extra,
    )
