"""Normalized media records returned by every plugin kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


@dataclass
class MediaRecord:
    """One item of a search or category listing, tagged with its site."""

    title: str
    site: str
    id: str | None = None
    cover: str | None = None
    year: int | None = None
    remarks: str | None = None
    category: str | None = None

    # Ranking inputs
    score: float | None = None  # relevance, search
    updated_at: int | None = None  # recency, listings

    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "title": self.title,
                "cover": self.cover,
                "year": self.year,
                "remarks": self.remarks,
                "category": self.category,
                "score": self.score,
                "updatedAt": self.updated_at,
                "extra": self.extra,
                "site": self.site,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MediaRecord:
        return cls(
            title=data["title"],
            site=data["site"],
            id=data.get("id"),
            cover=data.get("cover"),
            year=data.get("year"),
            remarks=data.get("remarks"),
            category=data.get("category"),
            score=data.get("score"),
            updated_at=data.get("updatedAt"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class EpisodeGroup:
    """Episodes offered by one play source of a title."""

    source: str
    episodes: list[dict[str, str]] = field(default_factory=list)


@dataclass
class MediaDetail:
    id: str
    title: str
    site: str
    cover: str | None = None
    year: int | None = None
    description: str | None = None
    actors: list[str] = field(default_factory=list)
    directors: list[str] = field(default_factory=list)
    episodes: list[EpisodeGroup] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "title": self.title,
                "cover": self.cover,
                "year": self.year,
                "description": self.description,
                "actors": self.actors,
                "directors": self.directors,
                "episodes": [
                    {"source": g.source, "episodes": g.episodes}
                    for g in self.episodes
                ],
                "extra": self.extra,
                "site": self.site,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MediaDetail:
        return cls(
            id=data["id"],
            title=data["title"],
            site=data["site"],
            cover=data.get("cover"),
            year=data.get("year"),
            description=data.get("description"),
            actors=list(data.get("actors") or []),
            directors=list(data.get("directors") or []),
            episodes=[
                EpisodeGroup(source=g["source"], episodes=list(g["episodes"]))
                for g in data.get("episodes") or []
            ],
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class PlayableSource:
    url: str
    site: str
    headers: dict[str, str] = field(default_factory=dict)
    parse: bool = False  # URL still needs sniffing before playback
    format: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = _compact(
            {
                "url": self.url,
                "headers": self.headers,
                "format": self.format,
                "extra": self.extra,
                "site": self.site,
            }
        )
        data["parse"] = self.parse
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlayableSource:
        return cls(
            url=data["url"],
            site=data["site"],
            headers=dict(data.get("headers") or {}),
            parse=bool(data.get("parse", False)),
            format=data.get("format"),
            extra=dict(data.get("extra") or {}),
        )
