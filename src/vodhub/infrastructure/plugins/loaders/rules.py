"""Pydantic validation models for interpreted-plugin rule documents.

Example::

    base_url: https://api.example.com/provide/vod/
    headers: {Referer: https://example.com/}
    search:
      url: "?ac=detail&wd={keyword}"
      list_path: list
      fields: {id: vod_id, title: vod_name, cover: vod_pic}
    category:
      url: "?ac=detail&t={category_id}&pg={page}"
      list_path: list
    detail:
      url: "?ac=detail&ids={id}"
      list_path: list.0
    play:
      url_template: "{id}"
      parse: true
"""

from __future__ import annotations

import re
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
_FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def placeholders(template: str) -> set[str]:
    return set(_PLACEHOLDER_RE.findall(template))


class Endpoint(BaseModel):
    """One capability's request recipe."""

    url: Optional[str] = Field(
        default=None,
        description="URL template, absolute or relative to base_url. '{name}' placeholders.",
    )
    method: Literal["GET", "POST"] = "GET"
    params: Dict[str, str] = Field(default_factory=dict)
    form: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    list_path: Optional[str] = Field(
        default=None,
        description="Dotted path to the item list (or the single item) in the JSON body.",
    )
    fields: Dict[str, str] = Field(
        default_factory=dict,
        description="Output field -> dotted path inside each item.",
    )
    # play only: build the playable URL without a request
    url_template: Optional[str] = None
    parse: bool = False

    @field_validator("fields")
    @classmethod
    def _validate_fields(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name in v:
            if not _FIELD_NAME_RE.match(name):
                raise ValueError(f"invalid output field name: {name!r}")
        return v

    @model_validator(mode="after")
    def _validate_target(self) -> "Endpoint":
        if not self.url and not self.url_template:
            raise ValueError("endpoint needs 'url' (or 'url_template' for play)")
        return self


class RuleDocument(BaseModel):
    """Declarative site definition executed by the host."""

    name: Optional[str] = None
    base_url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    search: Optional[Endpoint] = None
    category: Optional[Endpoint] = None
    detail: Optional[Endpoint] = None
    play: Optional[Endpoint] = None

    @model_validator(mode="after")
    def _validate_endpoints(self) -> "RuleDocument":
        if not any((self.search, self.category, self.detail, self.play)):
            raise ValueError("rule document declares no endpoints")
        required = {
            "search": {"keyword"},
            "category": {"category_id"},
            "detail": {"id"},
        }
        for name, needed in required.items():
            endpoint: Optional[Endpoint] = getattr(self, name)
            if endpoint is None or endpoint.url is None:
                continue
            used = placeholders(endpoint.url)
            for value in (*endpoint.params.values(), *endpoint.form.values()):
                used |= placeholders(value)
            if not needed <= used:
                raise ValueError(
                    f"{name} endpoint must reference {sorted(needed)} in url/params"
                )
        return self

    def endpoint_for(self, name: str) -> Optional[Endpoint]:
        return getattr(self, name, None)


def dig(data: Any, path: Optional[str]) -> Any:
    """Follow a dotted path (``list.0.vod_name``) through dicts and lists."""
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current
