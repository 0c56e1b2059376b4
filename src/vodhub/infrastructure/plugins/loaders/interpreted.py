"""interpreted-plugin loader: declarative YAML/JSON rule documents."""

from __future__ import annotations

import json
from typing import Any, Mapping
from urllib.parse import quote, urljoin

import structlog
import yaml
from pydantic import ValidationError

from vodhub.domain.entities import RuntimeKind, SiteDescriptor
from vodhub.domain.errors import PluginInvocationError, PluginLoadError
from vodhub.domain.ports.invoker import InvokeRequest
from vodhub.infrastructure.http.invoker import ResilientInvoker
from vodhub.infrastructure.plugins.handle import Cleanup
from vodhub.infrastructure.plugins.loaders.base import BaseLoader, read_payload
from vodhub.infrastructure.plugins.loaders.rules import (
    Endpoint,
    RuleDocument,
    dig,
)

log = structlog.get_logger(__name__)


def _render(template: str, values: Mapping[str, Any], *, quote_values: bool) -> str:
    out = template
    for name, value in values.items():
        text = "" if value is None else str(value)
        out = out.replace("{" + name + "}", quote(text, safe="") if quote_values else text)
    return out


def load_rule_document(text: str, location: str, site: str) -> RuleDocument:
    """Parse and validate a rule document (JSON or YAML)."""
    try:
        if location.lower().endswith(".json"):
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise PluginLoadError(f"rule document is not valid YAML/JSON: {e}", site=site) from e
    if not isinstance(data, dict):
        raise PluginLoadError("rule document root must be a mapping", site=site)
    try:
        return RuleDocument.model_validate(data)
    except ValidationError as e:
        log.error(
            "plugin_validation_failed",
            site=site,
            error_type="ValidationError",
            error_details=e.errors(),
        )
        raise PluginLoadError(f"invalid rule document: {e}", site=site) from e


class RulePlugin:
    """Executes a :class:`RuleDocument` through the site's invoker.

    Only the methods whose endpoint is declared are bound, so the capability
    probe sees exactly what the document implements.
    """

    def __init__(self, rules: RuleDocument, invoker: ResilientInvoker, site: str) -> None:
        self.rules = rules
        self.site = site
        self._invoker = invoker
        if rules.search is not None:
            self.search = self._search
        if rules.category is not None:
            self.list_category = self._list_category
        if rules.detail is not None:
            self.resolve_detail = self._resolve_detail
        if rules.play is not None:
            self.resolve_playable = self._resolve_playable

    async def _search(self, keyword: str, quick: bool = False) -> list[dict[str, Any]]:
        assert self.rules.search is not None
        return await self._fetch_list(self.rules.search, {"keyword": keyword, "page": 1})

    async def _list_category(self, category_id: str, page: int = 1) -> list[dict[str, Any]]:
        assert self.rules.category is not None
        return await self._fetch_list(
            self.rules.category, {"category_id": category_id, "page": page}
        )

    async def _resolve_detail(self, id: str) -> dict[str, Any]:
        assert self.rules.detail is not None
        body = await self._request(self.rules.detail, {"id": id})
        item = dig(body, self.rules.detail.list_path)
        if isinstance(item, list):
            item = item[0] if item else None
        if not isinstance(item, dict):
            raise PluginInvocationError(f"no detail found for {id!r}", site=self.site)
        return self._map(self.rules.detail, item)

    async def _resolve_playable(self, id: str) -> dict[str, Any]:
        endpoint = self.rules.play
        assert endpoint is not None
        if endpoint.url_template and not endpoint.url:
            url = _render(endpoint.url_template, {"id": id}, quote_values=False)
            return {"url": url, "parse": endpoint.parse, "headers": dict(self.rules.headers)}

        body = await self._request(endpoint, {"id": id})
        item = dig(body, endpoint.list_path)
        if isinstance(item, str):
            item = {"url": item}
        if not isinstance(item, dict):
            raise PluginInvocationError(f"no playable url for {id!r}", site=self.site)
        mapped = self._map(endpoint, item)
        mapped.setdefault("parse", endpoint.parse)
        return mapped

    async def _fetch_list(
        self, endpoint: Endpoint, values: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        body = await self._request(endpoint, values)
        items = dig(body, endpoint.list_path)
        if items is None:
            return []
        if not isinstance(items, list):
            raise PluginInvocationError(
                f"list_path {endpoint.list_path!r} is not a list", site=self.site
            )
        return [self._map(endpoint, item) for item in items if isinstance(item, dict)]

    async def _request(self, endpoint: Endpoint, values: Mapping[str, Any]) -> Any:
        assert endpoint.url is not None
        url = _render(endpoint.url, values, quote_values=True)
        if self.rules.base_url:
            url = urljoin(self.rules.base_url, url)
        headers = {**self.rules.headers, **endpoint.headers}
        request = InvokeRequest(
            url=url,
            method=endpoint.method,
            params={k: _render(v, values, quote_values=False) for k, v in endpoint.params.items()}
            or None,
            form={k: _render(v, values, quote_values=False) for k, v in endpoint.form.items()}
            or None,
            headers=headers or None,
        )
        response = await self._invoker.invoke(request)
        try:
            return response.json()
        except ValueError as e:
            raise PluginInvocationError(f"{url} did not return JSON: {e}", site=self.site) from e

    @staticmethod
    def _map(endpoint: Endpoint, item: dict[str, Any]) -> dict[str, Any]:
        if not endpoint.fields:
            return dict(item)
        mapped = {name: dig(item, path) for name, path in endpoint.fields.items()}
        return {k: v for k, v in mapped.items() if v is not None}


class InterpretedLoader(BaseLoader):
    kind = RuntimeKind.INTERPRETED

    async def _instantiate(
        self,
        descriptor: SiteDescriptor,
        invoker: ResilientInvoker,
        cleanup: list[Cleanup],
    ) -> Any:
        payload = await read_payload(descriptor, invoker)
        try:
            text = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise PluginLoadError(
                f"rule document is not UTF-8 text: {e}", site=descriptor.key
            ) from e
        rules = load_rule_document(text, descriptor.source_location, descriptor.key)
        return RulePlugin(rules, invoker, descriptor.key)
