"""Port for outbound HTTP calls issued by plugins and the config fetcher."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


@dataclass(frozen=True)
class InvokeRequest:
    url: str
    method: str = "GET"
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] | None = None
    json_body: Any = None
    form: Mapping[str, Any] | None = None
    content: bytes | None = None
    timeout: float | None = None
    # None = derive from method
    idempotent: bool | None = None

    @property
    def is_idempotent(self) -> bool:
        if self.idempotent is not None:
            return self.idempotent
        return self.method.upper() in IDEMPOTENT_METHODS


@dataclass(frozen=True)
class InvokeResponse:
    status_code: int
    url: str
    content: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    encoding: str | None = None

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


@runtime_checkable
class InvokerPort(Protocol):
    """Resilient request executor.

    Raises ``RequestTimeoutError``, ``HttpStatusError`` or ``NetworkError``;
    never leaks library exceptions.
    """

    async def invoke(
        self, request: InvokeRequest, *, deadline: float | None = None
    ) -> InvokeResponse: ...

    async def aclose(self) -> None: ...
