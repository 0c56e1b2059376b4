"""Runtime context handed to module plugins at construction time."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from vodhub.domain.entities import SiteDescriptor
from vodhub.infrastructure.http.invoker import ResilientInvoker


@dataclass
class SiteContext:
    """Everything a plugin may touch on the host side.

    Attributes:
        descriptor: The site's descriptor (read-only).
        invoker: The site's own resilient HTTP session.
        log: structlog logger bound to ``site=<key>``.
        ext: Opaque extension payload from the config document.
    """

    descriptor: SiteDescriptor
    invoker: ResilientInvoker
    log: Any = None
    ext: Any = None
    _resource_reader: Callable[[str], bytes] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.log is None:
            self.log = structlog.get_logger("vodhub.site").bind(site=self.descriptor.key)
        if self.ext is None:
            # Plugins may mutate ext; the descriptor must stay unchanged.
            self.ext = copy.deepcopy(self.descriptor.ext)

    @property
    def key(self) -> str:
        return self.descriptor.key

    def read_resource(self, name: str) -> bytes:
        """Read a data file shipped inside the plugin payload (archive plugins)."""
        if self._resource_reader is None:
            raise FileNotFoundError(f"{self.key}: plugin payload carries no resources")
        return self._resource_reader(name)
