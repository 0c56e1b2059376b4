"""Error taxonomy shared by every vodhub component."""

from __future__ import annotations


class VodhubError(Exception):
    """Base class for all vodhub errors."""


# --- Network / invoker ---


class InvokerError(VodhubError):
    """Base class for outbound request failures."""


class NetworkError(InvokerError):
    """Target unreachable or the connection broke (transient, retryable)."""


class RequestTimeoutError(InvokerError):
    """A request or the surrounding deadline ran out."""


class HttpStatusError(InvokerError):
    """Target answered with an error status code."""

    def __init__(self, code: int, url: str = "", message: str = "") -> None:
        self.code = code
        self.url = url
        super().__init__(message or f"HTTP {code} for {url or '<unknown>'}")

    @property
    def retryable(self) -> bool:
        return self.code == 429 or self.code >= 500


# --- Config documents ---


class ConfigError(VodhubError):
    """Base class for config document failures."""


class FormatError(ConfigError):
    """Config source returned something that is not a text document."""


class ConfigValidationError(ConfigError):
    """Config document produced no usable site descriptors."""


class SourceNotFoundError(ConfigError):
    """Raised when a config source id is not known."""


class SourceExistsError(ConfigError):
    """Raised when a config source with the same url is already registered."""


# --- Plugins ---


class PluginError(VodhubError):
    """Base class for all plugin-related errors."""

    def __init__(self, message: str, *, site: str | None = None) -> None:
        self.site = site
        super().__init__(message)


class PluginLoadError(PluginError):
    """Raised when a plugin payload cannot be fetched, imported, or validated."""


class UnsupportedCapabilityError(PluginError):
    """Raised when a loaded plugin lacks a capability its descriptor declares."""

    def __init__(
        self,
        message: str,
        *,
        site: str | None = None,
        missing: frozenset[str] = frozenset(),
    ) -> None:
        self.missing = missing
        super().__init__(message, site=site)


class PluginInvocationError(PluginError):
    """Raised when plugin code fails with an error outside the taxonomy."""


# --- Registry ---


class RegistryError(VodhubError):
    """Base class for registry lookups."""


class SiteNotFoundError(RegistryError):
    """Raised when a site key is not known to the registry."""


class SiteDisabledError(RegistryError):
    """Raised when a disabled site is asked for its plugin handle."""


# --- Aggregation ---


class InvalidQueryError(VodhubError):
    """Raised when an aggregator query is malformed."""
