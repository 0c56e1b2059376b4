"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
StoreBackend = Literal["memory", "diskcache", "redis"]


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class HttpConfig(BaseModel):
    """Resilient invoker defaults (per-site sessions inherit these)."""

    timeout_seconds: float = Field(
        default=15.0, description="Read/write/pool timeout per request."
    )
    connect_timeout_seconds: float = Field(
        default=5.0, description="TCP/TLS connect timeout per request."
    )
    follow_redirects: bool = True
    user_agent: str = Field(
        default="vodhub/0.1.0",
        description="User-Agent for outgoing HTTP requests.",
    )
    max_retries: int = Field(
        default=2, description="Retries for idempotent requests (0 = none)."
    )
    backoff_base: float = Field(
        default=0.5, description="Base delay (seconds) for exponential backoff."
    )
    max_backoff: float = Field(default=8.0, description="Upper bound for one delay.")

    @field_validator("timeout_seconds", "connect_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http timeouts must be > 0")
        return v

    @field_validator("max_retries")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("http.max_retries must be >= 0")
        return v


class ConfigSourceConfig(BaseModel):
    """Where the site document comes from and how it is fetched."""

    url: Optional[str] = Field(
        default=None,
        description="URL or local path of the site config document.",
    )
    max_retries: int = Field(default=3, description="Fetch retries on transient errors.")
    cache_ttl_seconds: int = Field(
        default=3600,
        description="TTL of the cached raw document used by load(). 0 = disabled.",
    )
    slow_source_seconds: float = Field(
        default=5.0,
        description="Source checks slower than this report a warning.",
    )


class AggregatorConfig(BaseModel):
    deadline_seconds: float = Field(
        default=10.0, description="Overall deadline for one fan-out query."
    )
    min_site_timeout_seconds: float = Field(
        default=1.0, description="Floor for the per-site deadline."
    )
    max_concurrency: int = Field(
        default=16, description="Max site invocations running at once."
    )
    search_ttl_seconds: int = 600
    category_ttl_seconds: int = 900
    detail_ttl_seconds: int = 1800
    play_ttl_seconds: int = 120

    @field_validator("deadline_seconds", "min_site_timeout_seconds")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("aggregator timeouts must be > 0")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def _validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("aggregator.max_concurrency must be >= 1")
        return v


class RegistryConfig(BaseModel):
    degraded_after: int = Field(
        default=2, description="Consecutive failures before a site is degraded."
    )
    failed_after: int = Field(
        default=5, description="Consecutive failures before a site is failed."
    )
    probe_keyword: str = Field(
        default="test", description="Keyword used when probing a search site."
    )
    warm_up: bool = Field(
        default=False, description="Load every enabled plugin at startup."
    )

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "RegistryConfig":
        if self.degraded_after < 1:
            raise ValueError("registry.degraded_after must be >= 1")
        if self.failed_after <= self.degraded_after:
            raise ValueError("registry.failed_after must be > degraded_after")
        return self


class CacheConfig(BaseModel):
    max_bytes: int = Field(
        default=32 * 1024 * 1024,
        description="Size budget of the result cache (bytes).",
    )
    persist: bool = Field(
        default=False,
        description="Write cache entries through to the key-value store.",
    )

    @field_validator("max_bytes")
    @classmethod
    def _validate_budget(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("cache.max_bytes must be > 0")
        return v


class StoreConfig(BaseModel):
    backend: StoreBackend = Field(
        default="memory",
        description="Key-value store: 'memory', 'diskcache' (SQLite) or 'redis'.",
    )
    directory: Path = Field(
        default=Path("./.cache/vodhub"),
        validation_alias=AliasChoices("dir", "directory"),
        description="Diskcache SQLite DB path.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis).",
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_dir(cls, v: Any) -> Path:
        return _normalize_path(v)


class PluginsConfig(BaseModel):
    work_dir: Path = Field(
        default=Path("./.cache/vodhub/plugins"),
        description="Scratch directory for downloaded archive payloads.",
    )

    @field_validator("work_dir", mode="before")
    @classmethod
    def _validate_dir(cls, v: Any) -> Path:
        return _normalize_path(v)


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/aggregator/registry/...).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    # General
    app_name: str = Field(default="vodhub", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    http: HttpConfig = Field(default_factory=HttpConfig)
    config_source: ConfigSourceConfig = Field(default_factory=ConfigSourceConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": self.http.model_dump(),
            "config_source": self.config_source.model_dump(),
            "aggregator": self.aggregator.model_dump(),
            "registry": self.registry.model_dump(),
            "cache": self.cache.model_dump(),
            "store": {
                "backend": self.store.backend,
                "dir": str(self.store.directory),
                "redis_url": self.store.redis_url,
            },
            "plugins": {"work_dir": str(self.plugins.work_dir)},
            "logging": {"level": self.log_level, "format": self.log_format},
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read VODHUB_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - VODHUB_CONFIG_URL
    - VODHUB_HTTP_TIMEOUT_SECONDS
    - VODHUB_AGGREGATOR_DEADLINE_SECONDS
    - VODHUB_STORE_BACKEND
    - VODHUB_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="VODHUB_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    config_url: Optional[str] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None
    http_max_retries: Optional[int] = None

    aggregator_deadline_seconds: Optional[float] = None
    aggregator_max_concurrency: Optional[int] = None

    cache_max_bytes: Optional[int] = None

    store_backend: Optional[StoreBackend] = None
    store_dir: Optional[Path] = None
    store_redis_url: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    def to_update_dict(self) -> dict[str, Any]:
        """Return only the variables that were actually set."""
        return self.model_dump(exclude_none=True)
