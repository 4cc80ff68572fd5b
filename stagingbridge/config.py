"""Centralized configuration for the staging auth bridge.

Three tiers are merged, lowest precedence first:

1. compiled defaults (:data:`DEFAULT_CONFIG`)
2. environment variables, read with Pydantic ``BaseSettings``
3. a remote feature store (Edge Config), when one is reachable

The result is a frozen :class:`StagingAuthConfig`; sequences are tuples,
so no consumer can change shared state.  :class:`ConfigResolver` caches
the snapshot and hands out a synchronous fallback while the async build
is still running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stagingbridge.exceptions import ConfigBuildError
from stagingbridge.platform import Platform
from stagingbridge.remote_store import REMOTE_KEYS, RemoteConfigStore, store_from_settings

logger = logging.getLogger("stagingbridge.config")

DEVELOPMENT_ORIGINS: tuple[str, ...] = (
    "http://localhost:3000",
    "http://localhost:3333",
    "http://localhost:3334",
)


# ---------------------------------------------------------------------------
# Environment tier
# ---------------------------------------------------------------------------


def _positive_int(name: str, v: Any) -> int | None:
    if v is None or v == "":
        return None
    try:
        number = int(v)
    except (TypeError, ValueError):
        logger.warning("Ignoring %s: expected a positive integer, got %r", name, v)
        return None
    if number <= 0:
        logger.warning("Ignoring %s: expected a positive integer, got %r", name, v)
        return None
    return number


def _flag(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    return str(v).strip().lower() in ("1", "true", "yes")


class Settings(BaseSettings):
    """Environment overrides.  Every variable is optional."""

    model_config = SettingsConfigDict(
        env_prefix="SANITY_STUDIO_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Staging
    staging_url: str | None = Field(default=None, description="Staging site base URL")
    staging_cookie_name: str | None = Field(default=None, description="Staging auth cookie name")
    staging_token_validity_days: int | None = Field(
        default=None, description="Staging token lifetime in days"
    )
    staging_rate_limit_ms: int | None = Field(
        default=None, description="Fallback rate-limit retry window in milliseconds"
    )

    # Diagnostics
    debug: bool = Field(default=False, description="Enable debug mode ('true')")
    log_format: str = Field(default="text", description="Log format: text or json")

    # Logging provider credentials
    logflare_api_key: str | None = Field(default=None, description="Logflare API key")
    logflare_source_id: str | None = Field(default=None, description="Logflare source ID")

    # Host environment (not prefixed)
    node_env: Literal["development", "staging", "production"] | None = Field(
        default=None, validation_alias="NODE_ENV"
    )
    vercel: bool = Field(default=False, validation_alias="VERCEL")
    netlify: bool = Field(default=False, validation_alias="NETLIFY")
    edge_config: str | None = Field(
        default=None, validation_alias="EDGE_CONFIG", description="Edge Config connection string"
    )

    @field_validator("staging_url", mode="before")
    @classmethod
    def validate_staging_url(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        parts = urlsplit(str(v))
        if parts.scheme not in ("http", "https") or not parts.netloc:
            logger.warning("Ignoring SANITY_STUDIO_STAGING_URL: not an http(s) URL: %r", v)
            return None
        return str(v).rstrip("/")

    @field_validator("staging_token_validity_days", mode="before")
    @classmethod
    def validate_token_validity_days(cls, v: Any) -> int | None:
        return _positive_int("SANITY_STUDIO_STAGING_TOKEN_VALIDITY_DAYS", v)

    @field_validator("staging_rate_limit_ms", mode="before")
    @classmethod
    def validate_rate_limit_ms(cls, v: Any) -> int | None:
        return _positive_int("SANITY_STUDIO_STAGING_RATE_LIMIT_MS", v)

    @field_validator("debug", "vercel", "netlify", mode="before")
    @classmethod
    def validate_flag(cls, v: Any) -> bool:
        return _flag(v)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"SANITY_STUDIO_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("node_env", mode="before")
    @classmethod
    def validate_node_env(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        v = str(v).lower()
        if v not in ("development", "staging", "production"):
            logger.warning("Ignoring NODE_ENV=%r: expected development, staging or production", v)
            return None
        return v

    @property
    def is_development(self) -> bool:
        return self.node_env == "development"

    @property
    def is_production(self) -> bool:
        """Anything that is not development is treated as production for redaction."""
        return not self.is_development

    @property
    def is_debug(self) -> bool:
        return self.debug or self.is_development

    @property
    def logflare_configured(self) -> bool:
        return bool(self.logflare_api_key and self.logflare_source_id)


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ApiEndpoints(_Frozen):
    validate_v3: str = "/api/auth/validate-sanity-v3"
    staging_login: str = "/api/auth/staging-login"


class UrlConfig(_Frozen):
    staging: str
    development: tuple[str, ...]
    api_endpoints: ApiEndpoints = ApiEndpoints()


class SecurityConfig(_Frozen):
    token_validity_days: int = Field(gt=0)
    rate_limit_retry_ms: int = Field(gt=0)
    allowed_origins: tuple[str, ...]
    cookie_name: str


class LoggingConfig(_Frozen):
    provider: Literal["console", "edge-console", "logflare"] = "console"
    level: Literal["debug", "info", "warn", "error"] = "info"
    flush_interval: int = Field(default=1000, gt=0)


class FeatureFlags(_Frozen):
    auto_validation: bool = True
    debug_mode: bool = False
    enable_post_message: bool = True
    show_toasts: bool = True


class StagingAuthConfig(_Frozen):
    """Immutable configuration snapshot shared by every component."""

    urls: UrlConfig
    security: SecurityConfig
    logging: LoggingConfig = LoggingConfig()
    features: FeatureFlags = FeatureFlags()


DEFAULT_CONFIG = StagingAuthConfig(
    urls=UrlConfig(
        staging="https://staging.example.com",
        development=(
            "https://localhost:3000",
            "https://localhost:3334",
            "http://localhost:3000",
        ),
    ),
    security=SecurityConfig(
        token_validity_days=7,
        rate_limit_retry_ms=60_000,
        allowed_origins=(
            "https://staging.example.com",
            "https://localhost:3000",
            "https://localhost:3334",
        ),
        cookie_name="staging-auth",
    ),
)


# ---------------------------------------------------------------------------
# Tier application (operates on plain dicts from model_dump)
# ---------------------------------------------------------------------------


def apply_environment(data: dict[str, Any], settings: Settings) -> None:
    """Overlay the environment tier onto *data* in place."""
    urls, security = data["urls"], data["security"]
    log_cfg, features = data["logging"], data["features"]

    if settings.staging_url:
        urls["staging"] = settings.staging_url
    if settings.staging_cookie_name:
        security["cookie_name"] = settings.staging_cookie_name
    if settings.staging_token_validity_days:
        security["token_validity_days"] = settings.staging_token_validity_days
    if settings.staging_rate_limit_ms:
        security["rate_limit_retry_ms"] = settings.staging_rate_limit_ms

    if settings.logflare_configured:
        log_cfg["provider"] = "logflare"
    elif settings.vercel:
        log_cfg["provider"] = "edge-console"
    if settings.is_debug:
        log_cfg["level"] = "debug"
    elif settings.is_development:
        log_cfg["level"] = "info"
    else:
        log_cfg["level"] = "warn"
    if settings.vercel:
        log_cfg["flush_interval"] = 500

    features["debug_mode"] = settings.is_debug
    features["show_toasts"] = settings.is_development or settings.is_debug

    if settings.is_development:
        origins = list(security["allowed_origins"])
        origins.extend(o for o in DEVELOPMENT_ORIGINS if o not in origins)
        security["allowed_origins"] = tuple(origins)


_REMOTE_FEATURES = {
    "feature_autoValidation": "auto_validation",
    "feature_debugMode": "debug_mode",
    "feature_enablePostMessage": "enable_post_message",
    "feature_showToasts": "show_toasts",
}


def apply_remote(data: dict[str, Any], values: dict[str, Any]) -> list[str]:
    """Overlay remote store *values* onto *data*; return the keys applied.

    Values of the wrong type are skipped.
    """
    applied: list[str] = []

    staging_url = values.get("stagingUrl")
    if isinstance(staging_url, str) and staging_url:
        data["urls"]["staging"] = staging_url.rstrip("/")
        applied.append("stagingUrl")

    origins = values.get("allowedOrigins")
    if isinstance(origins, list) and all(isinstance(o, str) for o in origins):
        data["security"]["allowed_origins"] = tuple(origins)
        applied.append("allowedOrigins")

    rate_limit = values.get("rateLimitMs")
    if isinstance(rate_limit, int) and not isinstance(rate_limit, bool) and rate_limit > 0:
        data["security"]["rate_limit_retry_ms"] = rate_limit
        applied.append("rateLimitMs")

    for key, field in _REMOTE_FEATURES.items():
        value = values.get(key)
        if isinstance(value, bool):
            data["features"][field] = value
            applied.append(key)

    return applied


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ConfigResolver:
    """Build, cache and hand out :class:`StagingAuthConfig` snapshots.

    ``resolve()`` builds at most once and shares one in-flight build
    between concurrent awaiters; cancelling one awaiter leaves the build
    running for the others.  ``get()`` never blocks: it returns the
    cached snapshot, or a defaults+environment snapshot while the full
    build has not finished.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: RemoteConfigStore | None = None,
        defaults: StagingAuthConfig = DEFAULT_CONFIG,
    ) -> None:
        self._settings = settings
        self._store = store
        self._defaults = defaults
        self._cached: StagingAuthConfig | None = None
        self._fallback: StagingAuthConfig | None = None
        self._pending: asyncio.Future[StagingAuthConfig] | None = None

    @classmethod
    def from_env(cls, platform: Platform | None = None) -> ConfigResolver:
        """Read settings from the environment and attach Edge Config if set."""
        settings = Settings()
        platform = platform or Platform.detect(settings)
        return cls(settings=settings, store=store_from_settings(settings, platform))

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings()
        return self._settings

    @property
    def defaults(self) -> StagingAuthConfig:
        return self._defaults

    def build_sync(self) -> StagingAuthConfig:
        """Defaults overlaid with the environment tier only."""
        data = self._defaults.model_dump()
        apply_environment(data, self.settings)
        return StagingAuthConfig.model_validate(data)

    async def build(self) -> StagingAuthConfig:
        """Build a fresh snapshot from all three tiers (no caching)."""
        data = self._defaults.model_dump()
        apply_environment(data, self.settings)

        if self._store is not None:
            try:
                values = await self._store.get_many(REMOTE_KEYS)
            except Exception as exc:
                err = exc if isinstance(exc, ConfigBuildError) else ConfigBuildError(str(exc))
                logger.warning(
                    "Failed to load remote config from %s: %s",
                    getattr(self._store, "name", "store"),
                    err.message,
                    extra={"action": "config_remote_failed"},
                )
            else:
                applied = apply_remote(data, values)
                if applied:
                    logger.info("Applied remote config overrides: %s", ", ".join(applied))

        config = StagingAuthConfig.model_validate(data)
        if config.features.debug_mode:
            logger.debug(
                "Configuration loaded: environment=%s logging=%s features=%s",
                self.settings.node_env,
                config.logging.provider,
                config.features.model_dump(),
            )
        return config

    async def resolve(self) -> StagingAuthConfig:
        if self._cached is not None:
            return self._cached
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._build_and_cache())
        return await asyncio.shield(self._pending)

    async def _build_and_cache(self) -> StagingAuthConfig:
        try:
            config = await self.build()
        except BaseException:
            self._pending = None
            raise
        self._cached = config
        return config

    def try_get_cached(self) -> StagingAuthConfig | None:
        return self._cached

    def get(self) -> StagingAuthConfig:
        if self._cached is not None:
            return self._cached
        if self._fallback is None:
            logger.warning("Config still initializing, using sync fallback")
            self._fallback = self.build_sync()
        return self._fallback

    def reset(self) -> None:
        """Drop every cached snapshot (test isolation, explicit reload)."""
        self._cached = None
        self._fallback = None
        self._pending = None


# Process-wide resolver, created on first use so the environment is read late.
_default_resolver: ConfigResolver | None = None


def get_resolver() -> ConfigResolver:
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = ConfigResolver.from_env()
    return _default_resolver


def get_config() -> StagingAuthConfig:
    """Best available snapshot; never blocks."""
    return get_resolver().get()


async def get_config_async() -> StagingAuthConfig:
    """Fully resolved snapshot, including remote overrides."""
    return await get_resolver().resolve()


def reset_config() -> None:
    global _default_resolver
    _default_resolver = None
