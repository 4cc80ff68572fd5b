"""Structured logging configuration for the staging auth bridge.

Environment variables:
    SANITY_STUDIO_LOG_FORMAT -- ``json`` for structured JSON output, ``text`` for human-readable (default).

The level comes from the resolved configuration (``logging.level``).

Redaction rules live in :func:`safe_log_context`: session tokens and user
PII are never logged, and role names only outside production.
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagingbridge.config import StagingAuthConfig
    from stagingbridge.platform import Platform

#: Structured extras omitted from JSON output when their value is None.
STRUCTURED_FIELDS: tuple[str, ...] = (
    "action",
    "duration_ms",
    "token_length",
    "role_count",
    "roles",
    "status_code",
    "correlation_id",
    "origin",
    "api_url",
    "authorized",
    "role",
    "error",
)

#: Never logged, in any environment.
ALWAYS_REDACTED: frozenset[str] = frozenset({"session_token", "user_name", "user_email"})

#: Logged only outside production-classified environments.
PRODUCTION_REDACTED: frozenset[str] = frozenset({"roles", "role"})

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _is_json_mode() -> bool:
    """Return True when structured JSON logging is requested."""
    return os.environ.get("SANITY_STUDIO_LOG_FORMAT", "text").lower() == "json"


def safe_log_context(production: bool, **fields: Any) -> dict[str, Any]:
    """Drop fields that must not reach the log sink.

    ``None`` values are dropped too so optional fields stay out of JSON.
    """
    blocked = ALWAYS_REDACTED | PRODUCTION_REDACTED if production else ALWAYS_REDACTED
    return {k: v for k, v in fields.items() if k not in blocked and v is not None}


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Uses ``pythonjsonlogger`` under the hood.  The redaction rules of
    :func:`safe_log_context` are applied again here, on a copy of the
    record, so an extra passed without it still cannot leak a token or
    PII.  With *production* set, role names are dropped as well.
    Structured fields (action, duration_ms, token_length, ...) whose
    value is ``None`` are left out.
    """

    def __init__(self, production: bool = True) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self.production = production
        self.blocked = ALWAYS_REDACTED | PRODUCTION_REDACTED if production else ALWAYS_REDACTED
        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        fields = {
            k: v
            for k, v in record.__dict__.items()
            if k not in self.blocked and not (k in STRUCTURED_FIELDS and v is None)
        }
        clean = logging.makeLogRecord(fields)

        if clean.exc_info and clean.exc_info[1] is not None:
            clean.traceback = traceback.format_exception(*clean.exc_info)
            clean.exc_info = None
            clean.exc_text = None

        return self._inner.format(clean)


def setup_logging(config: StagingAuthConfig | None = None, *, production: bool = True) -> None:
    """Configure the ``stagingbridge`` logger from *config* and the environment.

    *production* selects the stricter redaction of the JSON formatter.
    """
    level = _LEVELS[config.logging.level] if config is not None else logging.INFO
    logger = logging.getLogger("stagingbridge")
    logger.setLevel(level)

    # Remove any existing handlers so we don't double-log during tests.
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _is_json_mode():
        handler.setFormatter(StructuredJsonFormatter(production=production))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    logger.addHandler(handler)


def log_startup_info(config: StagingAuthConfig, platform: Platform) -> None:
    """Emit a structured startup log line with the resolved configuration."""
    import stagingbridge

    logger = logging.getLogger("stagingbridge")
    logger.info(
        "Staging auth bridge started",
        extra={
            "version": stagingbridge.__version__,
            "platform": platform.name,
            "logging_provider": config.logging.provider,
            "staging_url": config.urls.staging,
            "post_message_enabled": config.features.enable_post_message,
            "auto_validation": config.features.auto_validation,
        },
    )
