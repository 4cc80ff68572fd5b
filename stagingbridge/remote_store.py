"""Remote feature stores: the highest-precedence configuration tier.

A store only has to answer ``get_many(keys)``.  Reading it is optional;
the resolver logs and skips any failure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import parse_qs, urlsplit

import httpx

from stagingbridge.exceptions import ConfigBuildError
from stagingbridge.platform import Platform

if TYPE_CHECKING:
    from stagingbridge.config import Settings

logger = logging.getLogger("stagingbridge.remote_store")

#: Keys the resolver asks every store for.
REMOTE_KEYS: tuple[str, ...] = (
    "stagingUrl",
    "allowedOrigins",
    "rateLimitMs",
    "feature_autoValidation",
    "feature_debugMode",
    "feature_enablePostMessage",
    "feature_showToasts",
)


@runtime_checkable
class RemoteConfigStore(Protocol):
    """Protocol that all remote configuration stores implement."""

    name: str

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the subset of *keys* present in the store."""
        ...


class StaticConfigStore:
    """Serve a fixed mapping; used for local runs and tests."""

    name = "static"

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values = dict(values or {})

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: self._values[k] for k in keys if k in self._values}


class EdgeConfigStore:
    """Read items from a Vercel Edge Config over HTTP.

    *connection_string* is the value Vercel puts in ``EDGE_CONFIG``:
    ``https://edge-config.vercel.com/<id>?token=<token>``.
    """

    name = "edge_config"

    def __init__(self, connection_string: str, platform: Platform | None = None) -> None:
        parts = urlsplit(connection_string)
        token = parse_qs(parts.query).get("token", [""])[0]
        config_id = parts.path.strip("/")
        if parts.scheme not in ("http", "https") or not parts.netloc or not config_id or not token:
            msg = "EDGE_CONFIG must look like https://edge-config.vercel.com/<id>?token=<token>"
            raise ValueError(msg)
        self.base_url = f"{parts.scheme}://{parts.netloc}/{config_id}"
        self._token = token
        self._platform = platform or Platform()

    async def get_all(self) -> dict[str, Any]:
        async with self._platform.http_client() as client:
            try:
                response = await client.get(
                    f"{self.base_url}/items",
                    headers={"Authorization": f"Bearer {self._token}"},
                )
            except httpx.HTTPError as exc:
                msg = f"Edge Config request failed: {exc}"
                raise ConfigBuildError(msg) from exc

        if response.status_code != 200:
            msg = f"Edge Config returned HTTP {response.status_code}"
            raise ConfigBuildError(msg)
        try:
            payload = response.json()
        except ValueError as exc:
            msg = "Edge Config returned a non-JSON body"
            raise ConfigBuildError(msg) from exc
        if not isinstance(payload, dict):
            msg = "Edge Config items must be a JSON object"
            raise ConfigBuildError(msg)
        return payload

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        items = await self.get_all()
        return {k: items[k] for k in keys if k in items}


def store_from_settings(
    settings: Settings, platform: Platform | None = None
) -> RemoteConfigStore | None:
    """Return an :class:`EdgeConfigStore` when ``EDGE_CONFIG`` is set."""
    if not settings.edge_config:
        return None
    try:
        return EdgeConfigStore(settings.edge_config, platform)
    except ValueError as exc:
        logger.warning("Ignoring EDGE_CONFIG: %s", exc)
        return None
