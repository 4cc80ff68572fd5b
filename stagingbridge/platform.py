"""Platform capabilities injected into the bridge components.

The validator, throttle, session and remote stores never touch clocks,
random sources or HTTP transports directly; they ask the
:class:`Platform` they were given.  Tests swap in a fake clock and an
``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from http.cookiejar import CookieJar
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from stagingbridge.config import Settings

logger = logging.getLogger("stagingbridge.platform")

#: Hard request timeouts (seconds), kept under each host's function limit.
VERCEL_TIMEOUT = 20.0
NETLIFY_TIMEOUT = 8.0
DEFAULT_TIMEOUT = 20.0


def uuid_random() -> str:
    """UUID4 string backed by ``os.urandom``."""
    return str(uuid.uuid4())


@dataclass
class Platform:
    """Capabilities of the host the bridge runs on."""

    name: str = "local"
    request_timeout: float = DEFAULT_TIMEOUT
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    secure_random: Callable[[], str] | None = uuid_random
    transport: httpx.AsyncBaseTransport | None = None
    cookies: CookieJar = field(default_factory=CookieJar)

    @classmethod
    def detect(cls, settings: Settings, **overrides) -> Platform:
        """Pick the deployment profile from *settings*."""
        if settings.vercel:
            platform = cls(name="vercel", request_timeout=VERCEL_TIMEOUT, **overrides)
        elif settings.netlify:
            platform = cls(name="netlify", request_timeout=NETLIFY_TIMEOUT, **overrides)
        else:
            platform = cls(name="local", **overrides)
        logger.debug(
            "Platform detected: %s (timeout %.0fs)", platform.name, platform.request_timeout
        )
        return platform

    def now_ms(self) -> float:
        return self.clock() * 1000.0

    def http_client(self, **kwargs) -> httpx.AsyncClient:
        """Build an ``AsyncClient`` sharing this platform's cookie jar.

        The shared jar is what lets a staging ``Set-Cookie`` survive across
        validation calls.
        """
        kwargs.setdefault("timeout", self.request_timeout)
        return httpx.AsyncClient(transport=self.transport, cookies=self.cookies, **kwargs)
