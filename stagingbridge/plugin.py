"""Wire configuration, validator, session and bridge together.

The studio host creates one :class:`StagingAuthPlugin`, awaits
:meth:`~StagingAuthPlugin.start` with its message bus, forwards login
events to :meth:`~StagingAuthPlugin.on_login` and calls
:meth:`~StagingAuthPlugin.close` on shutdown.
"""

from __future__ import annotations

import logging
from typing import Any

from stagingbridge.bridge import CrossOriginBridge
from stagingbridge.channel import MessageBus
from stagingbridge.config import ConfigResolver, StagingAuthConfig
from stagingbridge.logging_config import log_startup_info, setup_logging
from stagingbridge.platform import Platform
from stagingbridge.session import StudioSession
from stagingbridge.validator import SessionValidator, ValidationResult

logger = logging.getLogger("stagingbridge.plugin")


class StagingAuthPlugin:
    """Lifecycle owner for one studio session."""

    def __init__(
        self,
        resolver: ConfigResolver | None = None,
        platform: Platform | None = None,
        *,
        configure_logging: bool = False,
    ) -> None:
        self._platform = platform
        self.resolver = resolver or ConfigResolver.from_env(platform)
        self._configure_logging = configure_logging
        self.config: StagingAuthConfig | None = None
        self.session: StudioSession | None = None
        self.bridge: CrossOriginBridge | None = None

    @property
    def started(self) -> bool:
        return self.session is not None

    async def start(self, bus: MessageBus | None = None) -> None:
        """Resolve configuration and start answering frames on *bus*."""
        if self.started:
            return
        config = await self.resolver.resolve()
        settings = self.resolver.settings
        platform = self._platform or Platform.detect(settings)

        if self._configure_logging:
            setup_logging(config, production=settings.is_production)

        validator = SessionValidator(config, platform, development=settings.is_development)
        self.config = config
        self.session = StudioSession(validator, config, platform)
        self.bridge = CrossOriginBridge(config, self.session.status)
        if bus is not None:
            self.bridge.attach(bus)

        log_startup_info(config, platform)

    async def on_login(self, user: Any) -> ValidationResult | None:
        if self.session is None:
            msg = "StagingAuthPlugin.start() must be awaited before on_login()"
            raise RuntimeError(msg)
        return await self.session.on_login(user)

    def close(self) -> None:
        if self.bridge is not None:
            self.bridge.close()
        logger.debug("Staging auth plugin closed")
