"""Cross-origin auth status bridge.

Embedded staging frames ask the studio whether the current user is
signed in.  The bridge answers over the shared message channel, but only
to trusted origins, and only to the exact frame that asked.

Processing order for each inbound message:

1. origin not in ``security.allowed_origins``: drop with a warning.  No
   parsing happens on untrusted input.
2. ``register-nonce`` whose ``origin`` field matches the sender: remember
   the nonce for that origin and stop.
3. ``request-staging-auth-status``: skipped when post-messaging is
   disabled or when a nonce is given that this origin never registered.
   Otherwise reply with ``staging-auth-status``.
4. anything else: ignored (the channel carries unrelated traffic).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from stagingbridge.channel import MessageBus, MessageEvent
from stagingbridge.config import StagingAuthConfig

logger = logging.getLogger("stagingbridge.bridge")


# ---------------------------------------------------------------------------
# Wire messages
# ---------------------------------------------------------------------------


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class NonceRegistration(_Message):
    type: Literal["register-nonce"]
    nonce: StrictStr = Field(min_length=1)
    origin: StrictStr


class AuthStatusRequest(_Message):
    type: Literal["request-staging-auth-status"]
    correlation_id: StrictStr | None = Field(default=None, alias="correlationId")
    nonce: StrictStr | None = None


class AuthStatusResponse(_Message):
    type: Literal["staging-auth-status"] = "staging-auth-status"
    authenticated: StrictBool
    has_validation: StrictBool = Field(alias="hasValidation")
    is_validating: StrictBool = Field(alias="isValidating")
    correlation_id: StrictStr | None = Field(default=None, alias="correlationId")
    nonce: StrictStr | None = None

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _parse(model: type[_Message], data: Any) -> Any:
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthStatus:
    """Snapshot of the studio's auth state relayed to frames."""

    authenticated: bool
    has_validation: bool
    is_validating: bool


class NonceRegistry:
    """Nonces registered per origin.

    By default a nonce never expires and may be reused, which matches
    what deployed frames rely on.  ``ttl_seconds`` and ``single_use``
    tighten that.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        single_use: bool = False,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._nonces: dict[str, dict[str, float]] = {}
        self._ttl = ttl_seconds
        self._single_use = single_use
        self._clock = clock or time.monotonic

    def register(self, origin: str, nonce: str) -> None:
        self._nonces.setdefault(origin, {})[nonce] = self._clock()

    def consume(self, origin: str, nonce: str) -> bool:
        """Return True if *origin* registered *nonce* and it is still usable."""
        issued = self._nonces.get(origin, {})
        registered_at = issued.get(nonce)
        if registered_at is None:
            return False
        if self._ttl is not None and self._clock() - registered_at > self._ttl:
            del issued[nonce]
            return False
        if self._single_use:
            del issued[nonce]
        return True

    def __contains__(self, key: tuple[str, str]) -> bool:
        origin, nonce = key
        return nonce in self._nonces.get(origin, {})

    def __len__(self) -> int:
        return sum(len(v) for v in self._nonces.values())


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class CrossOriginBridge:
    """Answer auth status requests from trusted embedded frames."""

    def __init__(
        self,
        config: StagingAuthConfig,
        status_provider: Callable[[], AuthStatus],
        nonces: NonceRegistry | None = None,
    ) -> None:
        self.config = config
        self._status_provider = status_provider
        self.nonces = nonces if nonces is not None else NonceRegistry()
        self._bus: MessageBus | None = None

    @property
    def trusted_origins(self) -> tuple[str, ...]:
        return self.config.security.allowed_origins

    def attach(self, bus: MessageBus) -> None:
        """Start listening on *bus*."""
        if self._bus is not None:
            self.close()
        bus.add_listener(self.handle_message)
        self._bus = bus

    def close(self) -> None:
        """Stop listening; safe to call more than once."""
        if self._bus is not None:
            self._bus.remove_listener(self.handle_message)
            self._bus = None

    def handle_message(self, event: MessageEvent) -> AuthStatusResponse | None:
        """Process one inbound message; return the reply sent, if any."""
        if event.origin not in self.trusted_origins:
            logger.warning(
                "Ignoring message from untrusted origin: %s",
                event.origin,
                extra={"action": "untrusted_origin", "origin": event.origin},
            )
            return None

        registration = _parse(NonceRegistration, event.data)
        if registration is not None:
            self._register(registration, event.origin)
            return None

        request = _parse(AuthStatusRequest, event.data)
        if request is None:
            return None
        return self._respond(request, event)

    def _register(self, registration: NonceRegistration, sender: str) -> None:
        if registration.origin != sender:
            logger.warning(
                "Nonce registration origin mismatch: claimed %s, sent from %s",
                registration.origin,
                sender,
                extra={"action": "nonce_origin_mismatch", "origin": sender},
            )
            return
        self.nonces.register(sender, registration.nonce)
        logger.debug("Registered nonce for %s", sender, extra={"origin": sender})

    def _respond(
        self, request: AuthStatusRequest, event: MessageEvent
    ) -> AuthStatusResponse | None:
        if not self.config.features.enable_post_message:
            return None

        if request.nonce is not None and not self.nonces.consume(event.origin, request.nonce):
            logger.warning(
                "Invalid nonce from %s - possible CSRF attempt",
                event.origin,
                extra={
                    "action": "invalid_nonce",
                    "origin": event.origin,
                    "correlation_id": request.correlation_id,
                },
            )
            return None

        if event.source is None:
            logger.debug("Auth status request from %s has no reply target", event.origin)
            return None

        status = self._status_provider()
        response = AuthStatusResponse(
            authenticated=status.authenticated,
            has_validation=status.has_validation,
            is_validating=status.is_validating,
            correlation_id=request.correlation_id,
            nonce=request.nonce,
        )
        event.source.post_message(response.to_message(), event.origin)

        if self.config.features.debug_mode:
            logger.debug(
                "Sent auth status to iframe",
                extra={
                    "action": "auth_status_sent",
                    "origin": event.origin,
                    "authenticated": status.authenticated,
                    "correlation_id": request.correlation_id,
                },
            )
        return response
