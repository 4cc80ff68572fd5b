"""Studio-side session state around the validator.

:class:`StudioSession` is what the studio layout talks to: it knows the
current user, whether a validation is running, the last result and the
last error.  The validator itself keeps none of that.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stagingbridge.bridge import AuthStatus
from stagingbridge.config import StagingAuthConfig
from stagingbridge.exceptions import NoSessionError, StagingAuthError
from stagingbridge.platform import Platform
from stagingbridge.throttle import Throttled
from stagingbridge.user_roles import extract_from_user
from stagingbridge.validator import SessionValidator, ValidationResult, generate_session_token

logger = logging.getLogger("stagingbridge.session")

#: Calls within this window share one validation.
VALIDATION_THROTTLE_MS = 2000


def _user_field(user: Any, name: str) -> Any:
    if user is None:
        return None
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


class StudioSession:
    """Track the studio user's staging validation."""

    def __init__(
        self,
        validator: SessionValidator,
        config: StagingAuthConfig,
        platform: Platform | None = None,
        throttle_ms: float = VALIDATION_THROTTLE_MS,
    ) -> None:
        self.validator = validator
        self.config = config
        self.platform = platform or validator.platform
        self.user: Any = None
        self.is_validating = False
        self.last_validation: ValidationResult | None = None
        self.error: Exception | None = None
        self.validate_session = Throttled(
            self._validate_session, throttle_ms, clock=self.platform.clock
        )

    @property
    def user_id(self) -> str | None:
        user_id = _user_field(self.user, "id")
        return user_id if isinstance(user_id, str) and user_id else None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def set_user(self, user: Any) -> None:
        """Replace the current user.

        A different user starts a fresh throttle window and drops the
        previous user's result and error.
        """
        if _user_field(user, "id") != self.user_id:
            self.validate_session.reset()
            self.clear_validation()
        self.user = user

    def status(self) -> AuthStatus:
        return AuthStatus(
            authenticated=self.is_authenticated,
            has_validation=self.last_validation is not None,
            is_validating=self.is_validating,
        )

    def clear_validation(self) -> None:
        self.last_validation = None
        self.error = None

    async def on_login(self, user: Any) -> ValidationResult | None:
        """Auto-validate a freshly signed-in user.

        Returns ``None`` when auto-validation is off, there is no user or a
        result is already held.  Validation errors propagate.
        """
        self.set_user(user)
        if not self.config.features.auto_validation:
            return None
        if not self.is_authenticated or self.last_validation is not None:
            return None
        logger.debug("User logged in, initiating validation")
        return await self.validate_session()

    async def _validate_session(self) -> ValidationResult:
        user = self.user
        user_id = self.user_id
        roles = extract_from_user(user)
        logger.debug(
            "User validation started",
            extra={"action": "session_validation_start", "role_count": len(roles)},
        )
        if user_id is None:
            raise NoSessionError()

        self.is_validating = True
        self.error = None
        try:
            token = generate_session_token(self.platform)
            name = _user_field(user, "name") or None
            email = _user_field(user, "email") or None
            result = await self.validator.validate(token, roles, name, email)
        except StagingAuthError as exc:
            self.error = exc
            raise
        finally:
            self.is_validating = False

        self.last_validation = result
        return result
