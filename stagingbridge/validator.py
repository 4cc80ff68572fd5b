"""Session validation against the staging site.

One call to :meth:`SessionValidator.validate` is exactly one HTTP POST to
``{base_url}/api/auth/validate-sanity-v3``.  There is no retry loop here;
callers re-invoke through :class:`~stagingbridge.throttle.Throttled`.

Every failure is raised as a typed :class:`~stagingbridge.exceptions.StagingAuthError`
so the UI can tell a rate limit from a forbidden origin; nothing is ever
turned into a silent ``authorized=False``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from stagingbridge.config import StagingAuthConfig
from stagingbridge.exceptions import (
    InvalidResponseError,
    NetworkFailureError,
    OriginForbiddenError,
    RateLimitedError,
    RequestTimeoutError,
    StagingAuthError,
    ValidationFailedError,
)
from stagingbridge.logging_config import safe_log_context
from stagingbridge.platform import Platform

logger = logging.getLogger("stagingbridge.validator")

TOKEN_PREFIX = "studio-validation"


class ValidationRequest(BaseModel):
    """JSON body posted to the validation endpoint."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_token: str = Field(alias="sessionToken")
    user_roles: list[str] = Field(default_factory=list, alias="userRoles")
    user_name: str | None = Field(default=None, alias="userName")
    user_email: str | None = Field(default=None, alias="userEmail")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ValidationResult(BaseModel):
    """Outcome of one validation round-trip."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    authorized: StrictBool
    role: StrictStr | None = None
    error: StrictStr | None = None
    correlation_id: StrictStr | None = Field(default=None, alias="correlationId")
    timestamp: StrictStr | None = None


def generate_session_token(platform: Platform) -> str:
    """Return ``studio-validation-<epoch ms>-<random>``.

    Uses the platform's secure random source; falls back to the
    non-cryptographic ``random`` module with a warning when there is none.
    """
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    if platform.secure_random is not None:
        suffix = platform.secure_random()
    else:
        logger.warning("Secure random source not available, using less secure fallback")
        suffix = f"{random.getrandbits(128):032x}"
    return f"{TOKEN_PREFIX}-{timestamp}-{suffix}"


def _retry_after_seconds(header: str | None, fallback_ms: int) -> int:
    """Seconds to wait, from a ``Retry-After`` header or the configured window."""
    fallback = fallback_ms // 1000
    if header is None or not header.strip():
        return fallback
    value = header.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return fallback
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, int((when - datetime.now(timezone.utc)).total_seconds()))


class SessionValidator:
    """Validate a studio session with the staging site.

    Stateless across calls apart from the injected configuration and
    platform.  *development* selects the first development URL instead
    of the staging URL and relaxes log redaction.
    """

    def __init__(
        self,
        config: StagingAuthConfig,
        platform: Platform | None = None,
        *,
        development: bool = False,
    ) -> None:
        self.config = config
        self.platform = platform or Platform()
        self.development = development

    @property
    def base_url(self) -> str:
        if self.development and self.config.urls.development:
            return self.config.urls.development[0].rstrip("/")
        return self.config.urls.staging.rstrip("/")

    @property
    def api_url(self) -> str:
        return self.base_url + self.config.urls.api_endpoints.validate_v3

    async def validate(
        self,
        session_token: str,
        roles: Sequence[str] | None = None,
        name: str | None = None,
        email: str | None = None,
    ) -> ValidationResult:
        """POST the session to the staging site and parse its verdict.

        Raises:
            RateLimitedError: HTTP 429.
            OriginForbiddenError: HTTP 403.
            ValidationFailedError: any other non-2xx status.
            InvalidResponseError: 2xx with a body of the wrong shape.
            RequestTimeoutError: no answer within the platform timeout.
            NetworkFailureError: any other transport failure.
        """
        production = not self.development
        roles = list(roles or [])
        request = ValidationRequest(
            session_token=session_token, user_roles=roles, user_name=name, user_email=email
        )
        started = self.platform.clock()

        logger.info(
            "Initiating staging access validation",
            extra=safe_log_context(
                production,
                action="validate_staging_access_start",
                api_url=self.api_url,
                token_length=len(session_token),
                role_count=len(roles),
                roles=roles,
            ),
        )

        try:
            result = await self._post(request)
        except StagingAuthError as exc:
            logger.error(
                "Failed to validate staging access: %s",
                exc.message,
                extra=safe_log_context(
                    production,
                    action="validate_staging_access_error",
                    status_code=exc.status_code,
                    duration_ms=self._elapsed_ms(started),
                ),
            )
            raise

        logger.info(
            "Staging access validation completed",
            extra=safe_log_context(
                production,
                action="validate_staging_access_complete",
                authorized=result.authorized,
                role=result.role,
                correlation_id=result.correlation_id,
                duration_ms=self._elapsed_ms(started),
            ),
        )
        return result

    async def _post(self, request: ValidationRequest) -> ValidationResult:
        try:
            async with self.platform.http_client() as client:
                response = await client.post(
                    self.api_url,
                    json=request.to_json(),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            msg = f"Validation request timed out after {self.platform.request_timeout:.0f}s"
            raise RequestTimeoutError(msg) from exc
        except httpx.HTTPError as exc:
            raise NetworkFailureError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            raise self._http_error(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise InvalidResponseError() from exc
        try:
            return ValidationResult.model_validate(body)
        except ValidationError as exc:
            raise InvalidResponseError() from exc

    def _http_error(self, response: httpx.Response) -> StagingAuthError:
        if response.status_code == 429:
            seconds = _retry_after_seconds(
                response.headers.get("Retry-After"), self.config.security.rate_limit_retry_ms
            )
            return RateLimitedError(seconds)
        if response.status_code == 403:
            return OriginForbiddenError()
        return ValidationFailedError(
            f"Validation failed: {response.reason_phrase or response.status_code}",
            status_code=response.status_code,
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self.platform.clock() - started) * 1000)
