"""Tests for the staging validation client."""

from __future__ import annotations

import json
import logging
import re

import httpx
import pytest
from pydantic import ValidationError

from stagingbridge.exceptions import (
    InvalidResponseError,
    NetworkFailureError,
    OriginForbiddenError,
    RateLimitedError,
    RequestTimeoutError,
    StagingAuthError,
    ValidationFailedError,
)
from stagingbridge.validator import (
    SessionValidator,
    ValidationRequest,
    ValidationResult,
    _retry_after_seconds,
    generate_session_token,
)

AUTHORIZED = {
    "authorized": True,
    "role": "editor",
    "correlationId": "corr-123",
    "timestamp": "2026-01-01T00:00:00Z",
}


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response | None = None, exc: Exception | None = None):
        self.response = response or httpx.Response(200, json=AUTHORIZED)
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return self.response

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def make_validator(make_platform, config):
    def _make(handler, *, development=False, **platform_kwargs):
        return SessionValidator(
            config, make_platform(handler, **platform_kwargs), development=development
        )

    return _make


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class TestModels:
    def test_request_uses_camel_case_and_omits_missing_fields(self):
        request = ValidationRequest(session_token="tok", user_roles=["editor"])
        assert request.to_json() == {"sessionToken": "tok", "userRoles": ["editor"]}

    def test_request_accepts_aliases(self):
        request = ValidationRequest.model_validate(
            {"sessionToken": "tok", "userRoles": [], "userName": "Ada", "userEmail": "a@x.io"}
        )
        assert request.user_name == "Ada"
        assert request.to_json()["userEmail"] == "a@x.io"

    def test_result_parses_optional_fields(self):
        result = ValidationResult.model_validate(AUTHORIZED)
        assert result.authorized is True
        assert result.correlation_id == "corr-123"

    def test_result_minimal(self):
        result = ValidationResult.model_validate({"authorized": False, "error": "No access"})
        assert result.role is None
        assert result.error == "No access"

    def test_result_is_frozen(self):
        result = ValidationResult(authorized=True)
        with pytest.raises(ValidationError):
            result.authorized = False


# ---------------------------------------------------------------------------
# Session token generation
# ---------------------------------------------------------------------------


class TestGenerateSessionToken:
    def test_secure_source(self, make_platform):
        platform = make_platform(Recorder(), secure_random=lambda: "abc-def")
        token = generate_session_token(platform)
        assert re.fullmatch(r"studio-validation-\d{13}-abc-def", token)

    def test_default_source_is_uuid(self, make_platform):
        token = generate_session_token(make_platform(Recorder()))
        suffix = token.split("-", 3)[3]
        assert re.fullmatch(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[0-9a-f]{4}-[0-9a-f]{12}", suffix)

    def test_insecure_fallback_warns(self, make_platform, caplog):
        platform = make_platform(Recorder(), secure_random=None)
        with caplog.at_level(logging.WARNING, logger="stagingbridge"):
            token = generate_session_token(platform)
        assert re.fullmatch(r"studio-validation-\d+-[0-9a-f]{32}", token)
        assert "less secure fallback" in caplog.text

    def test_tokens_are_unique(self, make_platform):
        platform = make_platform(Recorder())
        assert generate_session_token(platform) != generate_session_token(platform)


# ---------------------------------------------------------------------------
# SessionValidator.validate()
# ---------------------------------------------------------------------------


class TestValidate:
    async def test_authorized_result(self, make_validator):
        handler = Recorder()
        validator = make_validator(handler)

        result = await validator.validate("tok", ["editor"], "Ada", "ada@example.com")

        assert result == ValidationResult.model_validate(AUTHORIZED)
        assert len(handler.requests) == 1
        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://staging.example.com/api/auth/validate-sanity-v3"
        assert request.headers["content-type"] == "application/json"
        assert handler.last_body == {
            "sessionToken": "tok",
            "userRoles": ["editor"],
            "userName": "Ada",
            "userEmail": "ada@example.com",
        }

    async def test_unauthorized_result_is_not_an_error(self, make_validator):
        handler = Recorder(httpx.Response(200, json={"authorized": False, "error": "No role"}))
        result = await make_validator(handler).validate("tok", [])
        assert result.authorized is False
        assert result.error == "No role"

    async def test_roles_default_to_empty_list(self, make_validator):
        handler = Recorder()
        await make_validator(handler).validate("tok")
        assert handler.last_body == {"sessionToken": "tok", "userRoles": []}

    async def test_development_uses_first_development_url(self, make_validator):
        handler = Recorder()
        validator = make_validator(handler, development=True)

        await validator.validate("tok", [])

        assert validator.base_url == "https://localhost:3000"
        assert handler.requests[0].url.host == "localhost"

    async def test_rate_limited_with_retry_after(self, make_validator):
        handler = Recorder(httpx.Response(429, headers={"Retry-After": "30"}))
        with pytest.raises(RateLimitedError) as exc_info:
            await make_validator(handler).validate("tok", [])
        assert exc_info.value.retry_after_seconds == 30
        assert exc_info.value.message == "Rate limit exceeded. Please try again in 30 seconds."
        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable is True

    async def test_rate_limited_without_header_uses_config(self, make_validator):
        handler = Recorder(httpx.Response(429))
        with pytest.raises(RateLimitedError) as exc_info:
            await make_validator(handler).validate("tok", [])
        assert exc_info.value.retry_after_seconds == 60

    async def test_forbidden_origin(self, make_validator):
        handler = Recorder(httpx.Response(403))
        with pytest.raises(OriginForbiddenError, match="not authorized"):
            await make_validator(handler).validate("tok", [])

    async def test_other_http_errors(self, make_validator):
        handler = Recorder(httpx.Response(500))
        with pytest.raises(ValidationFailedError) as exc_info:
            await make_validator(handler).validate("tok", [])
        assert exc_info.value.message == "Validation failed: Internal Server Error"
        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, InvalidResponseError)

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>oops</html>"),
            httpx.Response(200, json=[1, 2]),
            httpx.Response(200, json={"role": "editor"}),
            httpx.Response(200, json={"authorized": "yes"}),
        ],
    )
    async def test_malformed_body(self, make_validator, response):
        with pytest.raises(InvalidResponseError, match="Invalid response format"):
            await make_validator(Recorder(response)).validate("tok", [])

    async def test_timeout(self, make_validator):
        handler = Recorder(exc=httpx.ReadTimeout("timed out"))
        with pytest.raises(RequestTimeoutError) as exc_info:
            await make_validator(handler, request_timeout=8.0).validate("tok", [])
        assert "8s" in exc_info.value.message
        assert isinstance(exc_info.value, NetworkFailureError)

    async def test_network_failure(self, make_validator):
        handler = Recorder(exc=httpx.ConnectError("connection refused"))
        with pytest.raises(NetworkFailureError, match="connection refused"):
            await make_validator(handler).validate("tok", [])

    async def test_exactly_one_request_per_call(self, make_validator):
        handler = Recorder(httpx.Response(503))
        validator = make_validator(handler)
        with pytest.raises(StagingAuthError):
            await validator.validate("tok", [])
        assert len(handler.requests) == 1

    async def test_cookies_persist_between_calls(self, make_validator):
        responses = iter(
            [
                httpx.Response(
                    200, json=AUTHORIZED, headers={"Set-Cookie": "staging-auth=abc; Path=/"}
                ),
                httpx.Response(200, json=AUTHORIZED),
            ]
        )
        seen: list[str | None] = []

        def handler(request):
            seen.append(request.headers.get("cookie"))
            return next(responses)

        validator = make_validator(handler)
        await validator.validate("tok", [])
        await validator.validate("tok", [])

        assert seen == [None, "staging-auth=abc"]


# ---------------------------------------------------------------------------
# Log redaction
# ---------------------------------------------------------------------------


class TestValidationLogging:
    async def test_production_logs_hide_roles_and_pii(self, make_validator, caplog):
        caplog.set_level(logging.DEBUG, logger="stagingbridge")
        handler = Recorder(httpx.Response(200, json={"authorized": True, "role": "administrator"}))
        await make_validator(handler).validate(
            "secret-token", ["admin"], "Ada", "ada@example.com"
        )

        actions = [getattr(r, "action", None) for r in caplog.records]
        assert "validate_staging_access_start" in actions
        assert "validate_staging_access_complete" in actions
        for record in caplog.records:
            assert not hasattr(record, "roles")
            assert not hasattr(record, "role")
            assert not hasattr(record, "session_token")
            assert "secret-token" not in record.getMessage()
            assert "ada@example.com" not in record.getMessage()
            assert "administrator" not in record.getMessage()

        start = next(
            r
            for r in caplog.records
            if getattr(r, "action", None) == "validate_staging_access_start"
        )
        assert start.token_length == len("secret-token")
        assert start.role_count == 1

    async def test_development_logs_include_roles(self, make_validator, caplog):
        caplog.set_level(logging.DEBUG, logger="stagingbridge")
        await make_validator(Recorder(), development=True).validate("tok", ["editor"])

        by_action = {getattr(r, "action", None): r for r in caplog.records}
        assert by_action["validate_staging_access_start"].roles == ["editor"]
        assert by_action["validate_staging_access_complete"].role == "editor"

    async def test_failures_are_logged_with_status(self, make_validator, caplog):
        caplog.set_level(logging.DEBUG, logger="stagingbridge")
        with pytest.raises(OriginForbiddenError):
            await make_validator(Recorder(httpx.Response(403))).validate("tok", [])

        error = next(
            r
            for r in caplog.records
            if getattr(r, "action", None) == "validate_staging_access_error"
        )
        assert error.levelno == logging.ERROR
        assert error.status_code == 403


# ---------------------------------------------------------------------------
# Retry-After parsing
# ---------------------------------------------------------------------------


class TestRetryAfter:
    def test_seconds(self):
        assert _retry_after_seconds("120", 60_000) == 120

    def test_missing_header_uses_fallback(self):
        assert _retry_after_seconds(None, 60_000) == 60
        assert _retry_after_seconds("  ", 5_500) == 5

    def test_http_date_in_past_clamps_to_zero(self):
        assert _retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", 60_000) == 0

    def test_garbage_uses_fallback(self):
        assert _retry_after_seconds("soon", 60_000) == 60
