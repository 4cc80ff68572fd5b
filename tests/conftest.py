"""Shared fixtures for staging auth bridge tests."""

from __future__ import annotations

import os

import httpx
import pytest

from stagingbridge.config import DEFAULT_CONFIG, reset_config
from stagingbridge.platform import Platform

_ENV_VARS = ("NODE_ENV", "VERCEL", "NETLIFY", "EDGE_CONFIG")


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip bridge-related variables so host settings don't leak into tests."""
    for name in list(os.environ):
        if name.upper().startswith("SANITY_STUDIO_") or name.upper() in _ENV_VARS:
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return DEFAULT_CONFIG


@pytest.fixture
def make_platform(clock):
    """Factory for a Platform whose HTTP calls are answered by a handler."""

    def _make(handler, **kwargs) -> Platform:
        kwargs.setdefault("clock", clock)
        return Platform(transport=httpx.MockTransport(handler), **kwargs)

    return _make
