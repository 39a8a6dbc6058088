# tests/conftest.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from limits.storage import MemoryStorage

from rest2mqtt.core.config import Settings
from rest2mqtt.core.ratelimit import RateLimiter, RatePolicy
from rest2mqtt.main import create_app
from tests.helpers.fakes import SECRET, FakeBroker


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, token=SECRET, redis_url=None, skip_rate_limit=False)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(RatePolicy(limit=4, period=3600), MemoryStorage())


@pytest.fixture
def client(settings, broker, rate_limiter):
    app = create_app(settings, broker=broker, rate_limiter=rate_limiter)
    with TestClient(app) as test_client:
        yield test_client
