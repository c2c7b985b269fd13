"""Tests for the rate limiting middleware and key functions."""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from limitgate.app.exceptions import StoreUnavailableError
from limitgate.app.limiter import LeakyBucket, LimiterManager, RateLimitResult, TokenBucket
from limitgate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    api_key_key,
    client_ip_key,
    format_remaining,
    key_func_for_strategy,
    user_id_key,
)


def make_request(headers=None, client=("10.0.0.1", 1234), state=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "state": state or {},
    }
    return Request(scope)


class TestKeyFunctions:

    def test_client_ip_from_peer(self):
        assert client_ip_key(make_request()) == "10.0.0.1"

    def test_client_ip_prefers_first_forwarded_hop(self):
        request = make_request(headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.2"})
        assert client_ip_key(request) == "203.0.113.5"

    def test_client_ip_without_client(self):
        assert client_ip_key(make_request(client=None)) == "unknown"

    def test_api_key(self):
        key_func = api_key_key("X-API-Key")
        assert key_func(make_request(headers={"X-API-Key": "abc"})) == "apikey:abc"
        assert key_func(make_request()) == "10.0.0.1"

    def test_user_id(self):
        key_func = user_id_key("user_id")
        assert key_func(make_request(state={"user_id": 42})) == "user:42"
        assert key_func(make_request()) == "10.0.0.1"

    def test_strategy_lookup(self):
        assert key_func_for_strategy("ip") is client_ip_key
        request = make_request(headers={"X-Token": "t1"})
        assert key_func_for_strategy("api_key", api_key_header="X-Token")(request) == "apikey:t1"
        with pytest.raises(ValueError):
            key_func_for_strategy("cookie")

    def test_format_remaining(self):
        assert format_remaining(4) == "4"
        assert format_remaining(2.0) == "2"
        assert format_remaining(0) == "0"


def build_app(limiter, **kwargs):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter, **kwargs)

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


class TestRateLimitMiddleware:

    @pytest.fixture
    def manager(self, fake_redis, clock):
        return LimiterManager(
            LeakyBucket(fake_redis, capacity=2, rate=0, clock=clock),
            TokenBucket(fake_redis, capacity=2, rate=0, clock=clock),
        )

    def test_allowed_request_gets_remaining_header(self, manager):
        client = TestClient(build_app(manager))

        response = client.get("/ping")
        assert response.status_code == 200
        assert response.json() == {"message": "pong"}
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_denied_request_returns_429(self, manager):
        client = TestClient(build_app(manager))
        client.get("/ping")
        client.get("/ping")

        response = client.get("/ping")
        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_store_failure_returns_503(self, manager, fake_redis):
        fake_redis.fail_with = RedisConnectionError("down")
        client = TestClient(build_app(manager))

        response = client.get("/ping")
        assert response.status_code == 503
        assert response.json()["error"] == "rate_limit_unavailable"
        assert "X-RateLimit-Remaining" not in response.headers

    def test_exempt_prefix_bypasses_limiter(self):
        limiter = Mock()
        limiter.allow = AsyncMock()
        client = TestClient(build_app(limiter, exempt_prefixes=["/health"]))

        response = client.get("/health")
        assert response.status_code == 200
        limiter.allow.assert_not_called()

    def test_custom_key_func(self):
        limiter = Mock()
        limiter.allow = AsyncMock(return_value=RateLimitResult(True, 9, 10, "token_bucket"))
        client = TestClient(build_app(limiter, key_func=lambda request: "fixed"))

        response = client.get("/ping")
        assert response.headers["X-RateLimit-Remaining"] == "9"
        limiter.allow.assert_awaited_once_with("fixed")

    def test_keys_are_limited_independently(self, manager):
        client = TestClient(build_app(manager, key_func=api_key_key()))
        for _ in range(2):
            client.get("/ping", headers={"X-API-Key": "a"})

        assert client.get("/ping", headers={"X-API-Key": "a"}).status_code == 429
        assert client.get("/ping", headers={"X-API-Key": "b"}).status_code == 200

    def test_custom_denied_handler(self):
        limiter = Mock()
        limiter.allow = AsyncMock(return_value=RateLimitResult(False, 0, 10, "leaky_bucket"))
        app = build_app(
            limiter,
            denied_handler=lambda request, remaining: PlainTextResponse("slow down", status_code=429),
        )

        response = TestClient(app).get("/ping")
        assert response.status_code == 429
        assert response.text == "slow down"

    def test_limiter_error_maps_to_its_status_code(self):
        limiter = Mock()
        limiter.allow = AsyncMock(side_effect=StoreUnavailableError("read", "k"))
        response = TestClient(build_app(limiter)).get("/ping")
        assert response.status_code == 503

    def test_requires_limiter(self):
        with pytest.raises(ValueError):
            RateLimitMiddleware(FastAPI(), limiter=None)
