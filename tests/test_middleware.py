"""
Quillnest Backend — Middleware Tests
======================================

What:  Request IDs, the access log, the two-bucket rate limiter and the
       health endpoint.
"""

import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quillnest.main import create_app
from quillnest.middleware.logging import SLOW_REQUEST_MS, level_for
from quillnest.middleware.rate_limit import AUTH, GENERAL, RateLimitMiddleware, bucket_for
from quillnest.middleware.request_id import accept_client_id


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRequestID:

    @pytest.mark.asyncio
    async def test_generated_when_absent(self, client):
        response = await client.get("/health")
        rid = response.headers["X-Request-ID"]
        assert len(rid) == 8
        int(rid, 16)

    @pytest.mark.asyncio
    async def test_client_value_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "trace-abc-123"})
        assert response.headers["X-Request-ID"] == "trace-abc-123"

    @pytest.mark.asyncio
    async def test_overlong_client_value_is_replaced(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "x" * 65})
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.parametrize(
        "value, accepted",
        [
            ("gw:7f3a.01_b-2", True),
            ("x" * 64, True),
            ("x" * 65, False),
            ("", False),
            (None, False),
            ("two words", False),
            ("id\nforged log line", False),
        ],
    )
    def test_accept_client_id(self, value, accepted):
        expected = value if accepted else None
        assert accept_client_id(value) == expected

    @pytest.mark.asyncio
    async def test_unsafe_client_value_is_replaced(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "a;b<c>"})
        assert response.headers["X-Request-ID"] != "a;b<c>"
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_error_body_carries_the_same_id(self, client):
        response = await client.get("/api/v1/get-users", headers={"X-Request-ID": "req-42"})
        assert response.status_code == 401
        assert response.json()["request_id"] == "req-42"


def _access_records(caplog):
    return [r for r in caplog.records if r.name == "quillnest.access"]


class TestAccessLog:

    @pytest.mark.parametrize(
        "status, duration_ms, level",
        [
            (200, 5.0, logging.INFO),
            (201, SLOW_REQUEST_MS, logging.WARNING),
            (404, 5.0, logging.WARNING),
            (503, 5.0, logging.ERROR),
        ],
    )
    def test_level_for(self, status, duration_ms, level):
        assert level_for(status, duration_ms) == level

    @pytest.mark.asyncio
    async def test_authenticated_caller_is_logged(self, client, create_user, caplog):
        account = await create_user("ada")
        caplog.set_level(logging.INFO, logger="quillnest.access")

        await client.get("/api/v1/get-users", headers=account.headers)

        line = _access_records(caplog)[-1]
        assert line.user_id == account.id
        assert f"user={account.id}" in line.getMessage()

    @pytest.mark.asyncio
    async def test_anonymous_request_and_no_secrets(self, client, caplog):
        caplog.set_level(logging.INFO, logger="quillnest.access")

        await client.post("/api/v1/login", json={"email": "a@x.com", "password": "hunter2hunter2"})

        record = _access_records(caplog)[-1]
        assert record.user_id == "-"
        assert record.levelno == logging.WARNING
        assert "hunter2" not in caplog.text

    @pytest.mark.asyncio
    async def test_health_checks_are_not_logged(self, client, caplog):
        caplog.set_level(logging.INFO, logger="quillnest.access")
        await client.get("/health")
        assert not _access_records(caplog)


class TestRateLimitBuckets:

    @pytest.mark.parametrize(
        "path, bucket",
        [
            ("/api/v1/signup", AUTH),
            ("/api/v1/login", AUTH),
            ("/api/v1/verify/abc/def", AUTH),
            ("/api/v1/forgot-password", AUTH),
            ("/api/v1/reset-password", AUTH),
            ("/api/v1/signout", GENERAL),
            ("/api/v1/post/get-posts", GENERAL),
            ("/api/v1/get-users", GENERAL),
        ],
    )
    def test_bucket_for(self, path, bucket):
        assert bucket_for(path) == bucket


class TestRateLimiting:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest_asyncio.fixture
    async def limited_client(self, test_settings, database, media_service, mail_service, clock):
        settings = test_settings.model_copy(update={
            "auth_rate_limit_requests": 2,
            "auth_rate_limit_window": 60,
            "rate_limit_requests": 3,
            "rate_limit_window": 60,
        })
        app = create_app(
            settings=settings,
            database=database,
            media_service=media_service,
            mail_service=mail_service,
        )
        # The middleware stack is built on the first request, so the
        # limiter's constructor arguments can still be changed here
        for middleware in app.user_middleware:
            if middleware.cls is RateLimitMiddleware:
                middleware.kwargs["clock"] = clock

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async def _login(self, client):
        return await client.post("/api/v1/login", json={"email": "nobody@x.com", "password": "whatever1"})

    @pytest.mark.asyncio
    async def test_auth_bucket_limit(self, limited_client):
        assert (await self._login(limited_client)).status_code == 400
        assert (await self._login(limited_client)).status_code == 400

        blocked = await self._login(limited_client)

        assert blocked.status_code == 429
        assert blocked.json()["error"] == "rate_limit_exceeded"
        assert blocked.json()["details"]["bucket"] == AUTH
        assert 1 <= int(blocked.headers["Retry-After"]) <= 61

    @pytest.mark.asyncio
    async def test_buckets_are_independent(self, limited_client):
        await self._login(limited_client)
        await self._login(limited_client)
        assert (await self._login(limited_client)).status_code == 429

        feed = await limited_client.get("/api/v1/post/get-posts")
        assert feed.status_code == 200

    @pytest.mark.asyncio
    async def test_window_slides(self, limited_client, clock):
        await self._login(limited_client)
        await self._login(limited_client)
        assert (await self._login(limited_client)).status_code == 429

        clock.now += 61

        assert (await self._login(limited_client)).status_code == 400

    @pytest.mark.asyncio
    async def test_health_is_never_limited(self, limited_client):
        for _ in range(10):
            assert (await limited_client.get("/health")).status_code == 200


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["media"] == "available"
        assert body["circuits"] == {"media": "closed", "mail": "closed"}

    @pytest.mark.asyncio
    async def test_media_down_is_degraded(self, client, media_service):
        async def unhealthy():
            return False

        media_service.health_check = unhealthy

        body = (await client.get("/health")).json()

        assert body["status"] == "degraded"
        assert body["media"] == "unavailable"
