"""Tests for the async API client using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from fantasy_live.api_client import ApiClient, ApiConfig, RateLimiter, RequestMetrics, SerialLimiter
from fantasy_live.errors import HttpError, NetworkError, PayloadError, QuotaExceeded, RequestTimeout
from fantasy_live.reliability import DailyQuota


def _make_api_config(**overrides) -> ApiConfig:
    """Create a minimal ApiConfig for testing."""
    defaults = {
        "base_url": "https://api.test.com",
        "timeout_seconds": 5,
        "max_concurrency": 3,
        "rate_limit_per_sec": 100,
        "retry": {
            "max_attempts": 3,
            "base_delay_seconds": 0.001,
            "max_delay_seconds": 0.01,
        },
    }
    defaults.update(overrides)
    return ApiConfig(**defaults)


def _client(handler, **overrides) -> ApiClient:
    return ApiClient("test", _make_api_config(**overrides), transport=httpx.MockTransport(handler))


class TestGetJsonSuccess:
    async def test_get_json_success(self):
        """Mock a 200 response, verify JSON returned."""
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            assert request.url.params["gameID"] == "20241013_KC@SF"
            return httpx.Response(200, json={"body": {"playByPlay": []}})

        client = _client(handler)
        try:
            result = await client.get_json("/getNFLBoxScore", params={"gameID": "20241013_KC@SF"})
            assert result == {"body": {"playByPlay": []}}
            assert call_count == 1
            assert client.metrics.successful == 1
            assert client.metrics.requests_this_minute() == 1
        finally:
            await client.close()

    async def test_headers_are_sent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json={})

        client = ApiClient(
            "tank01",
            _make_api_config(headers={"X-Static": "1"}),
            headers={"X-RapidAPI-Key": "secret"},
            transport=httpx.MockTransport(handler),
        )
        try:
            await client.get_json("/getNFLScoresOnly")
        finally:
            await client.close()
        assert seen["x-rapidapi-key"] == "secret"
        assert seen["x-static"] == "1"


class TestGetJsonRetries:
    async def test_retry_on_429(self):
        """Mock 429 then 200, verify retry succeeds."""
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt == 1:
                return httpx.Response(429, json={"error": "rate limited"})
            return httpx.Response(200, json={"data": "ok"})

        client = _client(handler)
        try:
            result = await client.get_json("/scoreboard")
            assert result == {"data": "ok"}
            assert attempt == 2
        finally:
            await client.close()

    async def test_retry_after_header_is_honoured(self):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt == 1:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={"data": "ok"})

        client = _client(handler)
        try:
            assert await client.get_json("/scoreboard") == {"data": "ok"}
        finally:
            await client.close()

    async def test_retry_on_500(self):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt == 1:
                return httpx.Response(500, json={"error": "server error"})
            return httpx.Response(200, json={"data": "recovered"})

        client = _client(handler)
        try:
            assert await client.get_json("/scoreboard") == {"data": "recovered"}
            assert attempt == 2
        finally:
            await client.close()

    async def test_timeout_retry(self):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt == 1:
                raise httpx.ReadTimeout("Connection timed out")
            return httpx.Response(200, json={"data": "after_timeout"})

        client = _client(handler)
        try:
            assert await client.get_json("/scoreboard") == {"data": "after_timeout"}
            assert attempt == 2
        finally:
            await client.close()

    async def test_client_error_is_not_retried(self):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            return httpx.Response(404, json={"error": "missing"})

        client = _client(handler)
        try:
            with pytest.raises(HttpError) as excinfo:
                await client.get_json("/summary")
            assert excinfo.value.status == 404
            assert attempt == 1
        finally:
            await client.close()


class TestGetJsonExhausted:
    async def test_server_errors_raise_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "always failing"})

        client = _client(handler)
        try:
            with pytest.raises(HttpError) as excinfo:
                await client.get_json("/scoreboard")
            assert excinfo.value.status == 500
            assert client.metrics.failed == 3
        finally:
            await client.close()

    async def test_timeouts_raise_request_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow")

        client = _client(handler)
        try:
            with pytest.raises(RequestTimeout):
                await client.get_json("/scoreboard")
        finally:
            await client.close()

    async def test_transport_failure_raises_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        client = _client(handler)
        try:
            with pytest.raises(NetworkError):
                await client.get_json("/scoreboard")
        finally:
            await client.close()

    async def test_non_json_body_raises_payload_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>upstream error</html>")

        client = _client(handler)
        try:
            with pytest.raises(PayloadError):
                await client.get_json("/scoreboard")
            assert client.metrics.successful == 0
            assert client.metrics.failed == 1
        finally:
            await client.close()


class TestQuota:
    async def test_exhausted_quota_makes_no_request(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={})

        client = _client(handler, daily_quota=2)
        try:
            await client.get_json("/a")
            await client.get_json("/b")
            with pytest.raises(QuotaExceeded):
                await client.get_json("/c")
            assert calls == 2
            assert client.quota.snapshot()["used"] == 2
        finally:
            await client.close()

    async def test_shared_quota_object(self):
        quota = DailyQuota("shared", limit=1)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        client = ApiClient("test", _make_api_config(), quota=quota, transport=httpx.MockTransport(handler))
        try:
            await client.get_json("/a")
            assert quota.exhausted
        finally:
            await client.close()


class TestRateLimiter:
    async def test_rate_limiter_acquire(self):
        limiter = RateLimiter(rate_per_sec=100)
        for _ in range(3):
            await limiter.acquire()
        assert limiter._tokens < 100

    async def test_rate_limiter_initial_tokens(self):
        limiter = RateLimiter(rate_per_sec=50)
        assert limiter._tokens == 50


class TestSerialLimiter:
    async def test_enforces_minimum_gap(self):
        limiter = SerialLimiter(min_interval=0.05)
        started = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(3)))
        assert time.monotonic() - started >= 0.09

    async def test_client_uses_serial_limiter_when_configured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        client = _client(handler, min_interval_seconds=0.01)
        try:
            assert isinstance(client._limiter, SerialLimiter)
        finally:
            await client.close()


class TestRequestMetrics:
    def test_minute_buckets(self):
        metrics = RequestMetrics()
        metrics.record_start(now=120.0)
        metrics.record_start(now=150.0)
        metrics.record_start(now=185.0)
        assert metrics.requests_this_minute(now=170.0) == 2
        assert metrics.requests_this_minute(now=185.0) == 1
        assert metrics.total == 3

    def test_success_rate(self):
        metrics = RequestMetrics()
        assert metrics.success_rate is None
        metrics.record_success()
        metrics.record_failure()
        assert metrics.success_rate == 0.5
