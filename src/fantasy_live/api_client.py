from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .errors import HttpError, NetworkError, PayloadError, RequestTimeout
from .logging_utils import log_json
from .reliability import DailyQuota

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 15
    max_concurrency: int = 2
    rate_limit_per_sec: float = 5
    min_interval_seconds: Optional[float] = None
    retry: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    daily_quota: Optional[int] = None
    quota_warning_ratio: float = 0.7
    max_requests_per_minute: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ApiConfig":
        known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class RateLimiter:
    def __init__(self, rate_per_sec: float) -> None:
        self.rate_per_sec = rate_per_sec
        self._lock = asyncio.Lock()
        self._capacity = max(1, int(rate_per_sec))
        self._tokens = float(self._capacity)
        self._last = time.monotonic()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last
                self._tokens = min(self._capacity, self._tokens + elapsed * self.rate_per_sec)
                self._last = now
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
            # Sleep outside the lock so other coroutines can proceed
            await asyncio.sleep(max(0.01, 1 / self.rate_per_sec))


class SerialLimiter:
    """Single-slot queue: callers are released one at a time, at least
    ``min_interval`` seconds apart."""

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None:
                wait = self.min_interval - (time.monotonic() - self._last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last = time.monotonic()


class RequestMetrics:
    """Request counters bucketed by wall-clock minute.

    One instance may be shared by several clients to report a combined
    "requests this minute" figure.
    """

    def __init__(self) -> None:
        self.total = 0
        self.successful = 0
        self.failed = 0
        self.last_request_at: Optional[datetime] = None
        self._minute_buckets: Dict[int, int] = {}

    def record_start(self, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        bucket = int(now // 60)
        self.total += 1
        self.last_request_at = datetime.fromtimestamp(now, tz=timezone.utc)
        self._minute_buckets[bucket] = self._minute_buckets.get(bucket, 0) + 1
        for key in [k for k in self._minute_buckets if k < bucket - 60]:
            del self._minute_buckets[key]

    def record_success(self) -> None:
        self.successful += 1

    def record_failure(self) -> None:
        self.failed += 1

    def requests_this_minute(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return self._minute_buckets.get(int(now // 60), 0)

    @property
    def success_rate(self) -> Optional[float]:
        finished = self.successful + self.failed
        if not finished:
            return None
        return round(self.successful / finished, 3)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total,
            "successful_requests": self.successful,
            "failed_requests": self.failed,
            "success_rate": self.success_rate,
            "requests_this_minute": self.requests_this_minute(),
            "last_request_at": self.last_request_at.isoformat() if self.last_request_at else None,
        }


class ApiClient:
    def __init__(
        self,
        name: str,
        cfg: ApiConfig,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        quota: Optional[DailyQuota] = None,
        metrics: Optional[RequestMetrics] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name
        self.cfg = cfg
        self.quota = quota or DailyQuota(name, cfg.daily_quota, cfg.quota_warning_ratio)
        self.metrics = metrics or RequestMetrics()
        self._semaphore = asyncio.Semaphore(cfg.max_concurrency)
        if cfg.min_interval_seconds:
            self._limiter = SerialLimiter(cfg.min_interval_seconds)
        else:
            self._limiter = RateLimiter(cfg.rate_limit_per_sec)
        all_headers = {"Accept": "application/json", **cfg.headers, **(headers or {})}
        if token:
            all_headers.setdefault("Authorization", f"Bearer {token}")
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            headers=all_headers,
            transport=transport,
        )
        self._logger = logger or logging.getLogger(__name__)

    async def close(self) -> None:
        await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        base_delay = self.cfg.retry.get("base_delay_seconds", 0.5)
        max_delay = self.cfg.retry.get("max_delay_seconds", 8)
        jitter = self.cfg.retry.get("jitter", 0.25)
        delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay * jitter)

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        attempt = 0
        max_attempts = self.cfg.retry.get("max_attempts", 3)
        max_delay = self.cfg.retry.get("max_delay_seconds", 8)
        rate_limit_multiplier = self.cfg.retry.get("rate_limit_multiplier", 4)
        params = params or {}
        while True:
            attempt += 1
            async with self._semaphore:
                await self._limiter.acquire()
                # raises QuotaExceeded before any network traffic
                self.quota.consume()
                self.metrics.record_start()
                log_json(
                    self._logger,
                    "http_request_start",
                    level=logging.DEBUG,
                    provider=self.name,
                    path=path,
                    attempt=attempt,
                    params=params,
                )
                try:
                    resp = await self._client.get(path, params=params)
                except httpx.TimeoutException as exc:
                    self.metrics.record_failure()
                    log_json(self._logger, "http_timeout", level=logging.WARNING, provider=self.name, path=path, attempt=attempt)
                    if attempt >= max_attempts:
                        raise RequestTimeout(f"{self.name} timed out on {path}") from exc
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                except httpx.RequestError as exc:
                    self.metrics.record_failure()
                    log_json(
                        self._logger,
                        "http_error",
                        level=logging.WARNING,
                        provider=self.name,
                        path=path,
                        attempt=attempt,
                        error=str(exc),
                    )
                    if attempt >= max_attempts:
                        raise NetworkError(f"{self.name} transport failure on {path}: {exc}") from exc
                    await asyncio.sleep(self._backoff(attempt))
                    continue
            if 200 <= resp.status_code < 300:
                try:
                    payload = resp.json()
                except ValueError as exc:
                    self.metrics.record_failure()
                    log_json(self._logger, "http_bad_payload", level=logging.WARNING, provider=self.name, path=path)
                    raise PayloadError(f"{self.name} returned a non-JSON body for {path}") from exc
                self.metrics.record_success()
                return payload
            self.metrics.record_failure()
            retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
            if resp.status_code in RETRYABLE_STATUS:
                if attempt >= max_attempts:
                    raise HttpError(resp.status_code, path, retry_after=retry_after)
                if resp.status_code == 429 and retry_after is not None:
                    delay = min(max_delay, retry_after)
                elif resp.status_code == 429:
                    delay = min(max_delay, self._backoff(attempt) * rate_limit_multiplier)
                else:
                    delay = self._backoff(attempt)
                log_json(
                    self._logger,
                    "http_retry",
                    provider=self.name,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                continue
            raise HttpError(resp.status_code, path, retry_after=retry_after)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
