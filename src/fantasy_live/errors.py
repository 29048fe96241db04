from __future__ import annotations

from typing import Optional


class FeedError(Exception):
    """Base class for every error raised by the live-event pipeline."""


class ConfigError(FeedError, RuntimeError):
    pass


class NetworkError(FeedError):
    pass


class RequestTimeout(FeedError):
    pass


class HttpError(FeedError):
    def __init__(self, status: int, path: str = "", retry_after: Optional[float] = None) -> None:
        super().__init__(f"HTTP {status} for {path}")
        self.status = status
        self.path = path
        self.retry_after = retry_after


class QuotaExceeded(FeedError):
    pass


class MappingUnresolved(FeedError):
    pass


class AttributionSkipped(FeedError):
    pass


class PayloadError(FeedError):
    """A 2xx response whose body is not the JSON the caller expects."""
