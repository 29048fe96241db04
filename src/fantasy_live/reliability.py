"""Circuit breaker and daily quota tracking shared by the provider pollers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .errors import QuotaExceeded
from .logging_utils import log_json

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass
class CircuitConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 120.0
    rate_limited_cooldown_seconds: float = 3600.0


class CircuitBreaker:
    """Counts consecutive failures and rejects calls while open.

    The circuit closes itself once ``cooldown_seconds`` have passed since it
    opened, or immediately on ``reset()``.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._opened_at_wall: Optional[datetime] = None
        self._cooldown = self.config.cooldown_seconds

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self._cooldown:
                log_json(logger, "circuit_cooldown_elapsed", provider=self.name)
                self.reset()
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def record_success(self) -> None:
        if self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._open(self.config.cooldown_seconds, reason="failure_threshold")

    def trip(self, cooldown_seconds: Optional[float] = None, reason: str = "manual") -> None:
        self._open(cooldown_seconds or self.config.rate_limited_cooldown_seconds, reason=reason)

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._opened_at_wall = None
        self._cooldown = self.config.cooldown_seconds

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        retry_at = None
        if state == CircuitState.OPEN and self._opened_at_wall is not None:
            retry_at = (self._opened_at_wall + timedelta(seconds=self._cooldown)).isoformat()
        return {
            "state": state.value,
            "is_open": state == CircuitState.OPEN,
            "failure_count": self._failure_count,
            "opened_at": self._opened_at_wall.isoformat() if self._opened_at_wall else None,
            "retry_at": retry_at,
        }

    def _open(self, cooldown: float, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._opened_at_wall = datetime.now(timezone.utc)
        self._cooldown = cooldown
        log_json(
            logger,
            "circuit_opened",
            level=logging.WARNING,
            provider=self.name,
            failure_count=self._failure_count,
            cooldown_seconds=cooldown,
            reason=reason,
        )


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class DailyQuota:
    """Requests-per-UTC-day budget for one provider.

    ``limit=None`` means the provider is unmetered; usage is still counted.
    """

    def __init__(
        self,
        name: str,
        limit: Optional[int] = None,
        warning_ratio: float = 0.7,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.name = name
        self.limit = limit
        self.warning_ratio = warning_ratio
        self._today = today
        self._date = today()
        self._used = 0
        self._warned = False

    @property
    def used(self) -> int:
        self._roll()
        return self._used

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def consume(self, count: int = 1) -> None:
        self._roll()
        if self.limit is not None and self._used + count > self.limit:
            raise QuotaExceeded(f"{self.name} daily quota of {self.limit} requests exhausted")
        self._used += count
        if self.limit and not self._warned and self._used >= self.limit * self.warning_ratio:
            self._warned = True
            log_json(
                logger,
                "quota_warning",
                level=logging.WARNING,
                provider=self.name,
                used=self._used,
                limit=self.limit,
            )

    def reset(self) -> None:
        self._date = self._today()
        self._used = 0
        self._warned = False
        log_json(logger, "quota_reset", provider=self.name, date=self._date)

    def snapshot(self) -> Dict[str, Any]:
        used = self.used
        percent = round(100.0 * used / self.limit, 1) if self.limit else None
        return {
            "date": self._date.isoformat(),
            "used": used,
            "limit": self.limit,
            "remaining": self.remaining,
            "percent_used": percent,
            "exceeded": self.exhausted,
        }

    def _roll(self) -> None:
        today = self._today()
        if today != self._date:
            log_json(logger, "quota_day_rollover", provider=self.name, previous_date=self._date, previous_used=self._used)
            self._date = today
            self._used = 0
            self._warned = False
