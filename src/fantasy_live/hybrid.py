from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from .logging_utils import log_json
from .models import NormalizedScoringEvent
from .providers.base import ProviderPoller
from .pubsub import Subscribers


class HybridCoordinator:
    """Runs a primary and a backup poller side by side.

    Both pollers keep polling so the backup is warm; only the events of the
    currently selected source are forwarded to subscribers.
    """

    def __init__(
        self,
        primary: ProviderPoller,
        backup: ProviderPoller,
        primary_live_events: bool = True,
        backup_interval_factor: float = 1.4,
        restart_delay_seconds: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.primary = primary
        self.backup = backup
        self.primary_live_events = primary_live_events
        self.backup_interval_factor = backup_interval_factor
        self.restart_delay_seconds = restart_delay_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._subscribers: Subscribers[NormalizedScoringEvent] = Subscribers("hybrid.scoring", self._logger)
        self.forwarded = 0
        self.suppressed = 0
        primary.on_scoring_event(self._forwarder(primary))
        backup.on_scoring_event(self._forwarder(backup))
        self.set_interval_provider(None)

    @property
    def active(self) -> ProviderPoller:
        return self.primary if self.primary_live_events else self.backup

    @property
    def is_polling(self) -> bool:
        return self.primary.is_polling or self.backup.is_polling

    def set_interval_provider(self, interval_provider: Optional[Callable[[], float]]) -> None:
        if interval_provider is None:
            self.primary.interval_provider = None
            base = self.primary.current_interval
        else:
            self.primary.interval_provider = interval_provider
            base = interval_provider
        self.backup.interval_provider = lambda: base() * self.backup_interval_factor

    def on_scoring_event(self, callback: Callable[[NormalizedScoringEvent], Any]) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    def start_polling(self, interval_seconds: Optional[float] = None) -> bool:
        if interval_seconds is not None:
            self.primary.interval_seconds = interval_seconds
        started_primary = self.primary.start_polling()
        started_backup = self.backup.start_polling()
        log_json(
            self._logger,
            "hybrid_started",
            primary=self.primary.provider,
            backup=self.backup.provider,
            active=self.active.provider,
        )
        return started_primary or started_backup

    def stop_polling(self) -> None:
        self.primary.stop_polling()
        self.backup.stop_polling()
        log_json(self._logger, "hybrid_stopped")

    async def enable_primary_live_events(self) -> None:
        await self._switch(True)

    async def disable_primary_live_events(self) -> None:
        await self._switch(False)

    async def manual_poll(self) -> Dict[str, Dict[str, Any]]:
        pollers = (self.primary, self.backup)
        results = await asyncio.gather(*(p.manual_poll() for p in pollers), return_exceptions=True)
        report: Dict[str, Dict[str, Any]] = {}
        for poller, result in zip(pollers, results):
            if isinstance(result, BaseException):
                log_json(
                    self._logger,
                    "manual_poll_failed",
                    level=logging.WARNING,
                    provider=poller.provider,
                    error=str(result),
                )
                report[poller.provider] = {"success": False, "events": 0, "error": str(result)}
            else:
                failed = poller.last_skip_reason is not None or poller.last_cycle_failures > 0
                report[poller.provider] = {
                    "success": not failed,
                    "events": len(result),
                    "error": (poller.last_skip_reason or poller.last_error) if failed else None,
                }
        return report

    def emergency_stop(self) -> None:
        self.primary.emergency_stop()
        self.backup.emergency_stop()

    def reset_emergency_stop(self) -> None:
        self.primary.reset_emergency_stop()
        self.backup.reset_emergency_stop()

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "primary_live_events": self.primary_live_events,
            "active_provider": self.active.provider,
            "is_polling": self.is_polling,
            "forwarded_events": self.forwarded,
            "suppressed_events": self.suppressed,
            "primary": self.primary.get_service_status(),
            "backup": self.backup.get_service_status(),
        }

    async def _switch(self, primary_live_events: bool) -> None:
        if self.primary_live_events == primary_live_events:
            return
        was_polling = self.is_polling
        self.primary_live_events = primary_live_events
        log_json(self._logger, "hybrid_source_switched", active=self.active.provider, restart=was_polling)
        if not was_polling:
            return
        self.stop_polling()
        await asyncio.sleep(self.restart_delay_seconds)
        self.start_polling()

    def _forwarder(self, poller: ProviderPoller) -> Callable[[NormalizedScoringEvent], Any]:
        async def _forward(event: NormalizedScoringEvent) -> None:
            if poller is not self.active:
                self.suppressed += 1
                return
            self.forwarded += 1
            await self._subscribers.publish(event)

        _forward.__name__ = f"forward_{poller.provider}"
        return _forward
