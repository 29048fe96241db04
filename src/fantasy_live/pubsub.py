from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Generic, List, Optional, TypeVar

from .logging_utils import log_json

T = TypeVar("T")

Callback = Callable[[T], Any]


class Subscribers(Generic[T]):
    """Ordered list of callbacks, each invoked inside its own error boundary.

    Callbacks may be plain functions or coroutine functions.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None) -> None:
        self.name = name
        self._callbacks: List[Callback] = []
        self._logger = logger or logging.getLogger(__name__)

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._callbacks)

    async def publish(self, item: T) -> int:
        delivered = 0
        for callback in list(self._callbacks):
            try:
                result = callback(item)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as exc:
                log_json(
                    self._logger,
                    "subscriber_error",
                    level=logging.ERROR,
                    exc_info=True,
                    channel=self.name,
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(exc),
                )
        return delivered
