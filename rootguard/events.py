"""Observer registry for configuration change events."""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

ConfigurationObserver = Callable[[Any], Any]


@dataclass(frozen=True)
class Subscription:
    """Handle returned on registration. Holds no provider state."""

    registry: "ObserverRegistry"
    callback: ConfigurationObserver

    def cancel(self) -> None:
        self.registry.unsubscribe(self.callback)


class ObserverRegistry:
    """Ordered, idempotent set of callbacks with isolated dispatch."""

    _subscribers: list[ConfigurationObserver]

    def __init__(self) -> None:
        self._subscribers = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, callback: object) -> bool:
        return callback in self._subscribers

    def subscribe(self, callback: ConfigurationObserver) -> Subscription:
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return Subscription(self, callback)

    def unsubscribe(self, callback: ConfigurationObserver) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def publish(self, event: Any) -> int:
        """Deliver ``event`` to every subscriber in registration order.

        A failing subscriber is logged and skipped. Returns the number of
        subscribers that handled the event without raising.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                delivered += 1
            except Exception:
                logger.error(
                    "Configuration observer %r failed on %s",
                    callback,
                    type(event).__name__,
                    exc_info=True,
                )
        return delivered
