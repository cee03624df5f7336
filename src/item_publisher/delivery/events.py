"""
Circuit breaker state-change notifications.

Each CircuitBreaker owns a CircuitEventBus. Subscribers (alerting hooks, health
endpoints, tests) are notified synchronously after every transition, outside the
breaker's lock.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # calls pass through, outcomes sampled
    OPEN = "open"  # calls rejected until the break duration elapses
    HALF_OPEN = "half_open"  # one probe call allowed through


@dataclass(frozen=True)
class CircuitEvent:
    """Immutable breaker transition event.

    Attributes:
        breaker: Name of the breaker (e.g. "sqs")
        previous: State before the transition
        current: State after the transition
        failure_ratio: Failure ratio of the sampling window when the event fired
        reason: Optional context (e.g. "failure_ratio_exceeded", "probe_failed")
    """

    breaker: str
    previous: CircuitState
    current: CircuitState
    failure_ratio: float = 0.0
    reason: Optional[str] = None

    @property
    def opened(self) -> bool:
        return self.current is CircuitState.OPEN


class CircuitSubscriber(Protocol):
    """Callable accepting CircuitEvent. Exceptions are caught and logged."""

    def __call__(self, event: CircuitEvent) -> None: ...


class CircuitEventBus:
    """In-process pub/sub for breaker transitions.

    One subscriber's failure does not affect others. Best-effort delivery.

    Example:
        breaker = CircuitBreaker(name="sqs")

        def page_oncall(event: CircuitEvent):
            if event.opened:
                alerts.fire(f"{event.breaker} circuit opened")

        breaker.events.subscribe(page_oncall)
    """

    def __init__(self) -> None:
        self._subs: list[CircuitSubscriber] = []

    def subscribe(self, callback: CircuitSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Circuit subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: CircuitSubscriber) -> None:
        """Remove a subscriber. No-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Circuit subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    def publish(self, event: CircuitEvent) -> None:
        if not self._subs:
            return

        # Iterate over copy to allow unsubscribe during iteration
        for callback in list(self._subs):
            try:
                callback(event)
            except Exception as exc:
                logger.debug(f"Circuit subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
