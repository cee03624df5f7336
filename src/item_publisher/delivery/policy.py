"""
Retry scheduling and circuit breaking for downstream batch delivery.

Both are plain state machines with no I/O: the coordinator asks them for
decisions and sleeps/calls on its own.
"""

from __future__ import annotations

import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Sized, Tuple

from loguru import logger

from ..metrics import CIRCUIT_STATE
from .events import CircuitEvent, CircuitEventBus, CircuitState

_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass(frozen=True)
class RetryPolicy:
    """Round-based retry with exponential backoff.

    `round_index` is the 0-based attempt that just failed. A retry is allowed while
    round_index < max_retries and something is still failing. Retry number n (1-based)
    waits base_delay_ms * backoff_multiplier ** (n - 1); the whole remaining set
    shares that single wait.
    """

    max_retries: int = 2
    base_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: Optional[int] = None
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    def should_retry(self, round_index: int, remaining: Sized) -> bool:
        return round_index < self.max_retries and len(remaining) > 0

    def next_backoff_ms(self, retry_number: int) -> int:
        """Delay before retry `retry_number` (1 = first retry)."""
        if retry_number < 1:
            raise ValueError("retry_number starts at 1")
        delay = self.base_delay_ms * (self.backoff_multiplier ** (retry_number - 1))
        if self.max_backoff_ms is not None:
            delay = min(delay, self.max_backoff_ms)
        if self.jitter:
            # 50-100% of the computed delay
            delay = delay * (0.5 + random.random() * 0.5)
        return int(delay)


@dataclass(frozen=True)
class CircuitPermit:
    """Admission handed out by `CircuitBreaker.try_acquire`.

    `generation` identifies the breaker state the call was admitted under;
    `probe` marks the single half-open trial call.
    """

    generation: int
    probe: bool = False


@dataclass(frozen=True)
class CircuitSnapshot:
    name: str
    state: CircuitState
    samples: int
    failures: int
    failure_ratio: float
    open_remaining_sec: float


class CircuitBreaker:
    """Failure-ratio circuit breaker with a rolling time window.

    Closed -> Open when, within the sampling window, at least `minimum_throughput`
    outcomes were recorded and the failure ratio is >= `failure_ratio`.
    Open -> Half-Open once `break_duration_sec` has elapsed (evaluated lazily on
    the next access). Half-Open admits exactly one probe; its outcome closes or
    re-opens the circuit.
    Every admission is a CircuitPermit bound to the state it was granted in;
    outcomes of calls that outlive a transition are dropped.

    State is guarded by a threading lock so one instance can be shared by
    overlapping publish calls, whether they run as tasks or in threads.
    """

    def __init__(
        self,
        *,
        failure_ratio: float = 0.5,
        minimum_throughput: int = 3,
        sampling_duration_sec: float = 60.0,
        break_duration_sec: float = 30.0,
        name: str = "sqs",
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0.0 < failure_ratio <= 1.0:
            raise ValueError("failure_ratio must be in (0, 1]")
        if minimum_throughput < 1:
            raise ValueError("minimum_throughput must be >= 1")
        if sampling_duration_sec <= 0 or break_duration_sec < 0:
            raise ValueError("sampling/break durations must be positive")

        self.name = name
        self.failure_ratio = failure_ratio
        self.minimum_throughput = minimum_throughput
        self.sampling_duration_sec = sampling_duration_sec
        self.break_duration_sec = break_duration_sec
        self.events = CircuitEventBus()

        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._window: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._generation = 0

        CIRCUIT_STATE.labels(breaker=name).set(_STATE_GAUGE_VALUE[self._state])

    # --------------------------- public API

    @property
    def state(self) -> CircuitState:
        with self._lock:
            event = self._maybe_half_open(self._clock())
            state = self._state
        self._emit(event)
        return state

    def try_acquire(self) -> Optional[CircuitPermit]:
        """Return a permit if a call may proceed now, else None.

        The permit must be handed back to `record_outcome` or `release`; outcomes
        carrying a permit from an earlier state are ignored.
        """
        with self._lock:
            event = self._maybe_half_open(self._clock())
            if self._state is CircuitState.CLOSED:
                permit = CircuitPermit(generation=self._generation)
            elif self._state is CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                permit = CircuitPermit(generation=self._generation, probe=True)
            else:
                permit = None
        self._emit(event)
        return permit

    def record_outcome(self, success: bool, permit: Optional[CircuitPermit] = None) -> None:
        """Feed the outcome of an admitted call into the breaker.

        Without a permit the outcome is sampled only while closed.
        """
        with self._lock:
            now = self._clock()
            event: Optional[CircuitEvent] = None

            if permit is not None and permit.generation != self._generation:
                logger.debug(f"Circuit breaker '{self.name}' ignored a stale outcome")

            elif self._state is CircuitState.HALF_OPEN:
                if permit is None or not permit.probe:
                    return
                self._probe_in_flight = False
                if success:
                    self._window.clear()
                    event = self._transition(CircuitState.CLOSED, now, reason="probe_succeeded")
                else:
                    event = self._transition(CircuitState.OPEN, now, reason="probe_failed")

            elif self._state is CircuitState.CLOSED:
                self._window.append((now, success))
                self._prune(now)
                samples, failures = self._counts()
                if samples >= self.minimum_throughput and failures / samples >= self.failure_ratio:
                    event = self._transition(
                        CircuitState.OPEN, now, reason="failure_ratio_exceeded"
                    )
            # OPEN: nothing to sample until the break elapses.

        self._emit(event)

    def release(self, permit: Optional[CircuitPermit]) -> None:
        """Give back a half-open probe slot whose call never completed."""
        if permit is None or not permit.probe:
            return
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and permit.generation == self._generation:
                self._probe_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            now = self._clock()
            event = self._maybe_half_open(now)
            self._prune(now)
            samples, failures = self._counts()
            remaining = 0.0
            if self._state is CircuitState.OPEN and self._opened_at is not None:
                remaining = max(0.0, self._opened_at + self.break_duration_sec - now)
            snap = CircuitSnapshot(
                name=self.name,
                state=self._state,
                samples=samples,
                failures=failures,
                failure_ratio=(failures / samples) if samples else 0.0,
                open_remaining_sec=remaining,
            )
        self._emit(event)
        return snap

    # --------------------------- internals (call with lock held)

    def _maybe_half_open(self, now: float) -> Optional[CircuitEvent]:
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.break_duration_sec
        ):
            self._probe_in_flight = False
            return self._transition(CircuitState.HALF_OPEN, now, reason="break_elapsed")
        return None

    def _prune(self, now: float) -> None:
        horizon = now - self.sampling_duration_sec
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _counts(self) -> Tuple[int, int]:
        samples = len(self._window)
        failures = sum(1 for _, ok in self._window if not ok)
        return samples, failures

    def _transition(self, new: CircuitState, now: float, reason: str) -> CircuitEvent:
        samples, failures = self._counts()
        previous = self._state
        self._state = new
        self._generation += 1
        if new is CircuitState.OPEN:
            self._opened_at = now
            self._window.clear()
        elif new is CircuitState.CLOSED:
            self._opened_at = None
        return CircuitEvent(
            breaker=self.name,
            previous=previous,
            current=new,
            failure_ratio=(failures / samples) if samples else 0.0,
            reason=reason,
        )

    # --------------------------- notifications (call without lock)

    def _emit(self, event: Optional[CircuitEvent]) -> None:
        if event is None:
            return
        CIRCUIT_STATE.labels(breaker=self.name).set(_STATE_GAUGE_VALUE[event.current])
        if event.current is CircuitState.OPEN:
            logger.error(
                f"Circuit breaker '{self.name}' opened ({event.reason}). "
                f"Will remain open for {self.break_duration_sec}s"
            )
        elif event.current is CircuitState.HALF_OPEN:
            logger.info(
                f"Circuit breaker '{self.name}' half-opened. Testing if service is healthy."
            )
        else:
            logger.info(f"Circuit breaker '{self.name}' closed. Normal operations resumed.")
        self.events.publish(event)
