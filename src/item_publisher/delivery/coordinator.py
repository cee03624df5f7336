"""
Publish coordinator: partition -> breaker-gated attempts -> partial retry -> audit.

Groups are processed strictly one after another, and rounds within a group
depend on the previous round's outcome. The only suspension points are the
transport call and the backoff sleep; both honour the caller's cancellation
event.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from typing import Awaitable, Iterable, Optional, Sequence, Tuple, TypeVar

from loguru import logger

from ..audit.store import AuditStore
from ..config import MAX_GROUP_SIZE, PublisherSettings
from ..errors import PublishCancelledError
from ..metrics import (
    AUDIT_APPEND_FAILURES_TOTAL,
    MESSAGES_PUBLISHED_TOTAL,
    PUBLISH_LATENCY_SECONDS,
    RETRY_ROUNDS_TOTAL,
)
from ..models import RequestSource
from .executor import DeliveryAttemptExecutor
from .partition import partition
from .policy import CircuitBreaker, CircuitSnapshot, RetryPolicy
from .types import EntryFailure, MessageEntry, Transport

T = TypeVar("T")

CANCELLED_CODE = "CANCELLED"
CANCELLED_MESSAGE = "Publish cancelled"
UNEXPECTED_ERROR_CODE = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class PublishResult:
    """Aggregate outcome of one publish call. Never mutated after return."""

    total: int
    succeeded: Tuple[MessageEntry, ...] = ()
    failures: Tuple[EntryFailure, ...] = ()
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def successful_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def succeeded_ids(self) -> list[str]:
        return [e.id for e in self.succeeded]

    @property
    def succeeded_keys(self) -> list[str]:
        """Logical keys of delivered entries, de-duplicated, in delivery order."""
        return list(dict.fromkeys(e.key for e in self.succeeded if e.key is not None))

    @property
    def error_message(self) -> Optional[str]:
        if self.success:
            return None
        return f"Failed to publish {self.failed_count} out of {self.total} items"


@dataclass(frozen=True)
class PublisherHealth:
    queue: str
    circuit_state: str
    breaker: CircuitSnapshot


@dataclass
class _GroupReport:
    index: int
    remaining: list[MessageEntry]
    succeeded: list[MessageEntry] = field(default_factory=list)
    failures: list[EntryFailure] = field(default_factory=list)

    def fail(self, failures: Sequence[EntryFailure]) -> None:
        self.failures.extend(failures)
        self.remaining = []

    def fail_remaining(self, code: str, message: str) -> None:
        self.fail([EntryFailure(e, code, message) for e in self.remaining])


class PublishCoordinator:
    """Delivers message entries in fixed-size groups with partial retry.

    The circuit breaker is owned by the coordinator instance (or injected) and
    outlives individual publish calls; everything else is per call.

    Example:
        coordinator = PublishCoordinator(
            SqsTransport(queue_url),
            PostgresAuditStore(dsn),
            retry_policy=RetryPolicy(max_retries=2, base_delay_ms=1000),
        )
        result = await coordinator.publish(entries, trace_id="abc123")
        if not result.success:
            logger.error(result.error_message)
    """

    def __init__(
        self,
        transport: Transport,
        audit_store: AuditStore,
        *,
        breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        group_size: int = MAX_GROUP_SIZE,
        operation: str = "PUBLISH_ITEMS",
        request_source: RequestSource = RequestSource.LAMBDA,
        queue: str = "items",
    ):
        if not 1 <= group_size <= MAX_GROUP_SIZE:
            raise ValueError(f"group_size must be between 1 and {MAX_GROUP_SIZE}")

        self._breaker = breaker or CircuitBreaker()
        self._executor = DeliveryAttemptExecutor(transport, self._breaker, queue=queue)
        self._retry = retry_policy or RetryPolicy()
        self._audit_store = audit_store
        self._group_size = group_size
        self._request_source = request_source
        self._queue = queue

        op = operation.upper()
        self._message_operation = f"SQS_MESSAGE_{op}"
        self._summary_operation = f"SQS_{op}"

    @classmethod
    def from_settings(
        cls,
        settings: PublisherSettings,
        transport: Transport,
        audit_store: AuditStore,
        *,
        breaker: Optional[CircuitBreaker] = None,
        **kwargs,
    ) -> "PublishCoordinator":
        """Build from settings; explicit keyword arguments override the settings values."""
        if breaker is None:
            breaker = CircuitBreaker(
                failure_ratio=settings.CIRCUIT_BREAKER_FAILURE_RATIO,
                minimum_throughput=settings.CIRCUIT_BREAKER_MINIMUM_THROUGHPUT,
                sampling_duration_sec=settings.CIRCUIT_BREAKER_SAMPLING_DURATION_SEC,
                break_duration_sec=settings.CIRCUIT_BREAKER_BREAK_DURATION_SEC,
            )
        params = {
            "retry_policy": RetryPolicy(
                max_retries=settings.MAX_RETRIES,
                base_delay_ms=settings.BASE_DELAY_MS,
                backoff_multiplier=settings.BACKOFF_MULTIPLIER,
            ),
            "group_size": settings.GROUP_SIZE,
        }
        params.update(kwargs)
        return cls(transport, audit_store, breaker=breaker, **params)

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def health(self) -> PublisherHealth:
        snap = self._breaker.snapshot()
        return PublisherHealth(queue=self._queue, circuit_state=snap.state.value, breaker=snap)

    # --------------------------- public API

    async def publish(
        self,
        messages: Iterable[MessageEntry],
        trace_id: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> PublishResult:
        """Deliver all messages; never raises for delivery or audit failures.

        Args:
            messages: Entries with ids unique within this call
            trace_id: Correlation id stamped on log lines and audit records
            cancel: Optional event; once set, the current call/backoff is abandoned
                and every undelivered entry is reported as failed
        """
        entries = list(messages)
        total = len(entries)
        if not entries:
            logger.info("No messages to publish")
            return PublishResult(total=0)

        ids = [e.id for e in entries]
        if len(set(ids)) != len(ids):
            raise ValueError("message entry ids must be unique within one publish call")

        started = time.perf_counter()
        succeeded: list[MessageEntry] = []
        failures: list[EntryFailure] = []
        cancelled = False

        with logger.contextualize(trace_id=trace_id):
            logger.info(f"Starting to publish {total} messages to {self._queue}")

            for index, group in enumerate(partition(entries, self._group_size)):
                report = _GroupReport(index=index, remaining=list(group))

                if cancelled or (cancel is not None and cancel.is_set()):
                    cancelled = True
                    report.fail_remaining(CANCELLED_CODE, CANCELLED_MESSAGE)
                else:
                    try:
                        await self._deliver_group(report, cancel)
                    except PublishCancelledError:
                        cancelled = True
                        logger.warning(
                            f"Publish cancelled during group {index}; "
                            f"{len(report.remaining)} messages left undelivered"
                        )
                        report.fail_remaining(CANCELLED_CODE, CANCELLED_MESSAGE)
                    except Exception as exc:
                        logger.exception(f"Unexpected error while publishing group {index}")
                        report.fail_remaining(
                            UNEXPECTED_ERROR_CODE, f"{type(exc).__name__}: {exc}"
                        )
                    await self._audit_group(report, trace_id)

                succeeded.extend(report.succeeded)
                failures.extend(report.failures)

            result = PublishResult(
                total=total,
                succeeded=tuple(succeeded),
                failures=tuple(failures),
                cancelled=cancelled,
            )

            logger.info(
                f"Publishing completed: {result.successful_count} successful, "
                f"{result.failed_count} failed"
            )
            await self._audit(
                self._summary_operation,
                result.success,
                result.successful_count,
                result.error_message,
                trace_id,
            )

        MESSAGES_PUBLISHED_TOTAL.labels(queue=self._queue, outcome="success").inc(
            result.successful_count
        )
        MESSAGES_PUBLISHED_TOTAL.labels(queue=self._queue, outcome="failed").inc(
            result.failed_count
        )
        PUBLISH_LATENCY_SECONDS.labels(queue=self._queue).observe(time.perf_counter() - started)
        return result

    # --------------------------- internals

    async def _deliver_group(self, report: _GroupReport, cancel: Optional[asyncio.Event]) -> None:
        round_index = 0
        while True:
            attempted = len(report.remaining)
            outcome = await self._until_cancelled(
                self._executor.execute(report.remaining), cancel
            )

            if outcome.circuit_open:
                report.fail(outcome.failures)
                return

            report.succeeded.extend(outcome.succeeded)
            report.remaining = outcome.failed
            if not report.remaining:
                return

            if not self._retry.should_retry(round_index, report.remaining):
                logger.error(
                    f"Exhausted all {self._retry.max_retries} retry attempts. "
                    f"{len(report.remaining)} messages could not be published"
                )
                report.fail(outcome.failures)
                return

            delay_ms = self._retry.next_backoff_ms(round_index + 1)
            logger.warning(
                f"Batch had {len(report.remaining)} failed messages out of {attempted}. "
                f"Will retry failed messages in {delay_ms}ms "
                f"(Attempt {round_index + 1}/{self._retry.max_retries})"
            )
            RETRY_ROUNDS_TOTAL.labels(queue=self._queue).inc()
            await self._until_cancelled(asyncio.sleep(delay_ms / 1000.0), cancel)
            round_index += 1

    @staticmethod
    async def _until_cancelled(aw: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
        """Await `aw`, abandoning it with PublishCancelledError once `cancel` is set."""
        if cancel is None:
            return await aw
        if cancel.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise PublishCancelledError(CANCELLED_MESSAGE)

        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task.cancelled():
            raise PublishCancelledError(CANCELLED_MESSAGE)
        return task.result()

    async def _audit_group(self, report: _GroupReport, trace_id: Optional[str]) -> None:
        for entry in report.succeeded:
            logger.debug(f"Successfully published message {entry.id}")

        for failure in report.failures:
            logger.error(
                f"Failed to publish message {failure.entry.id}: {failure.code} - {failure.message}"
            )
            await self._audit(
                self._message_operation,
                False,
                0,
                f"MessageId: {failure.entry.id}, Error: {failure.message}",
                trace_id,
            )

        if report.succeeded:
            await self._audit(
                self._message_operation, True, len(report.succeeded), None, trace_id
            )

    async def _audit(
        self,
        operation: str,
        success: bool,
        item_count: Optional[int],
        error_message: Optional[str],
        trace_id: Optional[str],
    ) -> None:
        """Best-effort append; a broken audit store never fails the publish."""
        try:
            await self._audit_store.append_record(
                operation,
                success,
                item_count,
                error_message,
                trace_id,
                request_source=self._request_source,
            )
        except Exception as exc:
            AUDIT_APPEND_FAILURES_TOTAL.labels(operation=operation).inc()
            logger.error(
                f"Failed to write audit record operation={operation} success={success}: "
                f"{type(exc).__name__}: {exc}"
            )
