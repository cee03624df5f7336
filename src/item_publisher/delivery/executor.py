from __future__ import annotations

import asyncio
from typing import Sequence

from loguru import logger

from ..metrics import DELIVERY_ATTEMPTS_TOTAL
from .policy import CircuitBreaker
from .types import AttemptOutcome, MessageEntry, OutcomeKind, Transport


class DeliveryAttemptExecutor:
    """Performs exactly one breaker-gated transport call per `execute`.

    No retry, no backoff: transport exceptions are turned into a TOTAL_FAILURE
    outcome and per-entry failures into PARTIAL_FAILURE, so callers branch on
    data. Only a raised call counts as a breaker failure: a returned response
    means the downstream is reachable, even if it rejected every entry.
    """

    def __init__(self, transport: Transport, breaker: CircuitBreaker, *, queue: str = "items"):
        self._transport = transport
        self._breaker = breaker
        self._queue = queue

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def execute(self, group: Sequence[MessageEntry]) -> AttemptOutcome:
        limit = getattr(self._transport, "max_batch_size", None)
        if limit is not None and len(group) > limit:
            raise ValueError(f"group of {len(group)} exceeds transport batch limit {limit}")

        permit = self._breaker.try_acquire()
        if permit is None:
            logger.error(f"Circuit breaker is open, skipping batch of {len(group)} messages")
            DELIVERY_ATTEMPTS_TOTAL.labels(queue=self._queue, kind=OutcomeKind.CIRCUIT_OPEN.value).inc()
            return AttemptOutcome.rejected(group)

        try:
            response = await self._transport.send_batch(group)
        except asyncio.CancelledError:
            self._breaker.release(permit)
            raise
        except Exception as exc:
            self._breaker.record_outcome(False, permit)
            logger.error(
                f"Error publishing batch of {len(group)} messages: {type(exc).__name__}: {exc}"
            )
            outcome = AttemptOutcome.from_exception(group, exc)
        else:
            outcome = AttemptOutcome.from_response(group, response)
            self._breaker.record_outcome(True, permit)

            known = {e.id for e in group}
            unknown = [f.id for f in response.failed if f.id not in known]
            if unknown:
                logger.warning(f"Transport reported failures for unknown entry ids: {unknown}")

        DELIVERY_ATTEMPTS_TOTAL.labels(queue=self._queue, kind=outcome.kind.value).inc()
        return outcome
