"""
Demo script for the item publisher delivery engine.

Shows partial retry (only failing entries are resubmitted), the circuit breaker
opening under a failing downstream, and breaker events on the event bus.
No AWS or database required.
"""

import asyncio
import random
from typing import Sequence

from loguru import logger

from item_publisher import InMemoryAuditStore, ItemPublishingService, UnifiedItem
from item_publisher.delivery import (
    CircuitBreaker,
    CircuitEvent,
    MessageEntry,
    PublishCoordinator,
    RetryPolicy,
    TransportFailure,
    TransportResponse,
)
from item_publisher.errors import PublishFailedError, TransportError


class FlakyTransport:
    """Rejects a share of entries per call; raises outright when `down` is set."""

    max_batch_size = 10

    def __init__(self, reject_rate: float = 0.3):
        self.reject_rate = reject_rate
        self.down = False
        self.calls = 0

    async def send_batch(self, entries: Sequence[MessageEntry]) -> TransportResponse:
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.down:
            raise TransportError("queue unavailable", code="ServiceUnavailable")
        failed = [e for e in entries if random.random() < self.reject_rate]
        return TransportResponse(
            successful_ids=frozenset(e.id for e in entries if e not in failed),
            failed=tuple(TransportFailure(id=e.id, code="Throttling", message="Rate exceeded") for e in failed),
        )


def on_circuit_event(event: CircuitEvent) -> None:
    logger.info(f"📣 Breaker {event.breaker}: {event.previous.value} -> {event.current.value} ({event.reason})")


async def main():
    transport = FlakyTransport()
    audit = InMemoryAuditStore()
    breaker = CircuitBreaker(break_duration_sec=1.0)
    breaker.events.subscribe(on_circuit_event)

    coord = PublishCoordinator(
        transport,
        audit,
        breaker=breaker,
        retry_policy=RetryPolicy(max_retries=3, base_delay_ms=50),
    )
    service = ItemPublishingService(coord, audit)
    items = [UnifiedItem(sku=f"DEMO-{i:04d}", name=f"Demo item {i}") for i in range(45)]

    logger.info("🚀 Publishing 45 items through a flaky downstream")
    result = await service.publish_items(items, trace_id="demo-1")
    logger.info(
        f"✅ {result.successful_count}/{result.total} delivered in {transport.calls} calls, "
        f"{len(audit.sent_keys)} SKUs marked sent"
    )

    logger.info("💥 Taking the downstream offline")
    transport.down = True
    try:
        await service.publish_items(items[:20], trace_id="demo-2")
    except PublishFailedError as e:
        codes = {f.code for f in e.result.failures}
        logger.warning(f"Publish failed as expected: {e} | failure codes: {sorted(codes)}")

    logger.info(f"Health: {coord.health()}")

    await asyncio.sleep(1.1)
    transport.down = False
    transport.reject_rate = 0.0
    result = await service.publish_items(items[:5], trace_id="demo-3")
    logger.info(f"🔁 After break: success={result.success}, circuit={coord.health().circuit_state}")
    logger.info(f"Audit trail has {len(audit.records)} records")


if __name__ == "__main__":
    asyncio.run(main())
