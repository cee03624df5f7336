"""
Pytest configuration and fixtures for item-publisher.

Provides cross-platform event loop configuration, a fake clock for the circuit
breaker, a scriptable transport and a sleep recorder for backoff assertions.
"""

import asyncio
import json
import sys
from types import SimpleNamespace
from typing import Callable, Optional, Sequence

import pytest

from item_publisher.audit import InMemoryAuditStore
from item_publisher.delivery import MessageEntry, TransportFailure, TransportResponse

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTransport:
    """Records every batch; `handler(call_number, entries)` decides the response.

    Without a handler every entry is acknowledged. A handler may raise to
    simulate a whole-call failure.
    """

    max_batch_size = 10

    def __init__(self, handler: Optional[Callable] = None):
        self.calls: list[list[MessageEntry]] = []
        self._handler = handler

    async def send_batch(self, entries: Sequence[MessageEntry]) -> TransportResponse:
        self.calls.append(list(entries))
        if self._handler is None:
            return ok(entries)
        return self._handler(len(self.calls), list(entries))

    @property
    def sent_ids(self) -> list[list[str]]:
        return [[e.id for e in batch] for batch in self.calls]


def ok(entries: Sequence[MessageEntry]) -> TransportResponse:
    return TransportResponse(successful_ids=frozenset(e.id for e in entries))


def fail_ids(
    entries: Sequence[MessageEntry], ids, code: str = "InternalError", message: str = "boom"
) -> TransportResponse:
    ids = set(ids)
    return TransportResponse(
        successful_ids=frozenset(e.id for e in entries if e.id not in ids),
        failed=tuple(TransportFailure(id=e.id, code=code, message=message) for e in entries if e.id in ids),
    )


def make_entries(n: int, prefix: str = "m") -> list[MessageEntry]:
    return [
        MessageEntry(id=f"{prefix}{i}", payload=json.dumps({"Sku": f"SKU-{i}"}), key=f"SKU-{i}")
        for i in range(n)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def entries():
    """Factory: entries(n, prefix="m") -> list[MessageEntry]."""
    return make_entries


@pytest.fixture
def transport_factory():
    """Factory: transport_factory(handler=None) -> ScriptedTransport."""
    return ScriptedTransport


@pytest.fixture
def responses():
    """Builders for transport responses: responses.ok(entries), responses.fail_ids(entries, ids)."""
    return SimpleNamespace(ok=ok, fail_ids=fail_ids)


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff waits (in seconds) instead of sleeping through them."""
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def _fake_sleep(delay, *args, **kwargs):
        recorded.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", _fake_sleep)
    return recorded


@pytest.fixture
def sample_item_rows():
    """Raw NDJSON rows (PascalCase, as produced by the transformation step)."""
    return [
        {
            "Sku": "1001",
            "Name": "Widget",
            "Gs1Barcode": "00012345678905",
            "CountryOfOriginCode": "US",
            "Prices": [{"Type": "Retail", "Currency": "USD", "Value": 9.99}],
            "Attributes": [{"Id": "color", "Value": "red"}],
        },
        {"Sku": "1002", "Name": "Gadget"},
    ]
