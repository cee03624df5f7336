"""Resilient batch delivery engine

Partition -> breaker-gated attempt -> partial retry -> audit pipeline with:
- partition(): fixed-size, order-preserving delivery groups (<= 10)
- DeliveryAttemptExecutor: one transport call per attempt, outcomes as data
- RetryPolicy: round-based exponential backoff over the still-failing subset
- CircuitBreaker: failure-ratio breaker with rolling window and half-open probe
- PublishCoordinator: orchestration, audit trail & result aggregation
- SqsTransport / InMemoryTransport
"""

from .types import (
    AttemptOutcome,
    EntryFailure,
    MessageEntry,
    OutcomeKind,
    Transport,
    TransportFailure,
    TransportResponse,
)
from .partition import partition
from .events import CircuitEvent, CircuitEventBus, CircuitState
from .policy import CircuitBreaker, CircuitPermit, CircuitSnapshot, RetryPolicy
from .executor import DeliveryAttemptExecutor
from .coordinator import PublishCoordinator, PublishResult, PublisherHealth
from .transport import InMemoryTransport, SqsTransport

__all__ = [
    # types
    "MessageEntry",
    "EntryFailure",
    "AttemptOutcome",
    "OutcomeKind",
    "Transport",
    "TransportFailure",
    "TransportResponse",
    "PublishResult",
    "PublisherHealth",
    # policies
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitPermit",
    "CircuitSnapshot",
    "CircuitState",
    "CircuitEvent",
    "CircuitEventBus",
    # runtime
    "partition",
    "DeliveryAttemptExecutor",
    "PublishCoordinator",
    # transports
    "SqsTransport",
    "InMemoryTransport",
]
