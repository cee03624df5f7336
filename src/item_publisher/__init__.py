"""
Item Publisher

Delivers canonical item master records to SQS in batches of ten, retrying only
the entries that failed, tripping a circuit breaker on a sustained failure
ratio, and writing an audit record for every attempt.

Usage:
    from item_publisher import (
        PublishCoordinator, SqsTransport, PostgresAuditStore, ItemPublishingService,
    )

    async with PostgresAuditStore(dsn) as audit:
        coordinator = PublishCoordinator(SqsTransport(queue_url), audit)
        service = ItemPublishingService(coordinator, audit)
        await service.publish_items(items, trace_id="abc123")
"""

from .audit import AuditStore, InMemoryAuditStore, PostgresAuditStore
from .config import PublisherSettings, get_settings
from .delivery import (
    CircuitBreaker,
    InMemoryTransport,
    MessageEntry,
    PublishCoordinator,
    PublishResult,
    RetryPolicy,
    SqsTransport,
)
from .errors import PublishFailedError, PublisherError
from .models import AuditRecord, RequestSource, UnifiedItem
from .service import ItemPublishingService, build_entries

__version__ = "1.0.0"
__all__ = [
    "PublishCoordinator",
    "PublishResult",
    "MessageEntry",
    "RetryPolicy",
    "CircuitBreaker",
    "SqsTransport",
    "InMemoryTransport",
    "AuditStore",
    "InMemoryAuditStore",
    "PostgresAuditStore",
    "ItemPublishingService",
    "build_entries",
    "PublisherSettings",
    "get_settings",
    "UnifiedItem",
    "AuditRecord",
    "RequestSource",
    "PublisherError",
    "PublishFailedError",
]
