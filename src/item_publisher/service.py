from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger

from .audit.store import AuditStore
from .delivery.coordinator import PublishCoordinator, PublishResult
from .delivery.types import MessageEntry
from .errors import PublishFailedError
from .metrics import ITEMS_PUBLISHED_TOTAL
from .models import RequestSource, UnifiedItem
from .utils import generate_id


def build_entries(items: Sequence[UnifiedItem]) -> list[MessageEntry]:
    """One entry per item: fresh id per publish call, SKU as the logical key."""
    return [MessageEntry(id=generate_id(), payload=item.to_payload(), key=item.sku) for item in items]


class ItemPublishingService:
    """Publishes unified items and marks the delivered ones in the source log.

    Unlike the coordinator, this workflow surfaces a failed publish as an
    exception (PublishFailedError carrying the result) to its own caller.
    """

    def __init__(
        self,
        coordinator: PublishCoordinator,
        audit_store: AuditStore,
        *,
        request_source: RequestSource = RequestSource.LAMBDA,
    ):
        self._coordinator = coordinator
        self._audit_store = audit_store
        self._request_source = request_source

    async def publish_items(
        self,
        items: Sequence[UnifiedItem],
        trace_id: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> PublishResult:
        entries = build_entries(items)
        result = await self._coordinator.publish(entries, trace_id, cancel=cancel)

        keys = result.succeeded_keys
        if keys:
            try:
                await self._audit_store.mark_sent(keys, trace_id)
            except Exception as exc:
                logger.error(
                    f"Failed to mark {len(keys)} items as sent (trace_id={trace_id}): "
                    f"{type(exc).__name__}: {exc}"
                )

        ITEMS_PUBLISHED_TOTAL.labels(request_source=self._request_source.value).inc(
            result.successful_count
        )

        if not result.success:
            message = f"Failed to publish items to SQS: {result.error_message}"
            logger.error(f"SQS publish failed: {message} | TraceId: {trace_id}")
            raise PublishFailedError(message, result=result)

        return result
