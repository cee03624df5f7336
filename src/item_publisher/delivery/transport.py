"""
Downstream transports.

SqsTransport wraps a boto3 SQS client; InMemoryTransport records batches for
dry runs and local test mode.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

from loguru import logger

from ..config import MAX_GROUP_SIZE, PublisherSettings
from ..errors import map_transport_error
from .types import MessageEntry, TransportFailure, TransportResponse


class SqsTransport:
    """SendMessageBatch against one queue.

    boto3 is synchronous, so each call runs in a worker thread. Cancelling the
    awaiting task stops waiting but cannot recall an in-flight HTTP request.
    """

    max_batch_size = MAX_GROUP_SIZE

    def __init__(
        self,
        queue_url: str,
        *,
        client: Any = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        if not queue_url:
            raise ValueError("queue_url required")
        self.queue_url = queue_url
        self._client = client
        self._region_name = region_name
        self._endpoint_url = endpoint_url

    @classmethod
    def from_settings(cls, settings: PublisherSettings, client: Any = None) -> "SqsTransport":
        return cls(
            settings.SQS_QUEUE_URL,
            client=client,
            region_name=settings.AWS_REGION,
            endpoint_url=settings.AWS_ENDPOINT_URL,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "sqs",
                region_name=self._region_name,
                endpoint_url=self._endpoint_url,
            )
        return self._client

    async def send_batch(self, entries: Sequence[MessageEntry]) -> TransportResponse:
        client = self._get_client()
        request = [{"Id": e.id, "MessageBody": e.payload} for e in entries]
        try:
            resp = await asyncio.to_thread(
                client.send_message_batch, QueueUrl=self.queue_url, Entries=request
            )
        except Exception as e:
            raise map_transport_error(e) from e

        return TransportResponse(
            successful_ids=frozenset(s["Id"] for s in resp.get("Successful") or []),
            failed=tuple(
                TransportFailure(
                    id=f["Id"],
                    code=f.get("Code", "UNKNOWN"),
                    message=f.get("Message", ""),
                    sender_fault=bool(f.get("SenderFault", False)),
                )
                for f in resp.get("Failed") or []
            ),
        )


class InMemoryTransport:
    """Accepts every entry and keeps the batches it was sent."""

    max_batch_size = MAX_GROUP_SIZE

    def __init__(self) -> None:
        self.batches: list[list[MessageEntry]] = []

    @property
    def published(self) -> list[MessageEntry]:
        return [e for batch in self.batches for e in batch]

    async def send_batch(self, entries: Sequence[MessageEntry]) -> TransportResponse:
        self.batches.append(list(entries))
        logger.debug(f"InMemoryTransport accepted {len(entries)} messages (test mode)")
        return TransportResponse(successful_ids=frozenset(e.id for e in entries))

    def clear(self) -> None:
        self.batches.clear()
