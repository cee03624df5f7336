from __future__ import annotations

from typing import Callable, Iterable, Optional, Protocol

from loguru import logger

from ..models import AuditRecord, RequestSource
from ..utils import utc_now


class AuditStore(Protocol):
    """Append-only processing log, plus the source-row delivered flag."""

    async def append_record(
        self,
        operation: str,
        success: bool,
        item_count: Optional[int] = None,
        error_message: Optional[str] = None,
        trace_id: Optional[str] = None,
        *,
        request_source: RequestSource = RequestSource.UNKNOWN,
    ) -> None: ...

    async def mark_sent(self, keys: Iterable[str], trace_id: Optional[str] = None) -> int: ...


class InMemoryAuditStore:
    """Keeps audit records in process (tests, dry runs)."""

    def __init__(self, clock: Callable = utc_now) -> None:
        self._clock = clock
        self._records: list[AuditRecord] = []
        self.sent_keys: set[str] = set()

    @property
    def records(self) -> list[AuditRecord]:
        return list(self._records)

    async def append_record(
        self,
        operation: str,
        success: bool,
        item_count: Optional[int] = None,
        error_message: Optional[str] = None,
        trace_id: Optional[str] = None,
        *,
        request_source: RequestSource = RequestSource.UNKNOWN,
    ) -> None:
        record = AuditRecord(
            operation=operation,
            success=success,
            item_count=item_count,
            error_message=error_message,
            trace_id=trace_id,
            request_source=request_source,
            timestamp=self._clock(),
        )
        self._records.append(record)
        logger.debug(
            f"InMemory audit: operation={record.operation} success={success} "
            f"item_count={item_count} trace_id={trace_id}"
        )

    async def mark_sent(self, keys: Iterable[str], trace_id: Optional[str] = None) -> int:
        new = set(keys) - self.sent_keys
        self.sent_keys.update(new)
        return len(new)

    def clear(self) -> None:
        self._records.clear()
        self.sent_keys.clear()
