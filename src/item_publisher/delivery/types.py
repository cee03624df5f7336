from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Protocol, Sequence, Tuple


@dataclass(frozen=True)
class MessageEntry:
    """One outbound unit.

    Attributes:
        id: Unique within one publish call; used to correlate per-entry results.
        payload: Serialized canonical record (the queue message body).
        key: Logical record identifier (e.g. SKU) the caller uses to mark rows delivered.
    """

    id: str
    payload: str
    key: Optional[str] = None


@dataclass(frozen=True)
class TransportFailure:
    """Per-entry failure reported by the transport."""

    id: str
    code: str = "UNKNOWN"
    message: str = ""
    sender_fault: bool = False


@dataclass(frozen=True)
class TransportResponse:
    successful_ids: FrozenSet[str] = frozenset()
    failed: Tuple[TransportFailure, ...] = ()


class Transport(Protocol):
    """Downstream batch client. May raise on total failure."""

    max_batch_size: int

    async def send_batch(self, entries: Sequence[MessageEntry]) -> TransportResponse: ...


@dataclass(frozen=True)
class EntryFailure:
    """An entry that failed, with the reason attached."""

    entry: MessageEntry
    code: str
    message: str


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"
    CIRCUIT_OPEN = "circuit_open"


CIRCUIT_OPEN_CODE = "CIRCUIT_OPEN"
CIRCUIT_OPEN_MESSAGE = "Circuit breaker is open"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one delivery group call, as data rather than exceptions."""

    kind: OutcomeKind
    succeeded: Tuple[MessageEntry, ...] = ()
    failures: Tuple[EntryFailure, ...] = ()
    error: Optional[BaseException] = field(default=None, compare=False)

    @property
    def circuit_open(self) -> bool:
        return self.kind is OutcomeKind.CIRCUIT_OPEN

    @property
    def failed(self) -> list[MessageEntry]:
        return [f.entry for f in self.failures]

    @classmethod
    def rejected(cls, group: Sequence[MessageEntry]) -> "AttemptOutcome":
        return cls(
            kind=OutcomeKind.CIRCUIT_OPEN,
            failures=tuple(EntryFailure(e, CIRCUIT_OPEN_CODE, CIRCUIT_OPEN_MESSAGE) for e in group),
        )

    @classmethod
    def from_exception(cls, group: Sequence[MessageEntry], exc: BaseException) -> "AttemptOutcome":
        code = getattr(exc, "code", None) or type(exc).__name__
        message = str(exc) or type(exc).__name__
        return cls(
            kind=OutcomeKind.TOTAL_FAILURE,
            failures=tuple(EntryFailure(e, code, message) for e in group),
            error=exc,
        )

    @classmethod
    def from_response(
        cls, group: Sequence[MessageEntry], response: TransportResponse
    ) -> "AttemptOutcome":
        """Classify entries: anything not reported failed counts as acknowledged."""
        failed_by_id = {f.id: f for f in response.failed}
        succeeded: list[MessageEntry] = []
        failures: list[EntryFailure] = []
        for entry in group:
            reported = failed_by_id.get(entry.id)
            if reported is None:
                succeeded.append(entry)
            else:
                failures.append(
                    EntryFailure(entry, reported.code, reported.message or "Unknown error")
                )

        if not failures:
            kind = OutcomeKind.SUCCESS
        elif succeeded:
            kind = OutcomeKind.PARTIAL_FAILURE
        else:
            kind = OutcomeKind.TOTAL_FAILURE
        return cls(kind=kind, succeeded=tuple(succeeded), failures=tuple(failures))
