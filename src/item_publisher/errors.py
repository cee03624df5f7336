"""
Custom exceptions for the item publisher.

Third-party errors (botocore, psycopg) are mapped into this hierarchy at the
boundary so the delivery engine only ever reasons about its own types.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .delivery.coordinator import PublishResult


class PublisherError(Exception):
    """Base error for the item publisher."""

    pass


class TransportError(PublisherError):
    """A downstream batch call failed as a whole."""

    def __init__(self, message: str, code: str = "UNKNOWN"):
        super().__init__(message)
        self.code = code


class AuditStoreError(PublisherError):
    """Appending to (or updating) the audit store failed."""

    pass


class PublishCancelledError(PublisherError):
    """The caller's cancellation signal fired during a call or backoff wait."""

    pass


class PublishFailedError(PublisherError):
    """Raised by the publishing workflow when some items could not be delivered."""

    def __init__(self, message: str, result: Optional["PublishResult"] = None):
        super().__init__(message)
        self.result = result


def map_transport_error(e: Exception) -> TransportError:
    from botocore.exceptions import BotoCoreError, ClientError

    if isinstance(e, ClientError):
        error = e.response.get("Error", {})
        return TransportError(error.get("Message") or str(e), code=error.get("Code", "UNKNOWN"))
    if isinstance(e, BotoCoreError):
        return TransportError(str(e), code=type(e).__name__)
    return TransportError(str(e))


def map_db_error(e: Exception) -> AuditStoreError:
    import psycopg

    if isinstance(e, psycopg.OperationalError):
        return AuditStoreError(f"audit store unavailable: {e}")
    if isinstance(e, psycopg.errors.UndefinedTable):
        return AuditStoreError(f"audit schema missing (run ensure_schema): {e}")
    return AuditStoreError(str(e))
