"""Audit trail for delivery attempts."""

from .store import AuditStore, InMemoryAuditStore
from .postgres import PostgresAuditStore

__all__ = ["AuditStore", "InMemoryAuditStore", "PostgresAuditStore"]
