"""Service layer exposing the deduplication and reconciliation operations."""

from .deduplication import DeduplicationService
from .notifications import NotificationDispatcher
from .reconciliation import ReconciliationService

__all__ = [
    "DeduplicationService",
    "NotificationDispatcher",
    "ReconciliationService",
]
