"""Persistence contracts and the in-memory implementation."""

from .base import (
    AuditSink,
    FindingRepository,
    NotificationSink,
    ReconciliationSource,
    RecordRepository,
    ReportRepository,
)
from .memory import InMemoryAuditSink, InMemoryNotificationSink, InMemoryStore

__all__ = [
    "AuditSink",
    "FindingRepository",
    "NotificationSink",
    "ReconciliationSource",
    "RecordRepository",
    "ReportRepository",
    "InMemoryAuditSink",
    "InMemoryNotificationSink",
    "InMemoryStore",
]
