"""Audit and notification events emitted by the engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from .enums import AuditAction, NotificationType
from .records import utcnow


@dataclass
class AuditEntry:
    """An append-only record of a resolution, merge or run action."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    # Who and what
    tenant_id: str = ""
    actor: str = "system"
    action: AuditAction = AuditAction.RESOLVE_DEDUPLICATION

    # Target
    entity_type: str = ""
    entity_id: Optional[str] = None

    # Change
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None


@dataclass
class NotificationEvent:
    """Fire-and-forget message about a completed run."""
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: str = ""
    event_type: NotificationType = NotificationType.RECONCILIATION_COMPLETED
    title: str = ""
    message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
