"""
Audit logging for resolution, merge and run decisions.
"""

from typing import Any, Dict, Optional

import structlog

from ..models import AuditAction, AuditEntry
from ..store import AuditSink

logger = structlog.get_logger()


class AuditLogger:
    """
    Writer for the audit trail.
    Every entry is appended to the audit sink and echoed to structlog.
    """

    def __init__(self, sink: AuditSink):
        self.sink = sink

    async def log(self, entry: AuditEntry) -> AuditEntry:
        """Append an audit entry."""
        await self.sink.append(entry)

        logger.info(
            "Audit entry recorded",
            action=entry.action.value,
            tenant_id=entry.tenant_id,
            actor=entry.actor,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            success=entry.success,
        )
        return entry

    async def record(
        self,
        action: AuditAction,
        tenant_id: str,
        actor: str,
        entity_type: str,
        entity_id: Optional[str],
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        """Build and append an entry in one call."""
        return await self.log(AuditEntry(
            tenant_id=tenant_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before or {},
            after=after or {},
            success=success,
            error_message=error_message,
        ))
