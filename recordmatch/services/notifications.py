"""
Fire-and-forget notification dispatch.

Events are delivered on background tasks so a slow or failing sink never
blocks or fails the run that produced them.
"""

import asyncio
from typing import Optional, Set

import structlog

from ..models import (
    NotificationEvent,
    NotificationType,
    ReconciliationReport,
    ScanResult,
)
from ..store import NotificationSink

logger = structlog.get_logger()


class NotificationDispatcher:
    """Schedules notification delivery without awaiting it."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, event: NotificationEvent) -> Optional[asyncio.Task]:
        if self.sink is None:
            return None
        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for scheduled deliveries (used on shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver(self, event: NotificationEvent) -> None:
        try:
            await self.sink.publish(event)
        except Exception:
            # Delivery problems must not surface into the run
            logger.exception(
                "Notification delivery failed",
                event_type=event.event_type.value,
                tenant_id=event.tenant_id,
                event_id=event.id,
            )

    # ============================================
    # Event builders
    # ============================================

    def reconciliation_finished(self, report: ReconciliationReport) -> Optional[asyncio.Task]:
        if report.discrepancy_count:
            event_type = NotificationType.DISCREPANCIES_FOUND
            title = "Reconciliation discrepancies found"
            message = (
                f"{report.discrepancy_count} discrepancies between "
                f"{report.source_system} and {report.destination_system} "
                f"for {report.reconciliation_date.isoformat()}"
            )
        else:
            event_type = NotificationType.RECONCILIATION_COMPLETED
            title = "Reconciliation completed"
            message = (
                f"{report.source_system} and {report.destination_system} reconciled "
                f"for {report.reconciliation_date.isoformat()}"
            )

        return self.dispatch(NotificationEvent(
            tenant_id=report.tenant_id,
            event_type=event_type,
            title=title,
            message=message,
            payload={
                "report_id": report.id,
                "status": report.status.value,
                "matched_records": report.matched_records,
                "discrepancies": report.discrepancy_count,
                "variance_amount": report.variance_amount,
            },
        ))

    def reconciliation_failed(
        self, report: ReconciliationReport, error: str
    ) -> Optional[asyncio.Task]:
        return self.dispatch(NotificationEvent(
            tenant_id=report.tenant_id,
            event_type=NotificationType.RECONCILIATION_FAILED,
            title="Reconciliation failed",
            message=error,
            payload={"report_id": report.id},
        ))

    def duplicates_found(self, tenant_id: str, result: ScanResult) -> Optional[asyncio.Task]:
        return self.dispatch(NotificationEvent(
            tenant_id=tenant_id,
            event_type=NotificationType.DUPLICATES_FOUND,
            title="Potential duplicates found",
            message=(
                f"{result.new_duplicates} new potential duplicate "
                f"{result.record_type.value} records"
            ),
            payload={
                "record_type": result.record_type.value,
                "new_duplicates": result.new_duplicates,
                "potential_duplicates_found": result.potential_duplicates_found,
            },
        ))
