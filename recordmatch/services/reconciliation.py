"""
Reconciliation service.

Runs key-based reconciliation between a source and a destination system,
persists the report and its items, and drives item resolution. A run for a
(tenant, date, source, destination, type) key is serialized by the store's
active-report uniqueness: the report is claimed with a conditional insert
(or a compare-and-set on a FAILED report), retried on lost races.
"""

from datetime import date
from typing import List, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, get_settings
from ..errors import (
    ConflictError,
    DependencyFailureError,
    DuplicateKeyError,
    MatchingError,
    NotFoundError,
    StaleWriteError,
)
from ..models import (
    AuditAction,
    BulkResolveResult,
    ItemFilters,
    Page,
    PageRequest,
    ReconciliationDashboard,
    ReconciliationItem,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationStatus,
    ReconciliationTolerance,
    ReconciliationType,
    ReportFilters,
    ReportKey,
    ResolutionAction,
)
from ..reconciliation import ReconciliationMatcher
from ..reporting import ReportAggregator
from ..resolution import mark_report_reconciled, resolve_item, should_auto_reconcile
from ..store import (
    AuditSink,
    FindingRepository,
    NotificationSink,
    ReconciliationSource,
    ReportRepository,
)
from ..utils import AuditLogger
from .notifications import NotificationDispatcher
from .paging import normalize_page, to_page

logger = structlog.get_logger()


class ReconciliationService:
    """Exposed reconciliation operations."""

    def __init__(
        self,
        reports: ReportRepository,
        source: ReconciliationSource,
        audit_sink: AuditSink,
        notification_sink: Optional[NotificationSink] = None,
        findings: Optional[FindingRepository] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.reports = reports
        self.source = source
        self.findings = findings
        self.audit = AuditLogger(audit_sink)
        self.notifications = NotificationDispatcher(notification_sink)
        self.aggregator = ReportAggregator(settings=self.settings)

    # ============================================
    # Runs
    # ============================================

    async def run_reconciliation(
        self,
        tenant_id: str,
        source_system: str,
        destination_system: str,
        reconciliation_type: ReconciliationType,
        reconciliation_date: date,
        tolerance: Optional[ReconciliationTolerance] = None,
        actor: str = "system",
    ) -> ReconciliationResult:
        """
        Reconcile one day of one record category between two systems.

        Raises:
            ConflictError: A non-FAILED report already exists for the key
            DependencyFailureError: Fetching or persisting failed mid-run;
                the report is left FAILED with the cause in its notes
        """
        key = ReportKey(
            tenant_id=tenant_id,
            reconciliation_date=reconciliation_date,
            source_system=source_system,
            destination_system=destination_system,
            reconciliation_type=ReconciliationType(reconciliation_type),
        )
        report = await self._claim_report(key)
        matcher = ReconciliationMatcher(
            tolerance or self.settings.default_tolerance(), settings=self.settings
        )

        logger.info(
            "Starting reconciliation",
            report_id=report.id,
            tenant_id=tenant_id,
            source_system=source_system,
            destination_system=destination_system,
            reconciliation_type=key.reconciliation_type.value,
            reconciliation_date=reconciliation_date.isoformat(),
        )

        try:
            # Items left by a failed attempt
            await self.reports.replace_items(report.id, [])

            source_records = await self.source.fetch_source_records(
                tenant_id, reconciliation_date, key.reconciliation_type, source_system
            )
            destination_records = await self.source.fetch_destination_records(
                tenant_id, reconciliation_date, key.reconciliation_type, destination_system
            )

            outcome = matcher.match(source_records, destination_records)
            summary = matcher.summarize(outcome, source_records, destination_records)
            items = matcher.build_items(report.id, outcome)

            await self.reports.replace_items(report.id, items)

            report.total_records = summary.total_records
            report.matched_records = summary.matched_records
            report.unmatched_source_records = summary.unmatched_source_records
            report.unmatched_destination_records = summary.unmatched_destination_records
            report.amount_discrepancies = summary.amount_discrepancies
            report.total_source_amount = summary.total_source_amount
            report.total_destination_amount = summary.total_destination_amount
            report.variance_amount = summary.variance_amount
            report.status = summary.status
            report = await self.reports.update_report(report)

            await self.audit.record(
                AuditAction.RECONCILIATION_COMPLETED,
                tenant_id=tenant_id,
                actor=actor,
                entity_type="ReconciliationReport",
                entity_id=report.id,
                after={
                    "status": report.status.value,
                    "total_records": report.total_records,
                    "matched_records": report.matched_records,
                    "discrepancies": report.discrepancy_count,
                },
            )
        except Exception as e:
            await self._fail_report(report, e, actor)
            if isinstance(e, MatchingError):
                raise
            raise DependencyFailureError(
                f"Reconciliation failed: {e}", details={"report_id": report.id}
            ) from e

        self.notifications.reconciliation_finished(report)

        logger.info(
            "Reconciliation complete",
            report_id=report.id,
            status=report.status.value,
            matched=report.matched_records,
            discrepancies=report.discrepancy_count,
            variance=report.variance_amount,
        )

        return ReconciliationResult(
            report_id=report.id,
            total_records=summary.total_records,
            matched_records=summary.matched_records,
            unmatched_source_records=summary.unmatched_source_records,
            unmatched_destination_records=summary.unmatched_destination_records,
            amount_discrepancies=summary.amount_discrepancies,
            total_source_amount=summary.total_source_amount,
            total_destination_amount=summary.total_destination_amount,
            variance_amount=summary.variance_amount,
            status=summary.status,
        )

    async def _claim_report(self, key: ReportKey) -> ReconciliationReport:
        """
        Create the report IN_PROGRESS, or take over a FAILED one.

        Lost races (StaleWriteError, DuplicateKeyError) are retried; the
        retry re-reads the key and surfaces ConflictError once another run
        holds it.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.report_claim_attempts),
            wait=wait_exponential(
                multiplier=self.settings.report_claim_backoff_seconds, max=1
            ),
            retry=retry_if_exception_type((StaleWriteError, DuplicateKeyError)),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    existing = await self.reports.find_report_by_key(key)
                    if existing is not None and existing.status != ReconciliationStatus.FAILED:
                        raise ConflictError(
                            "Reconciliation report already exists for this date and systems",
                            details={"report_id": existing.id, "status": existing.status.value},
                        )

                    if existing is not None:
                        report = await self.reports.claim_failed_report(existing.id)
                        logger.info("Re-running failed reconciliation", report_id=report.id)
                        return report

                    return await self.reports.create_report(ReconciliationReport(
                        tenant_id=key.tenant_id,
                        reconciliation_date=key.reconciliation_date,
                        source_system=key.source_system,
                        destination_system=key.destination_system,
                        reconciliation_type=key.reconciliation_type,
                        status=ReconciliationStatus.IN_PROGRESS,
                    ))
        except (StaleWriteError, DuplicateKeyError) as e:
            raise ConflictError(
                "Reconciliation for this key is already running",
                details={"source_system": key.source_system,
                         "destination_system": key.destination_system},
            ) from e

    async def _fail_report(self, report: ReconciliationReport, error: Exception, actor: str) -> None:
        logger.error(
            "Reconciliation failed",
            report_id=report.id,
            error=str(error),
            exc_info=error,
        )
        report.status = ReconciliationStatus.FAILED
        report.notes = str(error) or error.__class__.__name__
        try:
            await self.reports.update_report(report)
        except Exception:
            logger.exception("Could not mark report as failed", report_id=report.id)

        await self.audit.record(
            AuditAction.RECONCILIATION_FAILED,
            tenant_id=report.tenant_id,
            actor=actor,
            entity_type="ReconciliationReport",
            entity_id=report.id,
            after={"status": ReconciliationStatus.FAILED.value, "notes": report.notes},
            success=False,
            error_message=report.notes,
        )
        self.notifications.reconciliation_failed(report, report.notes)

    # ============================================
    # Resolution
    # ============================================

    async def resolve_reconciliation_item(
        self,
        item_id: str,
        tenant_id: str,
        action: ResolutionAction,
        notes: Optional[str],
        actor: str,
    ) -> ReconciliationItem:
        """
        Resolve one discrepancy item. When it was the report's last open
        item, the report moves to RECONCILED.
        """
        item = await self.reports.get_item(item_id)
        report = (
            await self.reports.get_report(tenant_id, item.report_id)
            if item is not None else None
        )
        if item is None or report is None:
            raise NotFoundError("Reconciliation item not found", details={"item_id": item_id})

        resolve_item(item, ResolutionAction(action), actor, notes)
        item = await self.reports.update_item(item)

        await self.audit.record(
            AuditAction.RESOLVE_RECONCILIATION_ITEM,
            tenant_id=tenant_id,
            actor=actor,
            entity_type="ReconciliationItem",
            entity_id=item.id,
            before={"match_status": item.match_status.value},
            after={"resolution_action": item.resolution_action.value, "notes": notes},
        )

        open_items = await self.reports.count_open_items(report.id)
        if should_auto_reconcile(report, open_items):
            previous = report.status
            mark_report_reconciled(report, actor)
            await self.reports.update_report(report)
            await self.audit.record(
                AuditAction.REPORT_RECONCILED,
                tenant_id=tenant_id,
                actor=actor,
                entity_type="ReconciliationReport",
                entity_id=report.id,
                before={"status": previous.value},
                after={"status": report.status.value},
            )
            logger.info("Report reconciled", report_id=report.id, reconciled_by=actor)

        return item

    async def bulk_resolve(
        self,
        tenant_id: str,
        item_ids: List[str],
        action: ResolutionAction,
        notes: Optional[str],
        actor: str,
    ) -> BulkResolveResult:
        """Resolve items independently; failures are collected, not raised."""
        result = BulkResolveResult()
        for item_id in item_ids:
            try:
                await self.resolve_reconciliation_item(item_id, tenant_id, action, notes, actor)
                result.resolved += 1
            except MatchingError as e:
                result.failed += 1
                result.errors.append({"item_id": item_id, "message": e.message})
        return result

    # ============================================
    # Reads
    # ============================================

    async def get_report(self, tenant_id: str, report_id: str) -> ReconciliationReport:
        report = await self.reports.get_report(tenant_id, report_id)
        if report is None:
            raise NotFoundError("Reconciliation report not found", details={"report_id": report_id})
        return report

    async def list_reports(
        self,
        tenant_id: str,
        filters: Optional[ReportFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> Page[ReconciliationReport]:
        request = normalize_page(page, self.settings)
        rows = await self.reports.list_reports(
            tenant_id, filters or ReportFilters(), request.offset, request.limit
        )
        return to_page(rows, request)

    async def list_items(
        self,
        tenant_id: str,
        report_id: str,
        filters: Optional[ItemFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> Page[ReconciliationItem]:
        await self.get_report(tenant_id, report_id)
        request = normalize_page(page, self.settings)
        rows = await self.reports.list_items(
            report_id, filters or ItemFilters(), request.offset, request.limit
        )
        return to_page(rows, request)

    async def get_dashboard(self, tenant_id: str, today: Optional[date] = None) -> ReconciliationDashboard:
        reports = await self.reports.all_reports(tenant_id)
        findings = None
        last_scan_at = None
        if self.findings is not None:
            findings = await self.findings.all_findings(tenant_id)
            last_scan_at = await self.findings.last_scan_at(tenant_id)
        return self.aggregator.build_dashboard(
            reports, findings=findings, last_scan_at=last_scan_at, today=today
        )
