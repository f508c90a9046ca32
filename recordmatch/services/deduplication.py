"""
Deduplication service.

Runs duplicate scans, answers single-record duplicate checks and drives the
finding resolution and merge workflow. Finding idempotency is guaranteed by
the store's open-pair uniqueness; the pre-insert lookup here only keeps the
counters accurate.
"""

from datetime import date, timedelta
from typing import Any, Mapping, Optional, Union
import time

import structlog

from ..config import Settings, get_settings
from ..errors import (
    ConflictError,
    DependencyFailureError,
    DuplicateKeyError,
    MatchingError,
    NotFoundError,
    StaleWriteError,
    ValidationError,
)
from ..matching import (
    RECORD_FIELDS,
    DuplicateScanner,
    MatchingConfig,
    get_matching_config,
)
from ..matching.scanner import PairFilter
from ..models import (
    AuditAction,
    DeduplicationStats,
    DuplicateCheckResult,
    DuplicateFinding,
    DuplicateStatus,
    FieldKind,
    FindingDetail,
    FindingFilters,
    MergeResult,
    Page,
    PageRequest,
    Record,
    RecordPreview,
    RecordType,
    ScanOptions,
    ScanResult,
    ScanScope,
    utcnow,
)
from ..reporting import ReportAggregator
from ..resolution import MergeOperator, resolve_finding
from ..store import AuditSink, FindingRepository, NotificationSink, RecordRepository
from ..utils import AuditLogger
from .notifications import NotificationDispatcher
from .paging import normalize_page, to_page

logger = structlog.get_logger()

# Fields that identify a record and can never be overridden by a merge
PROTECTED_FIELDS = frozenset({"id", "tenant_id"})


class DeduplicationService:
    """Exposed duplicate-detection and resolution operations."""

    def __init__(
        self,
        records: RecordRepository,
        findings: FindingRepository,
        audit_sink: AuditSink,
        notification_sink: Optional[NotificationSink] = None,
        configs: Optional[Mapping[RecordType, MatchingConfig]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.records = records
        self.findings = findings
        self.audit = AuditLogger(audit_sink)
        self.notifications = NotificationDispatcher(notification_sink)
        self.configs = dict(configs or {})
        self.merge_operator = MergeOperator(records, findings)
        self.aggregator = ReportAggregator(settings=self.settings)

    def config_for(self, record_type: RecordType) -> MatchingConfig:
        record_type = RecordType(record_type)
        return self.configs.get(record_type) or get_matching_config(record_type)

    # ============================================
    # Findings
    # ============================================

    async def list_findings(
        self,
        tenant_id: str,
        filters: Optional[FindingFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> Page[DuplicateFinding]:
        request = normalize_page(page, self.settings)
        rows = await self.findings.list_findings(
            tenant_id, filters or FindingFilters(), request.offset, request.limit
        )
        return to_page(rows, request)

    async def get_finding(self, tenant_id: str, finding_id: str) -> FindingDetail:
        finding = await self._require_finding(tenant_id, finding_id)
        return FindingDetail(
            finding=finding,
            original_record=await self._preview(tenant_id, finding.original_record_id, finding.record_type),
            duplicate_record=await self._preview(tenant_id, finding.duplicate_record_id, finding.record_type),
        )

    async def resolve_finding(
        self,
        finding_id: str,
        tenant_id: str,
        status: DuplicateStatus,
        notes: Optional[str],
        actor: str,
    ) -> DuplicateFinding:
        """Apply a reviewer decision (CONFIRMED_DUPLICATE or NOT_DUPLICATE)."""
        finding = await self._require_finding(tenant_id, finding_id)
        previous = finding.status

        resolve_finding(finding, DuplicateStatus(status), actor, notes)
        try:
            finding = await self.findings.update_finding(finding, expected_status=previous)
        except (StaleWriteError, DuplicateKeyError) as e:
            raise ConflictError(
                "Finding was modified concurrently", details={"finding_id": finding_id}
            ) from e

        await self.audit.record(
            AuditAction.RESOLVE_DEDUPLICATION,
            tenant_id=tenant_id,
            actor=actor,
            entity_type="DuplicateFinding",
            entity_id=finding.id,
            before={"status": previous.value},
            after={"status": finding.status.value, "notes": notes},
        )

        logger.info(
            "Finding resolved",
            finding_id=finding.id,
            tenant_id=tenant_id,
            status=finding.status.value,
        )
        return finding

    async def merge_finding_records(
        self,
        finding_id: str,
        tenant_id: str,
        keep_id: str,
        merge_id: str,
        actor: str,
        field_overrides: Optional[Mapping[str, Any]] = None,
    ) -> MergeResult:
        finding = await self._require_finding(tenant_id, finding_id)

        if field_overrides:
            allowed = set(RECORD_FIELDS[finding.record_type]) - PROTECTED_FIELDS
            unknown = sorted(set(field_overrides) - allowed)
            if unknown:
                raise ValidationError(
                    f"Fields cannot be overridden: {', '.join(unknown)}",
                    details={"fields": unknown},
                )

        result = await self.merge_operator.merge(
            finding, keep_id, merge_id, actor, field_overrides=field_overrides
        )

        await self.audit.record(
            AuditAction.MERGE_DUPLICATES,
            tenant_id=tenant_id,
            actor=actor,
            entity_type="DuplicateFinding",
            entity_id=finding.id,
            before={"status": finding.status.value},
            after={
                "status": (
                    DuplicateStatus.MERGED.value if result.success else finding.status.value
                ),
                "merged_record_id": result.merged_record_id,
                "deleted_record_id": result.deleted_record_id,
                "relations_updated": result.relations_updated,
                "relations_by_type": dict(result.relations_by_type),
                "fields_updated": list(result.fields_updated),
            },
            success=result.success,
            error_message="; ".join(result.errors) or None,
        )
        return result

    # ============================================
    # Scanning
    # ============================================

    async def scan(
        self,
        tenant_id: str,
        record_type: RecordType,
        scope: Optional[ScanScope] = None,
        options: Optional[ScanOptions] = None,
        actor: str = "system",
    ) -> ScanResult:
        """
        Scan one record category of a tenant for duplicates.

        Args:
            tenant_id: Tenant whose records are scanned
            record_type: Record category
            scope: all / recent / unscanned (defaults to ``options.scope``)
            options: Score threshold override, field subset and dry-run flag
            actor: Who triggered the scan

        Returns:
            ScanResult with new vs pre-existing duplicate counts
        """
        options = options or ScanOptions()
        scope = ScanScope(scope or options.scope)
        record_type = RecordType(record_type)
        config = self._scan_config(record_type, options)

        started_at = utcnow()
        start_time = time.perf_counter()
        logger.info(
            "Starting duplicate scan",
            tenant_id=tenant_id,
            record_type=record_type.value,
            scope=scope.value,
            dry_run=options.dry_run,
        )

        try:
            records, pair_filter = await self._scan_candidates(tenant_id, record_type, scope)
            scanner = DuplicateScanner(config, settings=self.settings)
            pass_result = scanner.process(records, pair_filter)

            result = ScanResult(
                record_type=record_type,
                records_scanned=pass_result.records_scanned,
                pairs_compared=pass_result.pairs_compared,
                potential_duplicates_found=len(pass_result.duplicates),
                dry_run=options.dry_run,
            )

            for scored in pass_result.duplicates:
                if await self._is_known_pair(tenant_id, record_type, scored.original.id, scored.candidate.id):
                    result.existing_duplicates += 1
                    continue
                if options.dry_run:
                    result.new_duplicates += 1
                    continue

                finding = DuplicateFinding(
                    tenant_id=tenant_id,
                    original_record_id=scored.original.id,
                    duplicate_record_id=scored.candidate.id,
                    record_type=record_type,
                    match_score=scored.score,
                    match_fields=scored.match_fields,
                )
                try:
                    await self.findings.add_finding(finding)
                    result.new_duplicates += 1
                except DuplicateKeyError:
                    # A concurrent scan created it first
                    result.existing_duplicates += 1

            if not options.dry_run:
                await self.findings.record_scan(tenant_id, record_type, started_at)
        except MatchingError:
            raise
        except Exception as e:
            logger.exception("Duplicate scan failed", tenant_id=tenant_id, record_type=record_type.value)
            raise DependencyFailureError(f"Duplicate scan failed: {e}") from e

        result.scan_duration_ms = int((time.perf_counter() - start_time) * 1000)

        if not options.dry_run:
            await self.audit.record(
                AuditAction.DUPLICATE_SCAN_COMPLETED,
                tenant_id=tenant_id,
                actor=actor,
                entity_type=record_type.value,
                entity_id=None,
                after={
                    "scope": scope.value,
                    "records_scanned": result.records_scanned,
                    "potential_duplicates_found": result.potential_duplicates_found,
                    "new_duplicates": result.new_duplicates,
                    "existing_duplicates": result.existing_duplicates,
                },
            )
            if result.new_duplicates:
                self.notifications.duplicates_found(tenant_id, result)

        logger.info(
            "Duplicate scan complete",
            tenant_id=tenant_id,
            record_type=record_type.value,
            records_scanned=result.records_scanned,
            potential=result.potential_duplicates_found,
            new=result.new_duplicates,
            existing=result.existing_duplicates,
            duration_ms=result.scan_duration_ms,
        )
        return result

    async def check_duplicate(
        self,
        tenant_id: str,
        record_type: RecordType,
        candidate: Union[Record, Mapping[str, Any]],
    ) -> DuplicateCheckResult:
        """Score a not-yet-inserted record against the best existing match."""
        record_type = RecordType(record_type)
        if not isinstance(candidate, Record):
            candidate = Record(
                tenant_id=tenant_id,
                record_type=record_type,
                fields=_coerce_fields(record_type, candidate),
            )

        try:
            existing = await self.records.fetch_records(tenant_id, record_type)
        except Exception as e:
            raise DependencyFailureError(f"Could not load {record_type.value} records: {e}") from e

        best = DuplicateScanner(
            self.config_for(record_type), settings=self.settings
        ).find_best_match(candidate, existing)
        if best is None:
            return DuplicateCheckResult(is_duplicate=False)
        if not best.is_duplicate:
            return DuplicateCheckResult(is_duplicate=False, match_score=best.score)
        return DuplicateCheckResult(
            is_duplicate=True,
            match_score=best.score,
            existing_record_id=best.original.id,
        )

    async def get_stats(self, tenant_id: str) -> DeduplicationStats:
        findings = await self.findings.all_findings(tenant_id)
        last_scan_at = await self.findings.last_scan_at(tenant_id)
        return self.aggregator.duplicate_stats(findings, last_scan_at)

    # ============================================
    # Helpers
    # ============================================

    def _scan_config(self, record_type: RecordType, options: ScanOptions) -> MatchingConfig:
        config = self.config_for(record_type)
        if options.fields:
            config = config.restricted_to(options.fields)
        if options.min_score is not None:
            config = config.with_minimum_score(options.min_score)
        return config

    async def _scan_candidates(self, tenant_id: str, record_type: RecordType, scope: ScanScope):
        pair_filter: Optional[PairFilter] = None

        if scope == ScanScope.RECENT:
            cutoff = utcnow() - timedelta(days=self.settings.scan_recent_days)
            records = await self.records.fetch_records(tenant_id, record_type, created_after=cutoff)
        else:
            records = await self.records.fetch_records(tenant_id, record_type)

        if scope == ScanScope.UNSCANNED:
            last_scan = await self.findings.last_scan_at(tenant_id, record_type)
            if last_scan is not None:
                # Only pairs with at least one record new since the last scan
                def pair_filter(a: Record, b: Record) -> bool:
                    return a.created_at > last_scan or b.created_at > last_scan

        return records, pair_filter

    async def _is_known_pair(self, tenant_id: str, record_type: RecordType, a: str, b: str) -> bool:
        for finding in await self.findings.find_pair_findings(tenant_id, record_type, a, b):
            if finding.is_open:
                return True
            if (
                self.settings.suppress_rejected_pairs
                and finding.status == DuplicateStatus.NOT_DUPLICATE
            ):
                return True
        return False

    async def _require_finding(self, tenant_id: str, finding_id: str) -> DuplicateFinding:
        finding = await self.findings.get_finding(tenant_id, finding_id)
        if finding is None:
            raise NotFoundError("Duplicate finding not found", details={"finding_id": finding_id})
        return finding

    async def _preview(self, tenant_id: str, record_id: str, record_type: RecordType) -> RecordPreview:
        record = await self.records.get_record(tenant_id, record_id)
        if record is None:
            return RecordPreview(
                id=record_id,
                record_type=record_type,
                display_name="Record not found",
                found=False,
            )

        config = self.config_for(record_type)
        return RecordPreview(
            id=record.id,
            record_type=record.record_type,
            display_name=_display_name(record),
            key_fields={name: record.get(name) for name in config.field_names},
            created_at=record.created_at,
        )


def _coerce_fields(record_type: RecordType, fields: Mapping[str, Any]) -> dict:
    """Parse ISO date strings (as they arrive over JSON) on date fields."""
    schema = RECORD_FIELDS[record_type]
    coerced = dict(fields)
    for name, value in fields.items():
        if schema.get(name) != FieldKind.DATE or not isinstance(value, str):
            continue
        try:
            coerced[name] = date.fromisoformat(value[:10])
        except ValueError as e:
            raise ValidationError(
                f"Invalid date for field '{name}': {value}",
                details={"field": name, "value": value},
            ) from e
    return coerced


def _display_name(record: Record) -> str:
    if record.record_type == RecordType.EMPLOYEE:
        name = " ".join(
            str(part) for part in (record.get("first_name"), record.get("last_name")) if part
        )
        return name or record.get("employee_number") or record.id

    when = record.get("payroll_date") or record.get("effective_date") or record.get("origination_date")
    label = record.record_type.value.title()
    if when is not None:
        when = when.isoformat() if hasattr(when, "isoformat") else when
        return f"{label} for {record.get('employee_id')} on {when}"
    return f"{label} for {record.get('employee_id')}"
