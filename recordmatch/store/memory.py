"""
In-memory store.

Reference implementation of every repository contract. Uniqueness is
enforced with indexes checked under an asyncio lock, mirroring the
database constraints a persistent implementation would declare:
- open findings are indexed by (tenant, category, unordered pair)
- non-FAILED reports are indexed by report key
Objects are copied on the way in and out so callers cannot mutate stored
state without going through an update.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import date, datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple
import asyncio

import structlog

from ..errors import DuplicateKeyError, StaleWriteError
from ..models import (
    AuditEntry,
    DuplicateFinding,
    DuplicateStatus,
    FindingFilters,
    ItemFilters,
    NotificationEvent,
    ReconcilableRecord,
    ReconciliationItem,
    ReconciliationReport,
    ReconciliationStatus,
    ReconciliationType,
    Record,
    RecordType,
    ReportFilters,
    ReportKey,
    utcnow,
)
from .base import (
    AuditSink,
    FindingRepository,
    NotificationSink,
    ReconciliationSource,
    RecordRepository,
    ReportRepository,
)

logger = structlog.get_logger()

PairKey = Tuple[str, RecordType, FrozenSet[str]]
SideKey = Tuple[str, date, ReconciliationType, str]


class InMemoryStore(RecordRepository, FindingRepository, ReportRepository, ReconciliationSource):
    """Single-process store implementing all repository contracts."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._tx_lock = asyncio.Lock()

        self._records: Dict[str, Record] = {}

        self._findings: Dict[str, DuplicateFinding] = {}
        self._open_pairs: Dict[PairKey, str] = {}
        self._scans: Dict[Tuple[str, RecordType], datetime] = {}

        self._reports: Dict[str, ReconciliationReport] = {}
        self._active_reports: Dict[ReportKey, str] = {}
        self._items: Dict[str, ReconciliationItem] = {}
        self._items_by_report: Dict[str, List[str]] = defaultdict(list)

        self._source_side: Dict[SideKey, List[ReconcilableRecord]] = {}
        self._destination_side: Dict[SideKey, List[ReconcilableRecord]] = {}

    # ============================================
    # Seeding
    # ============================================

    def add_records(self, records: Iterable[Record]) -> None:
        for record in records:
            self._records[record.id] = deepcopy(record)

    def load_source_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        system: str,
        records: Iterable[ReconcilableRecord],
    ) -> None:
        key = (tenant_id, reconciliation_date, reconciliation_type, system)
        self._source_side[key] = [deepcopy(r) for r in records]

    def load_destination_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        system: str,
        records: Iterable[ReconcilableRecord],
    ) -> None:
        key = (tenant_id, reconciliation_date, reconciliation_type, system)
        self._destination_side[key] = [deepcopy(r) for r in records]

    # ============================================
    # Records
    # ============================================

    async def get_record(self, tenant_id: str, record_id: str) -> Optional[Record]:
        record = self._records.get(record_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return deepcopy(record)

    async def fetch_records(
        self,
        tenant_id: str,
        record_type: RecordType,
        created_after: Optional[datetime] = None,
    ) -> List[Record]:
        return [
            deepcopy(r)
            for r in self._records.values()
            if r.tenant_id == tenant_id
            and r.record_type == record_type
            and r.is_live
            and (created_after is None or r.created_at > created_after)
        ]

    async def soft_delete_record(self, tenant_id: str, record_id: str, actor: str) -> None:
        async with self._lock:
            record = self._require_record(tenant_id, record_id)
            record.deleted_at = utcnow()
            record.is_active = False
            self._touch(record, actor)

    async def deactivate_record(self, tenant_id: str, record_id: str, actor: str) -> None:
        async with self._lock:
            record = self._require_record(tenant_id, record_id)
            record.is_active = False
            self._touch(record, actor)

    async def update_record_fields(
        self, tenant_id: str, record_id: str, values: dict, actor: str
    ) -> None:
        async with self._lock:
            record = self._require_record(tenant_id, record_id)
            record.fields.update(deepcopy(values))
            self._touch(record, actor)

    async def repoint_dependents(
        self,
        tenant_id: str,
        dependent_type: RecordType,
        reference_field: str,
        keep_id: str,
        merge_id: str,
    ) -> int:
        async with self._lock:
            count = 0
            for record in self._records.values():
                if (
                    record.tenant_id == tenant_id
                    and record.record_type == dependent_type
                    and record.fields.get(reference_field) == merge_id
                ):
                    record.fields[reference_field] = keep_id
                    record.updated_at = utcnow()
                    count += 1
            return count

    @asynccontextmanager
    async def transaction(self):
        """Snapshot record state; restore it if the block raises."""
        async with self._tx_lock:
            snapshot = deepcopy(self._records)
            try:
                yield
            except BaseException:
                self._records = snapshot
                logger.warning("Store transaction rolled back")
                raise

    def _require_record(self, tenant_id: str, record_id: str) -> Record:
        record = self._records.get(record_id)
        if record is None or record.tenant_id != tenant_id:
            raise KeyError(f"Record {record_id} not found")
        return record

    @staticmethod
    def _touch(record: Record, actor: str) -> None:
        record.updated_at = utcnow()
        record.updated_by = actor

    # ============================================
    # Findings
    # ============================================

    async def add_finding(self, finding: DuplicateFinding) -> DuplicateFinding:
        async with self._lock:
            key = self._pair_key(finding)
            if finding.is_open and key in self._open_pairs:
                raise DuplicateKeyError("Open finding already exists for pair", key=key)
            self._findings[finding.id] = deepcopy(finding)
            if finding.is_open:
                self._open_pairs[key] = finding.id
            return deepcopy(finding)

    async def get_finding(self, tenant_id: str, finding_id: str) -> Optional[DuplicateFinding]:
        finding = self._findings.get(finding_id)
        if finding is None or finding.tenant_id != tenant_id:
            return None
        return deepcopy(finding)

    async def update_finding(
        self,
        finding: DuplicateFinding,
        expected_status: Optional[DuplicateStatus] = None,
    ) -> DuplicateFinding:
        async with self._lock:
            stored = self._findings.get(finding.id)
            if stored is None:
                raise KeyError(f"Finding {finding.id} not found")
            if expected_status is not None and stored.status != expected_status:
                raise StaleWriteError(
                    f"Finding {finding.id} is {stored.status.value}, expected {expected_status.value}"
                )

            key = self._pair_key(finding)
            holder = self._open_pairs.get(key)
            if finding.is_open:
                if holder is not None and holder != finding.id:
                    raise DuplicateKeyError("Open finding already exists for pair", key=key)
                self._open_pairs[key] = finding.id
            elif holder == finding.id:
                del self._open_pairs[key]

            finding.updated_at = utcnow()
            self._findings[finding.id] = deepcopy(finding)
            return deepcopy(finding)

    async def find_pair_findings(
        self,
        tenant_id: str,
        record_type: RecordType,
        record_a: str,
        record_b: str,
    ) -> List[DuplicateFinding]:
        pair = frozenset((record_a, record_b))
        return [
            deepcopy(f)
            for f in self._findings.values()
            if f.tenant_id == tenant_id and f.record_type == record_type and f.pair == pair
        ]

    async def list_findings(
        self,
        tenant_id: str,
        filters: FindingFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[DuplicateFinding], int]:
        matches = [
            f for f in self._findings.values()
            if f.tenant_id == tenant_id and self._finding_matches(f, filters)
        ]
        matches.sort(key=lambda f: (f.match_score, f.created_at), reverse=True)
        return [deepcopy(f) for f in matches[offset:offset + limit]], len(matches)

    async def all_findings(self, tenant_id: str) -> List[DuplicateFinding]:
        return [deepcopy(f) for f in self._findings.values() if f.tenant_id == tenant_id]

    async def record_scan(self, tenant_id: str, record_type: RecordType, at: datetime) -> None:
        async with self._lock:
            self._scans[(tenant_id, record_type)] = at

    async def last_scan_at(
        self, tenant_id: str, record_type: Optional[RecordType] = None
    ) -> Optional[datetime]:
        if record_type is not None:
            return self._scans.get((tenant_id, record_type))
        times = [at for (tenant, _), at in self._scans.items() if tenant == tenant_id]
        return max(times) if times else None

    @staticmethod
    def _pair_key(finding: DuplicateFinding) -> PairKey:
        return (finding.tenant_id, finding.record_type, finding.pair)

    @staticmethod
    def _finding_matches(finding: DuplicateFinding, filters: FindingFilters) -> bool:
        if filters.status is not None and finding.status != filters.status:
            return False
        if filters.record_type is not None and finding.record_type != filters.record_type:
            return False
        if filters.min_match_score is not None and finding.match_score < filters.min_match_score:
            return False
        if filters.max_match_score is not None and finding.match_score > filters.max_match_score:
            return False
        if filters.start_date is not None and finding.created_at < filters.start_date:
            return False
        if filters.end_date is not None and finding.created_at > filters.end_date:
            return False
        return True

    # ============================================
    # Reports and items
    # ============================================

    async def create_report(self, report: ReconciliationReport) -> ReconciliationReport:
        async with self._lock:
            key = report.key
            if report.status != ReconciliationStatus.FAILED:
                if key in self._active_reports:
                    raise DuplicateKeyError("Active report already exists for key", key=key)
                self._active_reports[key] = report.id
            self._reports[report.id] = deepcopy(report)
            return deepcopy(report)

    async def find_report_by_key(self, key: ReportKey) -> Optional[ReconciliationReport]:
        active_id = self._active_reports.get(key)
        if active_id is not None:
            return deepcopy(self._reports[active_id])

        failed = [
            r for r in self._reports.values()
            if r.key == key and r.status == ReconciliationStatus.FAILED
        ]
        if not failed:
            return None
        return deepcopy(max(failed, key=lambda r: r.created_at))

    async def claim_failed_report(self, report_id: str) -> ReconciliationReport:
        async with self._lock:
            report = self._reports.get(report_id)
            if report is None:
                raise KeyError(f"Report {report_id} not found")
            if report.status != ReconciliationStatus.FAILED:
                raise StaleWriteError(f"Report {report_id} is {report.status.value}, not FAILED")
            if report.key in self._active_reports:
                raise DuplicateKeyError("Active report already exists for key", key=report.key)

            report.status = ReconciliationStatus.IN_PROGRESS
            report.reset_counters()
            report.updated_at = utcnow()
            self._active_reports[report.key] = report.id
            return deepcopy(report)

    async def get_report(self, tenant_id: str, report_id: str) -> Optional[ReconciliationReport]:
        report = self._reports.get(report_id)
        if report is None or report.tenant_id != tenant_id:
            return None
        return deepcopy(report)

    async def update_report(self, report: ReconciliationReport) -> ReconciliationReport:
        async with self._lock:
            if report.id not in self._reports:
                raise KeyError(f"Report {report.id} not found")

            key = report.key
            holder = self._active_reports.get(key)
            if report.status == ReconciliationStatus.FAILED:
                if holder == report.id:
                    del self._active_reports[key]
            else:
                if holder is not None and holder != report.id:
                    raise DuplicateKeyError("Active report already exists for key", key=key)
                self._active_reports[key] = report.id

            report.updated_at = utcnow()
            self._reports[report.id] = deepcopy(report)
            return deepcopy(report)

    async def list_reports(
        self,
        tenant_id: str,
        filters: ReportFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[ReconciliationReport], int]:
        matches = [
            r for r in self._reports.values()
            if r.tenant_id == tenant_id and self._report_matches(r, filters)
        ]
        matches.sort(key=lambda r: (r.reconciliation_date, r.created_at), reverse=True)
        return [deepcopy(r) for r in matches[offset:offset + limit]], len(matches)

    async def all_reports(self, tenant_id: str) -> List[ReconciliationReport]:
        return [deepcopy(r) for r in self._reports.values() if r.tenant_id == tenant_id]

    async def replace_items(self, report_id: str, items: List[ReconciliationItem]) -> None:
        async with self._lock:
            for item_id in self._items_by_report.pop(report_id, []):
                self._items.pop(item_id, None)
            for item in items:
                self._items[item.id] = deepcopy(item)
                self._items_by_report[report_id].append(item.id)

    async def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        item = self._items.get(item_id)
        return deepcopy(item) if item is not None else None

    async def update_item(self, item: ReconciliationItem) -> ReconciliationItem:
        async with self._lock:
            if item.id not in self._items:
                raise KeyError(f"Item {item.id} not found")
            self._items[item.id] = deepcopy(item)
            return deepcopy(item)

    async def list_items(
        self,
        report_id: str,
        filters: ItemFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[ReconciliationItem], int]:
        matches = [
            self._items[item_id]
            for item_id in self._items_by_report.get(report_id, [])
            if self._item_matches(self._items[item_id], filters)
        ]
        return [deepcopy(i) for i in matches[offset:offset + limit]], len(matches)

    async def count_open_items(self, report_id: str) -> int:
        return sum(
            1 for item_id in self._items_by_report.get(report_id, [])
            if self._items[item_id].is_open
        )

    @staticmethod
    def _report_matches(report: ReconciliationReport, filters: ReportFilters) -> bool:
        if filters.status is not None and report.status != filters.status:
            return False
        if filters.source_system is not None and report.source_system != filters.source_system:
            return False
        if (
            filters.destination_system is not None
            and report.destination_system != filters.destination_system
        ):
            return False
        if (
            filters.reconciliation_type is not None
            and report.reconciliation_type != filters.reconciliation_type
        ):
            return False
        if filters.start_date is not None and report.reconciliation_date < filters.start_date:
            return False
        if filters.end_date is not None and report.reconciliation_date > filters.end_date:
            return False
        return True

    @staticmethod
    def _item_matches(item: ReconciliationItem, filters: ItemFilters) -> bool:
        if filters.match_status is not None and item.match_status != filters.match_status:
            return False
        if (
            filters.has_discrepancy is not None
            and item.match_status.is_discrepancy != filters.has_discrepancy
        ):
            return False
        if filters.resolved is not None and item.is_resolved != filters.resolved:
            return False
        return True

    # ============================================
    # Reconciliation source
    # ============================================

    async def fetch_source_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        source_system: str,
    ) -> List[ReconcilableRecord]:
        key = (tenant_id, reconciliation_date, reconciliation_type, source_system)
        return deepcopy(self._source_side.get(key, []))

    async def fetch_destination_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        destination_system: str,
    ) -> List[ReconcilableRecord]:
        key = (tenant_id, reconciliation_date, reconciliation_type, destination_system)
        return deepcopy(self._destination_side.get(key, []))


class InMemoryAuditSink(AuditSink):
    """Collects audit entries in order."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


class InMemoryNotificationSink(NotificationSink):
    """Collects published events in order."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)
