"""
Persistence, record-source, audit and notification contracts.

Implementations must honor the uniqueness guarantees the services rely on:
at most one open finding per unordered record pair (per tenant and
category) and at most one non-FAILED report per report key. Violations are
signalled with DuplicateKeyError, lost conditional updates with
StaleWriteError.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import AsyncContextManager, List, Optional, Tuple

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
    ReconciliationType,
    Record,
    RecordType,
    ReportFilters,
    ReportKey,
)


class RecordRepository(ABC):
    """Business records scanned for duplicates and touched by merges."""

    @abstractmethod
    async def get_record(self, tenant_id: str, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def fetch_records(
        self,
        tenant_id: str,
        record_type: RecordType,
        created_after: Optional[datetime] = None,
    ) -> List[Record]:
        """Live records of one category, optionally created after a cutoff."""

    @abstractmethod
    async def soft_delete_record(self, tenant_id: str, record_id: str, actor: str) -> None:
        ...

    @abstractmethod
    async def deactivate_record(self, tenant_id: str, record_id: str, actor: str) -> None:
        ...

    @abstractmethod
    async def update_record_fields(
        self, tenant_id: str, record_id: str, values: dict, actor: str
    ) -> None:
        ...

    @abstractmethod
    async def repoint_dependents(
        self,
        tenant_id: str,
        dependent_type: RecordType,
        reference_field: str,
        keep_id: str,
        merge_id: str,
    ) -> int:
        """Atomically move every dependent from merge_id to keep_id; returns the count."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """All writes inside the block commit together or not at all."""


class FindingRepository(ABC):
    """Duplicate findings and scan bookkeeping."""

    @abstractmethod
    async def add_finding(self, finding: DuplicateFinding) -> DuplicateFinding:
        """Insert; raises DuplicateKeyError if the pair already has an open finding."""

    @abstractmethod
    async def get_finding(self, tenant_id: str, finding_id: str) -> Optional[DuplicateFinding]:
        ...

    @abstractmethod
    async def update_finding(
        self,
        finding: DuplicateFinding,
        expected_status: Optional[DuplicateStatus] = None,
    ) -> DuplicateFinding:
        """Persist a finding; raises StaleWriteError if the stored status moved."""

    @abstractmethod
    async def find_pair_findings(
        self,
        tenant_id: str,
        record_type: RecordType,
        record_a: str,
        record_b: str,
    ) -> List[DuplicateFinding]:
        ...

    @abstractmethod
    async def list_findings(
        self,
        tenant_id: str,
        filters: FindingFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[DuplicateFinding], int]:
        """Page of findings ordered by score desc, then newest first, plus the total."""

    @abstractmethod
    async def all_findings(self, tenant_id: str) -> List[DuplicateFinding]:
        ...

    @abstractmethod
    async def record_scan(self, tenant_id: str, record_type: RecordType, at: datetime) -> None:
        ...

    @abstractmethod
    async def last_scan_at(
        self, tenant_id: str, record_type: Optional[RecordType] = None
    ) -> Optional[datetime]:
        ...


class ReportRepository(ABC):
    """Reconciliation reports and their items."""

    @abstractmethod
    async def create_report(self, report: ReconciliationReport) -> ReconciliationReport:
        """Conditional insert; raises DuplicateKeyError if the key has an active report."""

    @abstractmethod
    async def find_report_by_key(self, key: ReportKey) -> Optional[ReconciliationReport]:
        """The active report for a key, else the most recent FAILED one."""

    @abstractmethod
    async def claim_failed_report(self, report_id: str) -> ReconciliationReport:
        """
        Compare-and-set FAILED -> IN_PROGRESS with counters reset.

        Raises StaleWriteError if the report is no longer FAILED and
        DuplicateKeyError if another active report holds the key.
        """

    @abstractmethod
    async def get_report(self, tenant_id: str, report_id: str) -> Optional[ReconciliationReport]:
        ...

    @abstractmethod
    async def update_report(self, report: ReconciliationReport) -> ReconciliationReport:
        ...

    @abstractmethod
    async def list_reports(
        self,
        tenant_id: str,
        filters: ReportFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[ReconciliationReport], int]:
        """Page of reports ordered by reconciliation date desc, plus the total."""

    @abstractmethod
    async def all_reports(self, tenant_id: str) -> List[ReconciliationReport]:
        ...

    @abstractmethod
    async def replace_items(self, report_id: str, items: List[ReconciliationItem]) -> None:
        """Delete the report's prior items and store the new ones."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ReconciliationItem]:
        ...

    @abstractmethod
    async def update_item(self, item: ReconciliationItem) -> ReconciliationItem:
        ...

    @abstractmethod
    async def list_items(
        self,
        report_id: str,
        filters: ItemFilters,
        offset: int,
        limit: int,
    ) -> Tuple[List[ReconciliationItem], int]:
        ...

    @abstractmethod
    async def count_open_items(self, report_id: str) -> int:
        """Non-MATCHED items without a resolution."""


class ReconciliationSource(ABC):
    """Read-only fetch of the two sides of a reconciliation."""

    @abstractmethod
    async def fetch_source_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        source_system: str,
    ) -> List[ReconcilableRecord]:
        ...

    @abstractmethod
    async def fetch_destination_records(
        self,
        tenant_id: str,
        reconciliation_date: date,
        reconciliation_type: ReconciliationType,
        destination_system: str,
    ) -> List[ReconcilableRecord]:
        ...


class AuditSink(ABC):
    """Append-only audit trail."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        ...


class NotificationSink(ABC):
    """Fire-and-forget delivery of run events."""

    @abstractmethod
    async def publish(self, event: NotificationEvent) -> None:
        ...
