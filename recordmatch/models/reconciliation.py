"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .deduplication import DeduplicationStats
from .enums import (
    MatchStatus,
    ReconciliationStatus,
    ReconciliationType,
    ResolutionAction,
)
from .records import ReconcilableRecord, utcnow


@dataclass(frozen=True)
class ReconciliationTolerance:
    """
    Allowed difference between a source and a destination amount.
    Either the absolute or the percentage limit being satisfied is enough.
    """
    amount_tolerance_cents: int = 100  # $1.00
    percentage_tolerance: float = 0.01  # 1%
    date_tolerance_days: int = 1

    def __post_init__(self):
        if self.amount_tolerance_cents < 0 or self.percentage_tolerance < 0:
            raise ValueError("Tolerances must be non-negative")
        if self.date_tolerance_days < 0:
            raise ValueError("Date tolerance must be non-negative")


@dataclass(frozen=True)
class ReportKey:
    """Identity of a reconciliation run; at most one non-FAILED report per key."""
    tenant_id: str
    reconciliation_date: date
    source_system: str
    destination_system: str
    reconciliation_type: ReconciliationType


@dataclass
class ReconciliationReport:
    """Persisted summary of one reconciliation run."""
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: str = ""
    reconciliation_date: Optional[date] = None
    source_system: str = ""
    destination_system: str = ""
    reconciliation_type: ReconciliationType = ReconciliationType.CONTRIBUTION

    # Counters
    total_records: int = 0
    matched_records: int = 0
    unmatched_source_records: int = 0
    unmatched_destination_records: int = 0
    amount_discrepancies: int = 0

    # Amounts (in cents)
    total_source_amount: Optional[int] = None
    total_destination_amount: Optional[int] = None
    variance_amount: Optional[int] = None

    # Status
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    notes: Optional[str] = None

    # Audit
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> ReportKey:
        return ReportKey(
            tenant_id=self.tenant_id,
            reconciliation_date=self.reconciliation_date,
            source_system=self.source_system,
            destination_system=self.destination_system,
            reconciliation_type=self.reconciliation_type,
        )

    @property
    def discrepancy_count(self) -> int:
        return (
            self.unmatched_source_records
            + self.unmatched_destination_records
            + self.amount_discrepancies
        )

    @property
    def match_rate(self) -> float:
        """Matched keys over all distinct keys seen, as a percentage."""
        keys = self.matched_records + self.discrepancy_count
        if keys == 0:
            return 0.0
        return (self.matched_records / keys) * 100

    def reset_counters(self) -> None:
        self.total_records = 0
        self.matched_records = 0
        self.unmatched_source_records = 0
        self.unmatched_destination_records = 0
        self.amount_discrepancies = 0
        self.total_source_amount = None
        self.total_destination_amount = None
        self.variance_amount = None
        self.notes = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "reconciliation_date": (
                self.reconciliation_date.isoformat() if self.reconciliation_date else None
            ),
            "source_system": self.source_system,
            "destination_system": self.destination_system,
            "reconciliation_type": self.reconciliation_type.value,
            "total_records": self.total_records,
            "matched_records": self.matched_records,
            "unmatched_source_records": self.unmatched_source_records,
            "unmatched_destination_records": self.unmatched_destination_records,
            "amount_discrepancies": self.amount_discrepancies,
            "total_source_amount": self.total_source_amount,
            "total_destination_amount": self.total_destination_amount,
            "variance_amount": self.variance_amount,
            "status": self.status.value,
            "reconciled_by": self.reconciled_by,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ReconciliationItem:
    """One classified record (or pair) belonging to a report."""
    id: str = field(default_factory=lambda: str(uuid4()))
    report_id: str = ""
    match_key: Optional[str] = None
    match_status: MatchStatus = MatchStatus.MATCHED

    # Snapshots
    source_record: Optional[Dict[str, Any]] = None
    destination_record: Optional[Dict[str, Any]] = None

    # Amounts (in cents)
    source_amount: Optional[int] = None
    destination_amount: Optional[int] = None
    variance_amount: Optional[int] = None
    discrepancy_reason: Optional[str] = None

    # Resolution
    resolution_action: Optional[ResolutionAction] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def is_open(self) -> bool:
        """Non-MATCHED items stay open until a reviewer resolves them."""
        return self.match_status.is_discrepancy and not self.is_resolved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "match_key": self.match_key,
            "match_status": self.match_status.value,
            "source_record": self.source_record,
            "destination_record": self.destination_record,
            "source_amount": self.source_amount,
            "destination_amount": self.destination_amount,
            "variance_amount": self.variance_amount,
            "discrepancy_reason": self.discrepancy_reason,
            "resolution_action": (
                self.resolution_action.value if self.resolution_action else None
            ),
            "resolution_notes": self.resolution_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MatchedRecordPair:
    """A source/destination pair sharing a key."""
    source: ReconcilableRecord
    destination: ReconcilableRecord

    @property
    def variance_cents(self) -> int:
        return self.source.amount_cents - self.destination.amount_cents


@dataclass
class MatchOutcome:
    """Disjoint, exhaustive partition of the source and destination sets."""
    matched: List[MatchedRecordPair] = field(default_factory=list)
    source_only: List[ReconcilableRecord] = field(default_factory=list)
    destination_only: List[ReconcilableRecord] = field(default_factory=list)
    amount_mismatches: List[MatchedRecordPair] = field(default_factory=list)

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.source_only or self.destination_only or self.amount_mismatches)


@dataclass
class ReconciliationSummary:
    """Counters and totals rolled up from a match outcome."""
    total_records: int = 0
    matched_records: int = 0
    unmatched_source_records: int = 0
    unmatched_destination_records: int = 0
    amount_discrepancies: int = 0
    total_source_amount: int = 0
    total_destination_amount: int = 0
    variance_amount: int = 0
    status: ReconciliationStatus = ReconciliationStatus.RECONCILED


@dataclass
class ReconciliationResult:
    """Result returned to the caller of a reconciliation run."""
    report_id: str
    total_records: int
    matched_records: int
    unmatched_source_records: int
    unmatched_destination_records: int
    amount_discrepancies: int
    total_source_amount: int
    total_destination_amount: int
    variance_amount: int
    status: ReconciliationStatus


@dataclass
class ReportFilters:
    status: Optional[ReconciliationStatus] = None
    source_system: Optional[str] = None
    destination_system: Optional[str] = None
    reconciliation_type: Optional[ReconciliationType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class ItemFilters:
    match_status: Optional[MatchStatus] = None
    has_discrepancy: Optional[bool] = None
    resolved: Optional[bool] = None


@dataclass
class BulkResolveResult:
    resolved: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ReconciliationTrend:
    """Per-day rollup for the dashboard trend."""
    date: str
    total: int = 0
    matched: int = 0
    discrepancies: int = 0
    variance_amount: int = 0


@dataclass
class SystemReconciliationStats:
    source_system: str
    destination_system: str
    total_reports: int = 0
    average_match_rate: float = 0.0
    total_variance: int = 0

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.source_system, self.destination_system)


@dataclass
class ReconciliationDashboard:
    total_reports: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    status_percentages: Dict[str, float] = field(default_factory=dict)
    recent_reports: List[ReconciliationReport] = field(default_factory=list)
    discrepancy_trend: List[ReconciliationTrend] = field(default_factory=list)
    by_system: List[SystemReconciliationStats] = field(default_factory=list)
    duplicates: Optional[DeduplicationStats] = None

    @property
    def pending_reports(self) -> int:
        return self.status_counts.get(ReconciliationStatus.PENDING.value, 0)

    @property
    def reconciled(self) -> int:
        return self.status_counts.get(ReconciliationStatus.RECONCILED.value, 0)

    @property
    def with_discrepancies(self) -> int:
        return self.status_counts.get(ReconciliationStatus.DISCREPANCIES_FOUND.value, 0)

    @property
    def failed(self) -> int:
        return self.status_counts.get(ReconciliationStatus.FAILED.value, 0)
