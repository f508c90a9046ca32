"""Data models for the record matching and reconciliation engine."""

from .enums import (
    AuditAction,
    DuplicateStatus,
    FieldKind,
    MatchStatus,
    MatchType,
    NormalizerType,
    NotificationType,
    ReconciliationStatus,
    ReconciliationType,
    RecordType,
    ResolutionAction,
    ScanScope,
    display_label,
)
from .records import (
    Record,
    ReconcilableRecord,
    RecordPreview,
    utcnow,
)
from .deduplication import (
    DeduplicationStats,
    DuplicateCheckResult,
    DuplicateFinding,
    FindingDetail,
    FindingFilters,
    MatchFieldResult,
    MergeResult,
    Page,
    PageRequest,
    ScanOptions,
    ScanResult,
)
from .reconciliation import (
    BulkResolveResult,
    ItemFilters,
    MatchedRecordPair,
    MatchOutcome,
    ReconciliationDashboard,
    ReconciliationItem,
    ReconciliationReport,
    ReconciliationResult,
    ReconciliationSummary,
    ReconciliationTolerance,
    ReconciliationTrend,
    ReportFilters,
    ReportKey,
    SystemReconciliationStats,
)
from .events import AuditEntry, NotificationEvent

__all__ = [
    # Enums
    "AuditAction",
    "DuplicateStatus",
    "FieldKind",
    "MatchStatus",
    "MatchType",
    "NormalizerType",
    "NotificationType",
    "ReconciliationStatus",
    "ReconciliationType",
    "RecordType",
    "ResolutionAction",
    "ScanScope",
    "display_label",
    # Records
    "Record",
    "ReconcilableRecord",
    "RecordPreview",
    "utcnow",
    # Deduplication
    "DeduplicationStats",
    "DuplicateCheckResult",
    "DuplicateFinding",
    "FindingDetail",
    "FindingFilters",
    "MatchFieldResult",
    "MergeResult",
    "Page",
    "PageRequest",
    "ScanOptions",
    "ScanResult",
    # Reconciliation
    "BulkResolveResult",
    "ItemFilters",
    "MatchedRecordPair",
    "MatchOutcome",
    "ReconciliationDashboard",
    "ReconciliationItem",
    "ReconciliationReport",
    "ReconciliationResult",
    "ReconciliationSummary",
    "ReconciliationTolerance",
    "ReconciliationTrend",
    "ReportFilters",
    "ReportKey",
    "SystemReconciliationStats",
    # Events
    "AuditEntry",
    "NotificationEvent",
]
