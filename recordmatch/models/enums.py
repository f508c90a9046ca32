"""Enumerations for the record matching and reconciliation engine."""

from enum import Enum


class RecordType(str, Enum):
    """Record category a matching config, finding or merge plan applies to."""
    CONTRIBUTION = "contribution"
    EMPLOYEE = "employee"
    ELECTION = "election"
    LOAN = "loan"


class MatchType(str, Enum):
    """
    Comparison strategy for a single field.

    EXACT: Equality without transformation
    NORMALIZED: Equality after canonicalization (names, SSN, phone)
    FUZZY: Levenshtein similarity on case-folded strings
    PHONETIC: Soundex sound-alike, binary
    NUMERIC_TOLERANCE: Absolute/relative numeric tolerance, binary
    """
    EXACT = "exact"
    FUZZY = "fuzzy"
    NORMALIZED = "normalized"
    PHONETIC = "phonetic"
    NUMERIC_TOLERANCE = "numeric_tolerance"


class NormalizerType(str, Enum):
    """Canonicalization applied before normalized/fuzzy comparison."""
    LOWERCASE = "lowercase"
    TRIM = "trim"
    REMOVE_PUNCTUATION = "remove_punctuation"
    NORMALIZE_TEXT = "normalize_text"
    NORMALIZE_NAME = "normalize_name"
    NORMALIZE_SSN = "normalize_ssn"
    NORMALIZE_PHONE = "normalize_phone"


class FieldKind(str, Enum):
    """Kind of a record field, used to validate comparator choice."""
    TEXT = "text"
    IDENTIFIER = "identifier"
    DATE = "date"
    MONEY = "money"
    NUMBER = "number"


class DuplicateStatus(str, Enum):
    """Lifecycle of a duplicate finding."""
    POTENTIAL_DUPLICATE = "POTENTIAL_DUPLICATE"
    CONFIRMED_DUPLICATE = "CONFIRMED_DUPLICATE"
    NOT_DUPLICATE = "NOT_DUPLICATE"
    MERGED = "MERGED"

    @property
    def is_open(self) -> bool:
        """Open findings block creation of another finding for the same pair."""
        return self in (
            DuplicateStatus.POTENTIAL_DUPLICATE,
            DuplicateStatus.CONFIRMED_DUPLICATE,
        )


class ScanScope(str, Enum):
    """Which records a duplicate scan considers."""
    ALL = "all"
    RECENT = "recent"
    UNSCANNED = "unscanned"


class ReconciliationStatus(str, Enum):
    """Status of a reconciliation report."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    RECONCILED = "RECONCILED"
    DISCREPANCIES_FOUND = "DISCREPANCIES_FOUND"
    FAILED = "FAILED"


class MatchStatus(str, Enum):
    """Classification of a reconciliation item."""
    MATCHED = "MATCHED"
    SOURCE_ONLY = "SOURCE_ONLY"
    DESTINATION_ONLY = "DESTINATION_ONLY"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    DATA_MISMATCH = "DATA_MISMATCH"  # reserved, never emitted by the matcher

    @property
    def is_discrepancy(self) -> bool:
        return self is not MatchStatus.MATCHED


class ResolutionAction(str, Enum):
    """How a reviewer resolved a reconciliation item."""
    AUTO_CORRECTED = "AUTO_CORRECTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    IGNORED = "IGNORED"
    ADJUSTED = "ADJUSTED"


class ReconciliationType(str, Enum):
    """Category of data being reconciled between two systems."""
    CONTRIBUTION = "CONTRIBUTION"
    EMPLOYEE = "EMPLOYEE"
    ELECTION = "ELECTION"
    LOAN = "LOAN"


class AuditAction(str, Enum):
    """Type of audit action."""
    RESOLVE_DEDUPLICATION = "RESOLVE_DEDUPLICATION"
    MERGE_DUPLICATES = "MERGE_DUPLICATES"
    DUPLICATE_SCAN_COMPLETED = "DUPLICATE_SCAN_COMPLETED"
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    RESOLVE_RECONCILIATION_ITEM = "RESOLVE_RECONCILIATION_ITEM"
    REPORT_RECONCILED = "REPORT_RECONCILED"


class NotificationType(str, Enum):
    """Events published to the notification sink."""
    RECONCILIATION_COMPLETED = "RECONCILIATION_COMPLETED"
    DISCREPANCIES_FOUND = "DISCREPANCIES_FOUND"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    DUPLICATES_FOUND = "DUPLICATES_FOUND"


_DUPLICATE_STATUS_LABELS = {
    DuplicateStatus.POTENTIAL_DUPLICATE: "Potential Duplicate",
    DuplicateStatus.CONFIRMED_DUPLICATE: "Confirmed Duplicate",
    DuplicateStatus.NOT_DUPLICATE: "Not a Duplicate",
    DuplicateStatus.MERGED: "Merged",
}

_MATCH_TYPE_LABELS = {
    MatchType.EXACT: "Exact Match",
    MatchType.FUZZY: "Fuzzy Match",
    MatchType.NORMALIZED: "Normalized Match",
    MatchType.PHONETIC: "Phonetic Match",
    MatchType.NUMERIC_TOLERANCE: "Numeric (with tolerance)",
}

_MATCH_STATUS_LABELS = {
    MatchStatus.MATCHED: "Matched",
    MatchStatus.SOURCE_ONLY: "Source Only",
    MatchStatus.DESTINATION_ONLY: "Destination Only",
    MatchStatus.AMOUNT_MISMATCH: "Amount Mismatch",
    MatchStatus.DATA_MISMATCH: "Data Mismatch",
}

_RECONCILIATION_STATUS_LABELS = {
    ReconciliationStatus.PENDING: "Pending",
    ReconciliationStatus.IN_PROGRESS: "In Progress",
    ReconciliationStatus.RECONCILED: "Reconciled",
    ReconciliationStatus.DISCREPANCIES_FOUND: "Discrepancies Found",
    ReconciliationStatus.FAILED: "Failed",
}


def display_label(value: Enum) -> str:
    """Human-readable label for a status, match status, match type or record type."""
    labels = {
        DuplicateStatus: _DUPLICATE_STATUS_LABELS,
        MatchType: _MATCH_TYPE_LABELS,
        MatchStatus: _MATCH_STATUS_LABELS,
        ReconciliationStatus: _RECONCILIATION_STATUS_LABELS,
    }.get(type(value), {})
    if value in labels:
        return labels[value]
    return str(value.value).replace("_", " ").title()
