"""Duplicate-detection models: field results, findings, scan and merge results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

from .enums import DuplicateStatus, MatchType, RecordType, ScanScope
from .records import RecordPreview, utcnow

T = TypeVar("T")


@dataclass(frozen=True)
class MatchFieldResult:
    """Outcome of comparing one field of two records."""
    field_name: str
    original_value: Any
    candidate_value: Any
    match_type: MatchType
    similarity: Optional[float] = None  # 0-1

    @property
    def score(self) -> float:
        """Similarity, defaulting to 1.0 for exact matches and 0.0 otherwise."""
        if self.similarity is not None:
            return self.similarity
        return 1.0 if self.match_type == MatchType.EXACT else 0.0

    def swapped(self) -> "MatchFieldResult":
        return MatchFieldResult(
            field_name=self.field_name,
            original_value=self.candidate_value,
            candidate_value=self.original_value,
            match_type=self.match_type,
            similarity=self.similarity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "original_value": _jsonable(self.original_value),
            "candidate_value": _jsonable(self.candidate_value),
            "match_type": self.match_type.value,
            "similarity": self.similarity,
        }


@dataclass
class DuplicateFinding:
    """A candidate duplicate pair awaiting or having received resolution."""
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: str = ""
    original_record_id: str = ""
    duplicate_record_id: str = ""
    record_type: RecordType = RecordType.CONTRIBUTION

    # Scoring
    match_score: float = 0.0
    match_fields: List[MatchFieldResult] = field(default_factory=list)

    # Resolution
    status: DuplicateStatus = DuplicateStatus.POTENTIAL_DUPLICATE
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    # Audit
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.original_record_id and self.original_record_id == self.duplicate_record_id:
            raise ValueError("A finding cannot pair a record with itself")

    @property
    def pair(self) -> frozenset:
        """Unordered record pair identifying the finding."""
        return frozenset((self.original_record_id, self.duplicate_record_id))

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "original_record_id": self.original_record_id,
            "duplicate_record_id": self.duplicate_record_id,
            "record_type": self.record_type.value,
            "match_score": self.match_score,
            "match_fields": [f.to_dict() for f in self.match_fields],
            "status": self.status.value,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class FindingDetail:
    """A finding together with previews of both records."""
    finding: DuplicateFinding
    original_record: RecordPreview
    duplicate_record: RecordPreview


@dataclass
class FindingFilters:
    status: Optional[DuplicateStatus] = None
    record_type: Optional[RecordType] = None
    min_match_score: Optional[float] = None
    max_match_score: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class PageRequest:
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


@dataclass
class Page(Generic[T]):
    """A page of results with pagination metadata."""
    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass
class ScanOptions:
    scope: ScanScope = ScanScope.ALL
    min_score: Optional[float] = None
    fields: Optional[List[str]] = None
    dry_run: bool = False


@dataclass
class ScanResult:
    """Summary of a duplicate scan run."""
    record_type: RecordType
    records_scanned: int = 0
    pairs_compared: int = 0
    potential_duplicates_found: int = 0
    new_duplicates: int = 0
    existing_duplicates: int = 0
    scan_duration_ms: int = 0
    dry_run: bool = False


@dataclass
class DuplicateCheckResult:
    """Result of a synchronous single-record duplicate check."""
    is_duplicate: bool
    match_score: Optional[float] = None
    existing_record_id: Optional[str] = None


@dataclass
class MergeResult:
    """Outcome of merging a confirmed duplicate pair."""
    success: bool
    merged_record_id: str
    deleted_record_id: str
    relations_updated: int = 0
    relations_by_type: Dict[str, int] = field(default_factory=dict)
    fields_updated: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class DeduplicationStats:
    total: int = 0
    potential_duplicates: int = 0
    confirmed_duplicates: int = 0
    not_duplicates: int = 0
    merged: int = 0
    by_record_type: Dict[str, int] = field(default_factory=dict)
    average_match_score: float = 0.0
    last_scan_at: Optional[datetime] = None

    @property
    def pending_review(self) -> int:
        return self.potential_duplicates


def _jsonable(value: Any) -> Any:
    # dates and datetimes
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
