"""Record models consumed by the scanner, matcher and merge operator."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from .enums import RecordType


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class Record:
    """
    A tenant-owned business record (contribution, employee, election, loan).

    Field values live in ``fields`` keyed by the names the matching configs
    reference. ``id`` and ``tenant_id`` are also addressable through ``get``
    so they can be used as blocking fields.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    tenant_id: str = ""
    record_type: RecordType = RecordType.CONTRIBUTION
    fields: Dict[str, Any] = field(default_factory=dict)

    # Lifecycle
    is_active: bool = True
    deleted_at: Optional[datetime] = None

    # Audit
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: Optional[str] = None

    def get(self, name: str) -> Any:
        if name == "id":
            return self.id
        if name == "tenant_id":
            return self.tenant_id
        return self.fields.get(name)

    @property
    def is_live(self) -> bool:
        """Live records take part in scans and duplicate checks."""
        return self.deleted_at is None and self.is_active

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "record_type": self.record_type.value,
            "fields": dict(self.fields),
            "is_active": self.is_active,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ReconcilableRecord:
    """
    One side of a reconciliation: a matching key and an amount in CENTS.
    Source records come from the payroll side, destination records from the
    recordkeeper acknowledgements.
    """
    id: str
    key: str
    amount_cents: int = 0
    record_date: Optional[date] = None
    record_type: str = "contribution"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> float:
        """Return amount in standard units."""
        return self.amount_cents / 100.0

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot stored on reconciliation items."""
        return {
            "id": self.id,
            "key": self.key,
            "amount_cents": self.amount_cents,
            "record_date": self.record_date.isoformat() if self.record_date else None,
            "record_type": self.record_type,
            "metadata": dict(self.metadata),
        }


@dataclass
class RecordPreview:
    """Compact view of a record shown next to a finding."""
    id: str
    record_type: RecordType
    display_name: str
    key_fields: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    found: bool = True
