"""
Resolution state machines for duplicate findings and reconciliation items.

Duplicate side:
    POTENTIAL_DUPLICATE -> CONFIRMED_DUPLICATE | NOT_DUPLICATE  (reviewer)
    CONFIRMED_DUPLICATE -> MERGED                               (merge only)

Reconciliation side: each non-MATCHED item is resolved once, independently
of its siblings; a report with discrepancies becomes RECONCILED when its
last open item is resolved.
"""

from typing import Dict, FrozenSet, Optional

from ..errors import InvalidTransitionError, ValidationError
from ..models import (
    DuplicateFinding,
    DuplicateStatus,
    ReconciliationItem,
    ReconciliationReport,
    ReconciliationStatus,
    ResolutionAction,
    utcnow,
)

REVIEW_TRANSITIONS: Dict[DuplicateStatus, FrozenSet[DuplicateStatus]] = {
    DuplicateStatus.POTENTIAL_DUPLICATE: frozenset({
        DuplicateStatus.CONFIRMED_DUPLICATE,
        DuplicateStatus.NOT_DUPLICATE,
    }),
}

MERGE_TRANSITIONS: Dict[DuplicateStatus, FrozenSet[DuplicateStatus]] = {
    DuplicateStatus.CONFIRMED_DUPLICATE: frozenset({DuplicateStatus.MERGED}),
}


def can_review(current: DuplicateStatus, requested: DuplicateStatus) -> bool:
    return requested in REVIEW_TRANSITIONS.get(current, frozenset())


def can_merge(current: DuplicateStatus) -> bool:
    return DuplicateStatus.MERGED in MERGE_TRANSITIONS.get(current, frozenset())


def resolve_finding(
    finding: DuplicateFinding,
    status: DuplicateStatus,
    actor: str,
    notes: Optional[str] = None,
) -> DuplicateFinding:
    """Apply a reviewer decision to a finding in place."""
    if not can_review(finding.status, status):
        raise InvalidTransitionError("finding", finding.status, status)

    now = utcnow()
    finding.status = status
    finding.resolved_by = actor
    finding.resolved_at = now
    finding.resolution_notes = notes
    finding.updated_at = now
    return finding


def mark_finding_merged(finding: DuplicateFinding, actor: str) -> DuplicateFinding:
    if not can_merge(finding.status):
        raise InvalidTransitionError("finding", finding.status, DuplicateStatus.MERGED)

    now = utcnow()
    finding.status = DuplicateStatus.MERGED
    finding.resolved_by = actor
    finding.resolved_at = now
    finding.updated_at = now
    return finding


def resolve_item(
    item: ReconciliationItem,
    action: ResolutionAction,
    actor: str,
    notes: Optional[str] = None,
) -> ReconciliationItem:
    """Record a resolution on a non-MATCHED, unresolved item."""
    if not item.match_status.is_discrepancy:
        raise ValidationError(
            "Matched items do not need resolution",
            details={"item_id": item.id},
        )
    if item.is_resolved:
        raise ValidationError(
            "Item is already resolved",
            details={"item_id": item.id, "resolution_action": item.resolution_action.value},
        )

    item.resolution_action = ResolutionAction(action)
    item.resolution_notes = notes
    item.resolved_by = actor
    item.resolved_at = utcnow()
    return item


def should_auto_reconcile(report: ReconciliationReport, open_items: int) -> bool:
    return report.status == ReconciliationStatus.DISCREPANCIES_FOUND and open_items == 0


def mark_report_reconciled(report: ReconciliationReport, actor: str) -> ReconciliationReport:
    report.status = ReconciliationStatus.RECONCILED
    report.reconciled_by = actor
    report.reconciled_at = utcnow()
    return report
