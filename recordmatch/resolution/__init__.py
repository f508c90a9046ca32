"""Resolution workflow and merge operator."""

from .merge import (
    MERGE_PLANS,
    DependentRelation,
    LoserPolicy,
    MergeOperator,
    MergePlan,
    validate_merge_pair,
)
from .workflow import (
    can_merge,
    can_review,
    mark_finding_merged,
    mark_report_reconciled,
    resolve_finding,
    resolve_item,
    should_auto_reconcile,
)

__all__ = [
    "MERGE_PLANS",
    "DependentRelation",
    "LoserPolicy",
    "MergeOperator",
    "MergePlan",
    "validate_merge_pair",
    "can_merge",
    "can_review",
    "mark_finding_merged",
    "mark_report_reconciled",
    "resolve_finding",
    "resolve_item",
    "should_auto_reconcile",
]
