"""Reconciliation engine components."""

from .matcher import (
    DESTINATION_ONLY_REASON,
    SOURCE_ONLY_REASON,
    ReconciliationMatcher,
    amount_variance_reason,
    calculate_variance,
    is_within_tolerance,
)

__all__ = [
    "DESTINATION_ONLY_REASON",
    "SOURCE_ONLY_REASON",
    "ReconciliationMatcher",
    "amount_variance_reason",
    "calculate_variance",
    "is_within_tolerance",
]
