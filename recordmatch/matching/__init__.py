"""Field comparators, matching rule sets and the duplicate scanner."""

from .comparators import (
    ComparatorConfig,
    ExactComparator,
    FuzzyComparator,
    NormalizedComparator,
    NumericToleranceComparator,
    PhoneticComparator,
    apply_normalizer,
    compare,
    soundex,
    string_similarity,
)
from .rules import (
    DEFAULT_CONTRIBUTION_MATCHING,
    DEFAULT_EMPLOYEE_MATCHING,
    MATCHING_CONFIGS,
    RECORD_FIELDS,
    MatchingConfig,
    MatchingRule,
    build_comparator,
    calculate_total_match_score,
    compare_records,
    get_matching_config,
    is_potential_duplicate,
    load_matching_config,
)
from .scanner import DuplicateScanner, ScanPassResult, ScoredPair

__all__ = [
    "ComparatorConfig",
    "ExactComparator",
    "FuzzyComparator",
    "NormalizedComparator",
    "NumericToleranceComparator",
    "PhoneticComparator",
    "apply_normalizer",
    "compare",
    "soundex",
    "string_similarity",
    "DEFAULT_CONTRIBUTION_MATCHING",
    "DEFAULT_EMPLOYEE_MATCHING",
    "MATCHING_CONFIGS",
    "RECORD_FIELDS",
    "MatchingConfig",
    "MatchingRule",
    "build_comparator",
    "calculate_total_match_score",
    "compare_records",
    "get_matching_config",
    "is_potential_duplicate",
    "load_matching_config",
    "DuplicateScanner",
    "ScanPassResult",
    "ScoredPair",
]
