"""
Matching rule sets.

A MatchingConfig lists, per record category, the fields to compare, the
comparator and weight of each, the blocking fields and the decision
threshold. Configs are validated when they are built, so a comparator that
does not fit a field's kind is rejected at load time rather than at match
time.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models import (
    FieldKind,
    MatchFieldResult,
    MatchType,
    NormalizerType,
    Record,
    RecordType,
)
from .comparators import (
    ComparatorConfig,
    ExactComparator,
    FuzzyComparator,
    NormalizedComparator,
    NumericToleranceComparator,
    compare,
)

logger = structlog.get_logger()


_CONTRIBUTION_FIELDS = {
    "tenant_id": FieldKind.IDENTIFIER,
    "employee_id": FieldKind.IDENTIFIER,
    "payroll_date": FieldKind.DATE,
    "employee_pre_tax": FieldKind.MONEY,
    "employee_roth": FieldKind.MONEY,
    "employer_match": FieldKind.MONEY,
    "employer_non_match": FieldKind.MONEY,
}

# Field schema per record category
RECORD_FIELDS: Dict[RecordType, Dict[str, FieldKind]] = {
    RecordType.CONTRIBUTION: dict(_CONTRIBUTION_FIELDS),
    RecordType.EMPLOYEE: {
        "tenant_id": FieldKind.IDENTIFIER,
        "ssn": FieldKind.IDENTIFIER,
        "first_name": FieldKind.TEXT,
        "last_name": FieldKind.TEXT,
        "date_of_birth": FieldKind.DATE,
        "employee_number": FieldKind.IDENTIFIER,
        "email": FieldKind.TEXT,
        "phone": FieldKind.IDENTIFIER,
        "hire_date": FieldKind.DATE,
    },
    RecordType.ELECTION: {
        **_CONTRIBUTION_FIELDS,
        "effective_date": FieldKind.DATE,
        "pre_tax_percent": FieldKind.NUMBER,
        "roth_percent": FieldKind.NUMBER,
    },
    RecordType.LOAN: {
        **_CONTRIBUTION_FIELDS,
        "loan_number": FieldKind.IDENTIFIER,
        "principal_amount": FieldKind.MONEY,
        "origination_date": FieldKind.DATE,
    },
}

# Comparator kinds allowed per field kind
_COMPATIBLE_KINDS = {
    MatchType.EXACT: set(FieldKind),
    MatchType.NORMALIZED: {FieldKind.TEXT, FieldKind.IDENTIFIER},
    MatchType.FUZZY: {FieldKind.TEXT, FieldKind.IDENTIFIER},
    MatchType.PHONETIC: {FieldKind.TEXT},
    MatchType.NUMERIC_TOLERANCE: {FieldKind.MONEY, FieldKind.NUMBER},
}

_DIGIT_NORMALIZERS = {NormalizerType.NORMALIZE_SSN, NormalizerType.NORMALIZE_PHONE}

_comparator_adapter = TypeAdapter(ComparatorConfig)


def build_comparator(match_type: Any, **params: Any):
    """Build a comparator from a match type name and its parameters."""
    payload = {"match_type": getattr(match_type, "value", match_type), **params}
    try:
        return _comparator_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid comparator '{payload['match_type']}'",
            details=e.errors(include_url=False),
        ) from e


class MatchingRule(BaseModel):
    """One compared field: its comparator and its weight in the score."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str = Field(min_length=1)
    comparator: ComparatorConfig
    weight: float = Field(gt=0)

    @property
    def match_type(self) -> MatchType:
        return self.comparator.kind


class MatchingConfig(BaseModel):
    """Matching rule set for one record category."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_type: RecordType
    rules: List[MatchingRule] = Field(min_length=1)
    blocking_fields: List[str] = Field(default_factory=list)
    minimum_score: float = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _check_fields(self) -> "MatchingConfig":
        schema = RECORD_FIELDS[self.record_type]
        seen = set()
        for rule in self.rules:
            if rule.field in seen:
                raise ValueError(f"Duplicate rule for field '{rule.field}'")
            seen.add(rule.field)

            kind = schema.get(rule.field)
            if kind is None:
                raise ValueError(
                    f"Field '{rule.field}' does not exist on {self.record_type.value} records"
                )
            if kind not in _COMPATIBLE_KINDS[rule.match_type]:
                raise ValueError(
                    f"Comparator '{rule.match_type.value}' cannot be used on "
                    f"{kind.value} field '{rule.field}'"
                )
            normalizer = getattr(rule.comparator, "normalizer", None)
            if normalizer in _DIGIT_NORMALIZERS and kind != FieldKind.IDENTIFIER:
                raise ValueError(
                    f"Normalizer '{normalizer.value}' only applies to identifier fields"
                )

        for name in self.blocking_fields:
            if name not in schema:
                raise ValueError(
                    f"Blocking field '{name}' does not exist on {self.record_type.value} records"
                )
        return self

    @property
    def weights(self) -> Dict[str, float]:
        return {rule.field: rule.weight for rule in self.rules}

    @property
    def field_names(self) -> List[str]:
        return [rule.field for rule in self.rules]

    def rule_for(self, field_name: str) -> Optional[MatchingRule]:
        for rule in self.rules:
            if rule.field == field_name:
                return rule
        return None

    def with_minimum_score(self, minimum_score: float) -> "MatchingConfig":
        if not 0 <= minimum_score <= 1:
            raise ValidationError(
                "Minimum score must be between 0 and 1",
                details={"min_score": minimum_score},
            )
        return self.model_copy(update={"minimum_score": minimum_score})

    def restricted_to(self, fields: Iterable[str]) -> "MatchingConfig":
        """Copy of this config scoring only the given rule fields."""
        wanted = list(dict.fromkeys(fields))
        unknown = [name for name in wanted if self.rule_for(name) is None]
        if unknown:
            raise ValidationError(
                f"Unknown match fields for {self.record_type.value}: {', '.join(unknown)}",
                details={"fields": unknown, "allowed": self.field_names},
            )
        if not wanted:
            raise ValidationError("At least one match field is required")
        rules = [rule for rule in self.rules if rule.field in wanted]
        return self.model_copy(update={"rules": rules})


def load_matching_config(payload: Mapping[str, Any]) -> MatchingConfig:
    """
    Validate a rule-set payload.

    Example payload:
        {
            "record_type": "employee",
            "minimum_score": 0.85,
            "blocking_fields": ["tenant_id"],
            "rules": [
                {"field": "ssn", "weight": 0.4,
                 "comparator": {"match_type": "normalized", "normalizer": "normalize_ssn"}},
            ],
        }
    """
    try:
        return MatchingConfig.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning("Rejected matching config", errors=e.error_count())
        raise ValidationError(
            "Invalid matching configuration",
            details=e.errors(include_url=False, include_context=False),
        ) from e


# ============================================
# Default rule sets
# ============================================

_CONTRIBUTION_RULES = [
    MatchingRule(field="employee_id", comparator=ExactComparator(), weight=0.3),
    MatchingRule(field="payroll_date", comparator=ExactComparator(), weight=0.25),
    MatchingRule(
        field="employee_pre_tax",
        comparator=NumericToleranceComparator(absolute_tolerance=1),
        weight=0.15,
    ),
    MatchingRule(
        field="employee_roth",
        comparator=NumericToleranceComparator(absolute_tolerance=1),
        weight=0.15,
    ),
    MatchingRule(
        field="employer_match",
        comparator=NumericToleranceComparator(absolute_tolerance=1),
        weight=0.15,
    ),
]

DEFAULT_CONTRIBUTION_MATCHING = MatchingConfig(
    record_type=RecordType.CONTRIBUTION,
    rules=_CONTRIBUTION_RULES,
    blocking_fields=["employee_id"],
    minimum_score=0.9,
)

DEFAULT_EMPLOYEE_MATCHING = MatchingConfig(
    record_type=RecordType.EMPLOYEE,
    rules=[
        MatchingRule(
            field="ssn",
            comparator=NormalizedComparator(normalizer=NormalizerType.NORMALIZE_SSN),
            weight=0.4,
        ),
        MatchingRule(
            field="first_name",
            comparator=FuzzyComparator(
                normalizer=NormalizerType.NORMALIZE_NAME, min_similarity=0.8
            ),
            weight=0.15,
        ),
        MatchingRule(
            field="last_name",
            comparator=FuzzyComparator(
                normalizer=NormalizerType.NORMALIZE_NAME, min_similarity=0.8
            ),
            weight=0.15,
        ),
        MatchingRule(field="date_of_birth", comparator=ExactComparator(), weight=0.2),
        MatchingRule(field="employee_number", comparator=ExactComparator(), weight=0.1),
    ],
    blocking_fields=["tenant_id"],
    minimum_score=0.85,
)

MATCHING_CONFIGS: Dict[RecordType, MatchingConfig] = {
    RecordType.CONTRIBUTION: DEFAULT_CONTRIBUTION_MATCHING,
    RecordType.EMPLOYEE: DEFAULT_EMPLOYEE_MATCHING,
    RecordType.ELECTION: DEFAULT_CONTRIBUTION_MATCHING.model_copy(
        update={"record_type": RecordType.ELECTION}
    ),
    RecordType.LOAN: DEFAULT_CONTRIBUTION_MATCHING.model_copy(
        update={"record_type": RecordType.LOAN}
    ),
}


def get_matching_config(record_type: RecordType) -> MatchingConfig:
    try:
        return MATCHING_CONFIGS[RecordType(record_type)]
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Unknown record type: {record_type}") from e


# ============================================
# Scoring
# ============================================

def compare_records(
    original: Record,
    candidate: Record,
    config: MatchingConfig,
) -> List[MatchFieldResult]:
    """
    Compare two records field by field, in rule order.

    A field missing on both records is skipped so optional data does not
    depress the score; missing on one side only compares as a non-match.
    """
    results = []
    for rule in config.rules:
        a = original.get(rule.field)
        b = candidate.get(rule.field)
        if a is None and b is None:
            continue
        if a is None or b is None:
            results.append(MatchFieldResult(
                field_name=rule.field,
                original_value=a,
                candidate_value=b,
                match_type=rule.match_type,
                similarity=0.0,
            ))
            continue
        results.append(compare(rule.comparator, a, b, field_name=rule.field))
    return results


def calculate_total_match_score(
    results: Iterable[MatchFieldResult],
    config: MatchingConfig,
) -> float:
    """
    Weighted average of field scores.

    Only fields present in both ``results`` and ``config.rules`` count;
    returns 0.0 when no weighted field is present.
    """
    weights = config.weights
    total_weight = 0.0
    weighted = 0.0
    for result in results:
        weight = weights.get(result.field_name)
        if weight is None:
            continue
        weighted += result.score * weight
        total_weight += weight

    if total_weight == 0:
        return 0.0
    return weighted / total_weight


def is_potential_duplicate(score: float, config: MatchingConfig) -> bool:
    return score >= config.minimum_score
