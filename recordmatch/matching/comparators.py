"""
Field comparators.

Each comparator is an explicit, tagged configuration object (a pydantic model
discriminated on ``match_type``) that knows how to score two scalar values.
Comparators never raise on malformed input: a value that cannot be read
degrades to a non-match (similarity 0.0) and is logged.
"""

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal, Optional, Union
import re

import structlog
from pydantic import BaseModel, ConfigDict, Field
from rapidfuzz.distance import Levenshtein

from ..models import MatchFieldResult, MatchType, NormalizerType

logger = structlog.get_logger()

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")

# American Soundex letter groups
_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


class MalformedValueError(ValueError):
    """A field value that cannot be interpreted by a comparator."""


# ============================================
# Normalizers
# ============================================

def normalize_text(value: str) -> str:
    """Case-fold, strip punctuation and collapse internal whitespace."""
    value = _PUNCTUATION.sub("", value.casefold())
    return _WHITESPACE.sub(" ", value).strip()


def normalize_name(value: str) -> str:
    """Keep letters and spaces only, lower-cased, single-spaced."""
    kept = "".join(ch for ch in value.casefold() if ch.isalpha() or ch.isspace())
    return _WHITESPACE.sub(" ", kept).strip()


def digits_only(value: str) -> str:
    """Strip everything but digits (SSN, phone numbers)."""
    return _NON_DIGITS.sub("", value)


_NORMALIZERS = {
    NormalizerType.LOWERCASE: lambda v: v.casefold(),
    NormalizerType.TRIM: lambda v: v.strip(),
    NormalizerType.REMOVE_PUNCTUATION: lambda v: _PUNCTUATION.sub("", v),
    NormalizerType.NORMALIZE_TEXT: normalize_text,
    NormalizerType.NORMALIZE_NAME: normalize_name,
    NormalizerType.NORMALIZE_SSN: digits_only,
    NormalizerType.NORMALIZE_PHONE: digits_only,
}


def apply_normalizer(normalizer: Optional[NormalizerType], value: Any) -> str:
    text = _as_text(value)
    if normalizer is None:
        return text
    return _NORMALIZERS[normalizer](text)


# ============================================
# Similarity primitives
# ============================================

def string_similarity(a: str, b: str) -> float:
    """
    Levenshtein similarity on case-folded strings.

    1 - distance / max(len(a), len(b)); two empty strings are identical,
    an empty string against a non-empty one scores 0.
    """
    a_folded = a.casefold()
    b_folded = b.casefold()
    if not a_folded and not b_folded:
        return 1.0
    if not a_folded or not b_folded:
        return 0.0
    distance = Levenshtein.distance(a_folded, b_folded)
    return 1.0 - distance / max(len(a_folded), len(b_folded))


def soundex(word: str) -> str:
    """American Soundex code of a single word ("" when it has no letters)."""
    letters = [ch for ch in word.casefold() if "a" <= ch <= "z"]
    if not letters:
        return ""

    first = letters[0]
    code = [first.upper()]
    previous = _SOUNDEX_CODES.get(first, "")
    for ch in letters[1:]:
        digit = _SOUNDEX_CODES.get(ch, "")
        if digit and digit != previous:
            code.append(digit)
        # h and w do not separate letters with the same code
        if ch not in "hw":
            previous = digit
        if len(code) == 4:
            break

    return "".join(code).ljust(4, "0")


def phonetic_key(value: str) -> str:
    """Soundex codes of each name token, space separated."""
    tokens = normalize_name(value).split()
    return " ".join(code for code in (soundex(t) for t in tokens) if code)


def parse_number(value: Any) -> Decimal:
    """Parse an int/float/Decimal/numeric string; booleans are rejected."""
    if isinstance(value, bool) or value is None:
        raise MalformedValueError(f"Not a number: {value!r}")
    try:
        number = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError) as e:
        raise MalformedValueError(f"Not a number: {value!r}") from e
    if not number.is_finite():
        raise MalformedValueError(f"Not a finite number: {value!r}")
    return number


def within_numeric_tolerance(
    a: Any,
    b: Any,
    absolute_tolerance: float = 0,
    relative_tolerance: float = 0,
) -> bool:
    """|a - b| <= max(absolute, relative * max(|a|, |b|))."""
    x = parse_number(a)
    y = parse_number(b)
    allowed = max(
        Decimal(str(absolute_tolerance)),
        Decimal(str(relative_tolerance)) * max(abs(x), abs(y)),
    )
    return abs(x - y) <= allowed


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


# ============================================
# Comparator configurations
# ============================================

class _Comparator(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def kind(self) -> MatchType:
        return MatchType(self.match_type)

    def similarity(self, a: Any, b: Any) -> float:
        raise NotImplementedError


class ExactComparator(_Comparator):
    """Equality without any transformation."""
    match_type: Literal["exact"] = "exact"

    def similarity(self, a: Any, b: Any) -> float:
        return 1.0 if a == b else 0.0


class NormalizedComparator(_Comparator):
    """Equality after canonicalization."""
    match_type: Literal["normalized"] = "normalized"
    normalizer: NormalizerType = NormalizerType.NORMALIZE_TEXT

    def similarity(self, a: Any, b: Any) -> float:
        left = apply_normalizer(self.normalizer, a)
        right = apply_normalizer(self.normalizer, b)
        if not left and not right and (a or b):
            # nothing survived canonicalization on either side
            raise MalformedValueError(f"No comparable content in {a!r} / {b!r}")
        return 1.0 if left == right else 0.0


class FuzzyComparator(_Comparator):
    """
    Edit-distance similarity. Similarities below ``min_similarity`` are
    reported as 0 so weak resemblance does not accumulate into a match.
    """
    match_type: Literal["fuzzy"] = "fuzzy"
    normalizer: Optional[NormalizerType] = None
    min_similarity: float = Field(default=0.0, ge=0, le=1)

    def similarity(self, a: Any, b: Any) -> float:
        score = string_similarity(
            apply_normalizer(self.normalizer, a),
            apply_normalizer(self.normalizer, b),
        )
        return score if score >= self.min_similarity else 0.0


class PhoneticComparator(_Comparator):
    """Soundex sound-alike match, binary."""
    match_type: Literal["phonetic"] = "phonetic"

    def similarity(self, a: Any, b: Any) -> float:
        left = phonetic_key(_as_text(a))
        right = phonetic_key(_as_text(b))
        if not left or not right:
            raise MalformedValueError(f"No letters to encode in {a!r} / {b!r}")
        return 1.0 if left == right else 0.0


class NumericToleranceComparator(_Comparator):
    """Numbers within an absolute or relative tolerance, binary."""
    match_type: Literal["numeric_tolerance"] = "numeric_tolerance"
    absolute_tolerance: float = Field(default=0.0, ge=0)
    relative_tolerance: float = Field(default=0.0, ge=0)

    def similarity(self, a: Any, b: Any) -> float:
        matched = within_numeric_tolerance(
            a, b, self.absolute_tolerance, self.relative_tolerance
        )
        return 1.0 if matched else 0.0


ComparatorConfig = Annotated[
    Union[
        ExactComparator,
        NormalizedComparator,
        FuzzyComparator,
        PhoneticComparator,
        NumericToleranceComparator,
    ],
    Field(discriminator="match_type"),
]


def compare(
    comparator: _Comparator,
    original: Any,
    candidate: Any,
    field_name: str = "",
) -> MatchFieldResult:
    """
    Compare two values with a comparator.

    Never raises: malformed values produce similarity 0.0 with the
    comparator's match type unchanged.
    """
    try:
        similarity = comparator.similarity(original, candidate)
    except Exception as e:
        logger.warning(
            "Comparator degraded to non-match",
            field=field_name,
            match_type=comparator.match_type,
            error=str(e),
        )
        similarity = 0.0

    return MatchFieldResult(
        field_name=field_name,
        original_value=original,
        candidate_value=candidate,
        match_type=comparator.kind,
        similarity=similarity,
    )
