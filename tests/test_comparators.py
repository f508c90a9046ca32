"""
Tests for field comparators.
"""

from datetime import date
from decimal import Decimal

import pytest

from recordmatch.matching.comparators import (
    ExactComparator,
    FuzzyComparator,
    NormalizedComparator,
    NumericToleranceComparator,
    PhoneticComparator,
    apply_normalizer,
    compare,
    normalize_name,
    parse_number,
    soundex,
    string_similarity,
    within_numeric_tolerance,
    MalformedValueError,
)
from recordmatch.models import MatchType, NormalizerType


class TestStringSimilarity:
    """Levenshtein similarity on case-folded strings."""

    def test_kitten_sitting(self):
        assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_empty_strings_are_identical(self):
        assert string_similarity("", "") == 1.0

    def test_empty_against_non_empty(self):
        assert string_similarity("abc", "") == 0.0
        assert string_similarity("", "abc") == 0.0

    def test_case_folded(self):
        assert string_similarity("STRASSE", "strasse") == 1.0

    def test_symmetric(self):
        assert string_similarity("Johnathan", "Jonathan") == string_similarity("Jonathan", "Johnathan")


class TestNormalizers:

    def test_ssn_digits_only(self):
        assert apply_normalizer(NormalizerType.NORMALIZE_SSN, "123-45-6789") == "123456789"

    def test_phone_digits_only(self):
        assert apply_normalizer(NormalizerType.NORMALIZE_PHONE, "(555) 010-2030") == "5550102030"

    def test_name_keeps_letters_and_single_spaces(self):
        assert normalize_name("  O'Brien,   Mary-Kate ") == "obrien marykate"

    def test_text_strips_punctuation_and_collapses_spaces(self):
        assert apply_normalizer(NormalizerType.NORMALIZE_TEXT, " Acme,  Inc. ") == "acme inc"

    def test_dates_are_isoformatted(self):
        assert apply_normalizer(None, date(2024, 1, 2)) == "2024-01-02"


class TestSoundex:

    @pytest.mark.parametrize("name,code", [
        ("Robert", "R163"),
        ("Rupert", "R163"),
        ("Ashcraft", "A261"),
        ("Tymczak", "T522"),
        ("Pfister", "P236"),
        ("Lee", "L000"),
    ])
    def test_reference_codes(self, name, code):
        assert soundex(name) == code

    def test_no_letters(self):
        assert soundex("123") == ""


class TestComparators:

    def test_exact(self):
        result = compare(ExactComparator(), "E1", "E1", field_name="employee_id")
        assert result.similarity == 1.0
        assert result.match_type == MatchType.EXACT
        assert result.field_name == "employee_id"

        assert compare(ExactComparator(), "E1", "e1").similarity == 0.0

    def test_normalized_ssn(self):
        comparator = NormalizedComparator(normalizer=NormalizerType.NORMALIZE_SSN)
        assert compare(comparator, "123-45-6789", "123 45 6789").similarity == 1.0
        assert compare(comparator, "123-45-6789", "123-45-6780").similarity == 0.0

    def test_fuzzy_floor(self):
        comparator = FuzzyComparator(min_similarity=0.8)
        assert compare(comparator, "Catherine", "Katherine").similarity == pytest.approx(8 / 9)
        assert compare(comparator, "Jon", "John").similarity == 0.0

    def test_phonetic(self):
        comparator = PhoneticComparator()
        assert compare(comparator, "Smith", "Smyth").similarity == 1.0
        assert compare(comparator, "Smith", "Jones").similarity == 0.0

    def test_numeric_tolerance_absolute(self):
        comparator = NumericToleranceComparator(absolute_tolerance=1)
        assert compare(comparator, 50000, 50001).similarity == 1.0
        assert compare(comparator, 50000, 50002).similarity == 0.0

    def test_numeric_tolerance_relative(self):
        comparator = NumericToleranceComparator(relative_tolerance=0.01)
        # 1% of max(|a|, |b|) = 101
        assert compare(comparator, 10000, 10100).similarity == 1.0
        assert compare(comparator, 10000, 10200).similarity == 0.0

    def test_numeric_tolerance_accepts_numeric_strings(self):
        assert within_numeric_tolerance("1,000.50", Decimal("1000.5"))

    @pytest.mark.parametrize("comparator,a,b", [
        (NumericToleranceComparator(absolute_tolerance=1), "abc", 10),
        (NumericToleranceComparator(absolute_tolerance=1), True, 1),
        (NumericToleranceComparator(absolute_tolerance=1), float("nan"), 1),
        (PhoneticComparator(), "123", "456"),
        (NormalizedComparator(normalizer=NormalizerType.NORMALIZE_SSN), "n/a", "unknown"),
    ])
    def test_malformed_input_degrades_to_non_match(self, comparator, a, b):
        result = compare(comparator, a, b, field_name="field")
        assert result.similarity == 0.0
        assert result.match_type == comparator.kind

    def test_parse_number_rejects_booleans(self):
        with pytest.raises(MalformedValueError):
            parse_number(False)

    @pytest.mark.parametrize("comparator,a,b", [
        (ExactComparator(), "2024-01-01", "2024-01-02"),
        (NormalizedComparator(), "Acme Inc", "ACME, inc."),
        (NumericToleranceComparator(absolute_tolerance=5), 100, 104),
        (FuzzyComparator(), "Gonzalez", "Gonzales"),
        (PhoneticComparator(), "Robert", "Rupert"),
    ])
    def test_comparators_are_symmetric(self, comparator, a, b):
        assert compare(comparator, a, b).similarity == compare(comparator, b, a).similarity
