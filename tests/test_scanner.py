"""
Tests for the Duplicate Scanner.
"""

import pytest

from recordmatch.matching import (
    DEFAULT_CONTRIBUTION_MATCHING,
    DEFAULT_EMPLOYEE_MATCHING,
    DuplicateScanner,
)

from .conftest import later, make_contribution, make_employee


@pytest.fixture
def contribution_scanner():
    return DuplicateScanner(DEFAULT_CONTRIBUTION_MATCHING)


class TestDuplicateScanner:
    """Test suite for blocking and pairwise scoring."""

    def test_identical_contributions_are_duplicates(self, contribution_scanner):
        """Same employee, date and amounts score 1.0."""
        records = [
            make_contribution("c1", created_at=later(0)),
            make_contribution("c2", created_at=later(5)),
        ]

        result = contribution_scanner.process(records)

        assert result.records_scanned == 2
        assert result.pairs_compared == 1
        assert len(result.duplicates) == 1
        pair = result.duplicates[0]
        assert pair.score == 1.0
        assert pair.is_duplicate
        assert pair.original.id == "c1"
        assert pair.candidate.id == "c2"

    def test_older_record_becomes_original(self, contribution_scanner):
        records = [
            make_contribution("newer", created_at=later(10)),
            make_contribution("older", created_at=later(0)),
        ]

        pair = contribution_scanner.process(records).duplicates[0]

        assert pair.original.id == "older"
        assert pair.candidate.id == "newer"

    def test_blocking_separates_employees(self, contribution_scanner):
        """Records in different blocking buckets are never compared."""
        records = [
            make_contribution("c1", employee_id="E1"),
            make_contribution("c2", employee_id="E2"),
            make_contribution("c3", employee_id="E3"),
        ]

        result = contribution_scanner.process(records)

        assert result.buckets == 3
        assert result.pairs_compared == 0
        assert result.duplicates == []

    def test_missing_blocking_value_is_unblocked(self, contribution_scanner):
        records = [
            make_contribution("c1"),
            make_contribution("c2", employee_id=None),
        ]

        result = contribution_scanner.process(records)

        assert result.records_scanned == 2
        assert result.unblocked_records == 1
        assert result.pairs_compared == 0

    def test_amount_difference_below_threshold(self, contribution_scanner):
        """A pre-tax amount off by more than a cent drops the score below 0.9."""
        records = [
            make_contribution("c1", pre_tax=50000),
            make_contribution("c2", pre_tax=45000, created_at=later(1)),
        ]

        result = contribution_scanner.process(records)

        assert result.pairs_compared == 1
        assert result.duplicates == []
        scored = contribution_scanner.score_pair(*records)
        assert scored.score == pytest.approx(0.85)
        assert not scored.is_duplicate

    def test_weak_fields_left_out_of_match_fields(self, contribution_scanner):
        a = make_contribution("c1", pre_tax=50000)
        b = make_contribution("c2", pre_tax=45000)

        scored = contribution_scanner.score_pair(a, b)

        reported = [f.field_name for f in scored.match_fields]
        assert "employee_pre_tax" not in reported
        assert "employee_id" in reported

    def test_pair_filter_limits_comparisons(self, contribution_scanner):
        records = [
            make_contribution("c1", created_at=later(0)),
            make_contribution("c2", created_at=later(1)),
            make_contribution("c3", created_at=later(2)),
        ]

        result = contribution_scanner.process(
            records, pair_filter=lambda a, b: "c3" in (a.id, b.id)
        )

        assert result.pairs_compared == 2
        assert {p.candidate.id for p in result.duplicates} == {"c3"}

    def test_employee_scan_with_formatting_differences(self):
        scanner = DuplicateScanner(DEFAULT_EMPLOYEE_MATCHING)
        records = [
            make_employee("e1", ssn="123-45-6789", last_name="Gonzalez"),
            make_employee("e2", ssn="123456789", last_name="GONZALEZ", created_at=later(3)),
            make_employee("e3", ssn="987-65-4321", first_name="Juan", last_name="Perez"),
        ]

        result = scanner.process(records)

        assert result.pairs_compared == 3
        assert [(p.original.id, p.candidate.id) for p in result.duplicates] == [("e1", "e2")]


class TestFindBestMatch:

    def test_returns_highest_score_in_bucket(self, contribution_scanner):
        existing = [
            make_contribution("weak", pre_tax=45000),
            make_contribution("strong", pre_tax=50000),
            make_contribution("other", employee_id="E2"),
        ]
        candidate = make_contribution("new")

        best = contribution_scanner.find_best_match(candidate, existing)

        assert best.original.id == "strong"
        assert best.score == 1.0
        assert best.is_duplicate

    def test_no_match_without_bucket_mates(self, contribution_scanner):
        existing = [make_contribution("other", employee_id="E2")]
        candidate = make_contribution("new")

        assert contribution_scanner.find_best_match(candidate, existing) is None

    def test_candidate_is_not_matched_against_itself(self, contribution_scanner):
        record = make_contribution("c1")
        assert contribution_scanner.find_best_match(record, [record]) is None
