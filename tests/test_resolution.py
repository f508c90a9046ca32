"""
Tests for the resolution workflow and the Merge Operator.
"""

import pytest

from recordmatch.errors import InvalidTransitionError, ValidationError
from recordmatch.models import (
    DuplicateFinding,
    DuplicateStatus,
    MatchStatus,
    ReconciliationItem,
    ReconciliationReport,
    ReconciliationStatus,
    RecordType,
    ResolutionAction,
)
from recordmatch.resolution import (
    MergeOperator,
    mark_finding_merged,
    resolve_finding,
    resolve_item,
    should_auto_reconcile,
)
from recordmatch.store import InMemoryStore

from .conftest import TENANT, make_contribution, make_employee


def make_finding(status=DuplicateStatus.POTENTIAL_DUPLICATE, record_type=RecordType.EMPLOYEE,
                 original="keep", duplicate="lose"):
    return DuplicateFinding(
        tenant_id=TENANT,
        original_record_id=original,
        duplicate_record_id=duplicate,
        record_type=record_type,
        match_score=0.95,
        status=status,
    )


class FailingDeactivateStore(InMemoryStore):
    """Store whose deactivate step always fails."""

    async def deactivate_record(self, tenant_id, record_id, actor):
        raise RuntimeError("database unavailable")


class TestFindingWorkflow:

    @pytest.mark.parametrize("target", [
        DuplicateStatus.CONFIRMED_DUPLICATE,
        DuplicateStatus.NOT_DUPLICATE,
    ])
    def test_reviewer_decisions(self, target):
        finding = resolve_finding(make_finding(), target, "reviewer", notes="checked")

        assert finding.status == target
        assert finding.resolved_by == "reviewer"
        assert finding.resolved_at is not None
        assert finding.resolution_notes == "checked"

    @pytest.mark.parametrize("current,target", [
        (DuplicateStatus.POTENTIAL_DUPLICATE, DuplicateStatus.MERGED),
        (DuplicateStatus.POTENTIAL_DUPLICATE, DuplicateStatus.POTENTIAL_DUPLICATE),
        (DuplicateStatus.NOT_DUPLICATE, DuplicateStatus.CONFIRMED_DUPLICATE),
        (DuplicateStatus.CONFIRMED_DUPLICATE, DuplicateStatus.NOT_DUPLICATE),
        (DuplicateStatus.MERGED, DuplicateStatus.POTENTIAL_DUPLICATE),
    ])
    def test_invalid_transitions(self, current, target):
        finding = make_finding(status=current)
        with pytest.raises(InvalidTransitionError):
            resolve_finding(finding, target, "reviewer")
        assert finding.status == current

    def test_merged_only_from_confirmed(self):
        with pytest.raises(InvalidTransitionError):
            mark_finding_merged(make_finding(), "reviewer")
        merged = mark_finding_merged(
            make_finding(status=DuplicateStatus.CONFIRMED_DUPLICATE), "reviewer"
        )
        assert merged.status == DuplicateStatus.MERGED

    def test_finding_cannot_pair_record_with_itself(self):
        with pytest.raises(ValueError):
            make_finding(original="same", duplicate="same")


class TestItemWorkflow:

    def test_resolve_discrepancy(self):
        item = ReconciliationItem(match_status=MatchStatus.SOURCE_ONLY)
        resolve_item(item, ResolutionAction.ADJUSTED, "reviewer", notes="posted")

        assert item.is_resolved
        assert not item.is_open
        assert item.resolution_action == ResolutionAction.ADJUSTED

    def test_matched_item_cannot_be_resolved(self):
        with pytest.raises(ValidationError):
            resolve_item(ReconciliationItem(), ResolutionAction.IGNORED, "reviewer")

    def test_item_resolves_once(self):
        item = ReconciliationItem(match_status=MatchStatus.AMOUNT_MISMATCH)
        resolve_item(item, ResolutionAction.IGNORED, "reviewer")
        with pytest.raises(ValidationError):
            resolve_item(item, ResolutionAction.ADJUSTED, "reviewer")

    def test_auto_reconcile_condition(self):
        report = ReconciliationReport(status=ReconciliationStatus.DISCREPANCIES_FOUND)
        assert should_auto_reconcile(report, 0)
        assert not should_auto_reconcile(report, 1)
        report.status = ReconciliationStatus.FAILED
        assert not should_auto_reconcile(report, 0)


class TestMergeOperator:
    """Test suite for merging confirmed pairs."""

    async def seed_employee_merge(self, store):
        store.add_records([
            make_employee("keep"),
            make_employee("lose", ssn="123456789"),
            make_contribution("c1", employee_id="lose"),
            make_contribution("c2", employee_id="lose"),
            make_contribution("el1", employee_id="lose", record_type=RecordType.ELECTION),
            make_contribution("c3", employee_id="keep"),
        ])
        finding = make_finding(status=DuplicateStatus.CONFIRMED_DUPLICATE)
        return await store.add_finding(finding)

    @pytest.mark.asyncio
    async def test_employee_merge_repoints_dependents(self, store):
        finding = await self.seed_employee_merge(store)

        result = await MergeOperator(store, store).merge(finding, "keep", "lose", "reviewer")

        assert result.success
        assert result.relations_updated == 3
        assert result.relations_by_type == {
            "contributions": 2,
            "deferral_elections": 1,
            "loans": 0,
        }
        assert (await store.get_record(TENANT, "c1")).get("employee_id") == "keep"
        assert (await store.get_record(TENANT, "el1")).get("employee_id") == "keep"

        loser = await store.get_record(TENANT, "lose")
        assert loser.is_active is False
        assert loser.deleted_at is None

        stored = await store.get_finding(TENANT, finding.id)
        assert stored.status == DuplicateStatus.MERGED

    @pytest.mark.asyncio
    async def test_contribution_merge_soft_deletes_loser(self, store):
        store.add_records([make_contribution("keep"), make_contribution("lose")])
        finding = await store.add_finding(make_finding(
            status=DuplicateStatus.CONFIRMED_DUPLICATE, record_type=RecordType.CONTRIBUTION
        ))

        result = await MergeOperator(store, store).merge(
            finding, "keep", "lose", "reviewer", field_overrides={"employer_match": 3000}
        )

        assert result.success
        assert result.fields_updated == ["employer_match"]
        assert (await store.get_record(TENANT, "lose")).deleted_at is not None
        assert (await store.get_record(TENANT, "keep")).get("employer_match") == 3000
        assert [r.id for r in await store.fetch_records(TENANT, RecordType.CONTRIBUTION)] == ["keep"]

    @pytest.mark.asyncio
    async def test_keep_and_merge_may_be_swapped(self, store):
        finding = await self.seed_employee_merge(store)

        result = await MergeOperator(store, store).merge(finding, "lose", "keep", "reviewer")

        assert result.success
        assert result.relations_by_type["contributions"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("keep_id,merge_id", [
        ("keep", "keep"),
        ("keep", "stranger"),
    ])
    async def test_ids_must_be_the_finding_pair(self, store, keep_id, merge_id):
        finding = await self.seed_employee_merge(store)

        with pytest.raises(ValidationError):
            await MergeOperator(store, store).merge(finding, keep_id, merge_id, "reviewer")

        stored = await store.get_finding(TENANT, finding.id)
        assert stored.status == DuplicateStatus.CONFIRMED_DUPLICATE
        assert (await store.get_record(TENANT, "c1")).get("employee_id") == "lose"

    @pytest.mark.asyncio
    async def test_requires_confirmed_finding(self, store):
        finding = await store.add_finding(make_finding())

        with pytest.raises(InvalidTransitionError):
            await MergeOperator(store, store).merge(finding, "keep", "lose", "reviewer")

    @pytest.mark.asyncio
    async def test_failed_step_rolls_back(self):
        store = FailingDeactivateStore()
        finding = await self.seed_employee_merge(store)

        result = await MergeOperator(store, store).merge(finding, "keep", "lose", "reviewer")

        assert result.success is False
        assert result.relations_updated == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("deactivate merged record")

        # Dependents re-pointed before the failure are restored
        assert (await store.get_record(TENANT, "c1")).get("employee_id") == "lose"
        assert (await store.get_record(TENANT, "lose")).is_active is True
        stored = await store.get_finding(TENANT, finding.id)
        assert stored.status == DuplicateStatus.CONFIRMED_DUPLICATE
