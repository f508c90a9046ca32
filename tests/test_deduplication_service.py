"""
Tests for the deduplication service: scans, checks, resolution and merges.
"""

import asyncio
from datetime import timedelta

import pytest

from recordmatch.config import Settings
from recordmatch.errors import InvalidTransitionError, NotFoundError, ValidationError
from recordmatch.models import (
    AuditAction,
    DuplicateStatus,
    FindingFilters,
    NotificationType,
    PageRequest,
    RecordType,
    ScanOptions,
    ScanScope,
)
from recordmatch.services import DeduplicationService
from recordmatch.store import InMemoryStore

from .conftest import (
    OTHER_TENANT,
    PAYROLL_DATE,
    TENANT,
    later,
    make_contribution,
    make_employee,
)


class InterleavingStore(InMemoryStore):
    """Pair lookups wait until ``scans`` callers have looked before any returns."""

    def __init__(self, scans=2):
        super().__init__()
        self.pending_lookups = scans
        self.all_looked = asyncio.Event()

    async def find_pair_findings(self, *args, **kwargs):
        found = await super().find_pair_findings(*args, **kwargs)
        self.pending_lookups -= 1
        if self.pending_lookups <= 0:
            self.all_looked.set()
        await self.all_looked.wait()
        return found


def seed_duplicate_contributions(store):
    store.add_records([
        make_contribution("c1", created_at=later(0)),
        make_contribution("c2", created_at=later(1)),
        make_contribution("c3", employee_id="E2", created_at=later(2)),
    ])


class TestScan:
    """Test suite for duplicate scans."""

    @pytest.mark.asyncio
    async def test_scan_creates_findings(self, store, dedup_service, audit_sink):
        seed_duplicate_contributions(store)

        result = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        assert result.records_scanned == 3
        assert result.potential_duplicates_found == 1
        assert result.new_duplicates == 1
        assert result.existing_duplicates == 0

        page = await dedup_service.list_findings(TENANT)
        assert page.total == 1
        finding = page.items[0]
        assert finding.original_record_id == "c1"
        assert finding.duplicate_record_id == "c2"
        assert finding.match_score == 1.0
        assert finding.status == DuplicateStatus.POTENTIAL_DUPLICATE

        assert audit_sink.entries[-1].action == AuditAction.DUPLICATE_SCAN_COMPLETED

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(self, store, dedup_service):
        seed_duplicate_contributions(store)

        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)
        second = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        assert second.potential_duplicates_found == 1
        assert second.new_duplicates == 0
        assert second.existing_duplicates == 1
        assert (await dedup_service.list_findings(TENANT)).total == 1

    @pytest.mark.asyncio
    async def test_rejected_pair_is_reported_again(self, store, dedup_service):
        seed_duplicate_contributions(store)
        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)
        finding = (await dedup_service.list_findings(TENANT)).items[0]
        await dedup_service.resolve_finding(
            finding.id, TENANT, DuplicateStatus.NOT_DUPLICATE, None, "reviewer"
        )

        result = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        assert result.new_duplicates == 1

    @pytest.mark.asyncio
    async def test_dry_run_persists_nothing(self, store, dedup_service, audit_sink):
        seed_duplicate_contributions(store)

        result = await dedup_service.scan(
            TENANT, RecordType.CONTRIBUTION, options=ScanOptions(dry_run=True)
        )

        assert result.dry_run
        assert result.new_duplicates == 1
        assert (await dedup_service.list_findings(TENANT)).total == 0
        assert await store.last_scan_at(TENANT) is None
        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_unscanned_scope_skips_old_pairs(self, store, dedup_service):
        seed_duplicate_contributions(store)
        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)
        finding = (await dedup_service.list_findings(TENANT)).items[0]
        await dedup_service.resolve_finding(
            finding.id, TENANT, DuplicateStatus.NOT_DUPLICATE, None, "reviewer"
        )

        result = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION, ScanScope.UNSCANNED)

        assert result.pairs_compared == 0
        assert result.new_duplicates == 0

    @pytest.mark.asyncio
    async def test_min_score_and_field_overrides(self, store, dedup_service):
        store.add_records([
            make_contribution("c1", pre_tax=50000),
            make_contribution("c2", pre_tax=45000, created_at=later(1)),
        ])

        strict = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION, options=ScanOptions(dry_run=True))
        relaxed = await dedup_service.scan(
            TENANT, RecordType.CONTRIBUTION, options=ScanOptions(min_score=0.8, dry_run=True)
        )
        subset = await dedup_service.scan(
            TENANT,
            RecordType.CONTRIBUTION,
            options=ScanOptions(fields=["employee_id", "payroll_date"], dry_run=True),
        )

        assert strict.potential_duplicates_found == 0
        assert relaxed.potential_duplicates_found == 1
        assert subset.potential_duplicates_found == 1

    @pytest.mark.asyncio
    async def test_pay_dates_differ_within_employee(self, store, dedup_service):
        """Contributions are blocked by employee only, so overrides can reach them."""
        store.add_records([
            make_contribution("c1"),
            make_contribution(
                "c2", payroll_date=PAYROLL_DATE + timedelta(days=14), created_at=later(1)
            ),
        ])

        default = await dedup_service.scan(
            TENANT, RecordType.CONTRIBUTION, options=ScanOptions(dry_run=True)
        )
        subset = await dedup_service.scan(
            TENANT,
            RecordType.CONTRIBUTION,
            options=ScanOptions(fields=["employee_id", "employee_pre_tax"], dry_run=True),
        )
        relaxed = await dedup_service.scan(
            TENANT, RecordType.CONTRIBUTION, options=ScanOptions(min_score=0.7, dry_run=True)
        )

        assert default.pairs_compared == 1
        assert default.potential_duplicates_found == 0
        assert subset.potential_duplicates_found == 1
        assert relaxed.potential_duplicates_found == 1

    @pytest.mark.asyncio
    async def test_injected_settings_drive_reported_fields(self, store, audit_sink):
        service = DeduplicationService(
            store, store, audit_sink, settings=Settings(field_report_threshold=0.0)
        )
        store.add_records([
            make_contribution("c1", pre_tax=50000),
            make_contribution("c2", pre_tax=45000, created_at=later(1)),
        ])

        await service.scan(TENANT, RecordType.CONTRIBUTION, options=ScanOptions(min_score=0.8))

        finding = (await service.list_findings(TENANT)).items[0]
        assert [f.field_name for f in finding.match_fields] == [
            "employee_id",
            "payroll_date",
            "employee_pre_tax",
            "employee_roth",
            "employer_match",
        ]

    @pytest.mark.asyncio
    async def test_concurrent_scans_create_one_finding(self, audit_sink):
        store = InterleavingStore()
        service = DeduplicationService(store, store, audit_sink)
        seed_duplicate_contributions(store)

        first, second = await asyncio.gather(
            service.scan(TENANT, RecordType.CONTRIBUTION),
            service.scan(TENANT, RecordType.CONTRIBUTION),
        )

        assert first.new_duplicates + second.new_duplicates == 1
        assert first.existing_duplicates + second.existing_duplicates == 1
        assert (await service.list_findings(TENANT)).total == 1

    @pytest.mark.asyncio
    async def test_invalid_overrides_rejected(self, dedup_service):
        with pytest.raises(ValidationError):
            await dedup_service.scan(
                TENANT, RecordType.CONTRIBUTION, options=ScanOptions(fields=["shoe_size"])
            )
        with pytest.raises(ValidationError):
            await dedup_service.scan(
                TENANT, RecordType.CONTRIBUTION, options=ScanOptions(min_score=1.5)
            )

    @pytest.mark.asyncio
    async def test_scan_notifies_on_new_findings(self, store, dedup_service, notification_sink):
        seed_duplicate_contributions(store)

        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)
        await dedup_service.notifications.drain()

        assert [e.event_type for e in notification_sink.events] == [
            NotificationType.DUPLICATES_FOUND
        ]

    @pytest.mark.asyncio
    async def test_scan_is_tenant_scoped(self, store, dedup_service):
        store.add_records([
            make_contribution("c1"),
            make_contribution("c2", tenant_id=OTHER_TENANT),
        ])

        result = await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        assert result.records_scanned == 1
        assert result.potential_duplicates_found == 0


class TestCheckDuplicate:

    @pytest.mark.asyncio
    async def test_candidate_matching_existing_record(self, store, dedup_service):
        store.add_records([make_employee("e1")])

        result = await dedup_service.check_duplicate(TENANT, RecordType.EMPLOYEE, {
            "ssn": "123456789",
            "first_name": "MARIA",
            "last_name": "Gonzalez",
            "date_of_birth": make_employee("x").get("date_of_birth"),
            "employee_number": "1001",
        })

        assert result.is_duplicate
        assert result.existing_record_id == "e1"
        assert result.match_score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_candidate_without_match(self, store, dedup_service):
        store.add_records([make_contribution("c1")])

        result = await dedup_service.check_duplicate(
            TENANT, RecordType.CONTRIBUTION, make_contribution("new", employee_id="E9")
        )

        assert result.is_duplicate is False
        assert result.existing_record_id is None


class TestFindingResolution:

    async def scanned_finding(self, store, dedup_service):
        seed_duplicate_contributions(store)
        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)
        return (await dedup_service.list_findings(TENANT)).items[0]

    @pytest.mark.asyncio
    async def test_confirm_then_merge(self, store, dedup_service, audit_sink):
        finding = await self.scanned_finding(store, dedup_service)

        confirmed = await dedup_service.resolve_finding(
            finding.id, TENANT, DuplicateStatus.CONFIRMED_DUPLICATE, "same payroll run", "reviewer"
        )
        result = await dedup_service.merge_finding_records(
            finding.id, TENANT, "c1", "c2", "reviewer"
        )

        assert confirmed.status == DuplicateStatus.CONFIRMED_DUPLICATE
        assert confirmed.resolved_by == "reviewer"
        assert result.success
        detail = await dedup_service.get_finding(TENANT, finding.id)
        assert detail.finding.status == DuplicateStatus.MERGED
        assert [e.action for e in audit_sink.entries[-2:]] == [
            AuditAction.RESOLVE_DEDUPLICATION,
            AuditAction.MERGE_DUPLICATES,
        ]

    @pytest.mark.asyncio
    async def test_merge_requires_confirmation(self, store, dedup_service):
        finding = await self.scanned_finding(store, dedup_service)

        with pytest.raises(InvalidTransitionError):
            await dedup_service.merge_finding_records(finding.id, TENANT, "c1", "c2", "reviewer")

    @pytest.mark.asyncio
    async def test_protected_override_rejected(self, store, dedup_service):
        finding = await self.scanned_finding(store, dedup_service)
        await dedup_service.resolve_finding(
            finding.id, TENANT, DuplicateStatus.CONFIRMED_DUPLICATE, None, "reviewer"
        )

        with pytest.raises(ValidationError):
            await dedup_service.merge_finding_records(
                finding.id, TENANT, "c1", "c2", "reviewer", field_overrides={"tenant_id": "x"}
            )

    @pytest.mark.asyncio
    async def test_resolved_finding_cannot_be_resolved_again(self, store, dedup_service):
        finding = await self.scanned_finding(store, dedup_service)
        await dedup_service.resolve_finding(
            finding.id, TENANT, DuplicateStatus.NOT_DUPLICATE, None, "reviewer"
        )

        with pytest.raises(InvalidTransitionError):
            await dedup_service.resolve_finding(
                finding.id, TENANT, DuplicateStatus.CONFIRMED_DUPLICATE, None, "reviewer"
            )

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_finding(self, store, dedup_service):
        finding = await self.scanned_finding(store, dedup_service)

        with pytest.raises(NotFoundError):
            await dedup_service.get_finding(OTHER_TENANT, finding.id)
        with pytest.raises(NotFoundError):
            await dedup_service.resolve_finding(
                finding.id, OTHER_TENANT, DuplicateStatus.NOT_DUPLICATE, None, "reviewer"
            )

    @pytest.mark.asyncio
    async def test_finding_detail_previews(self, store, dedup_service):
        finding = await self.scanned_finding(store, dedup_service)

        detail = await dedup_service.get_finding(TENANT, finding.id)

        assert detail.original_record.id == "c1"
        assert detail.original_record.display_name == "Contribution for E1 on 2024-03-15"
        assert detail.duplicate_record.key_fields["employee_pre_tax"] == 50000


class TestListingAndStats:

    @pytest.mark.asyncio
    async def test_filters_and_paging(self, store, dedup_service):
        store.add_records([
            make_contribution(f"c{i}", employee_id=f"E{i // 2}", created_at=later(i))
            for i in range(6)
        ])
        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        page = await dedup_service.list_findings(TENANT, page=PageRequest(page=2, limit=2))
        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.items) == 1

        confirmed = await dedup_service.list_findings(
            TENANT, FindingFilters(status=DuplicateStatus.CONFIRMED_DUPLICATE)
        )
        assert confirmed.total == 0

    @pytest.mark.asyncio
    async def test_stats(self, store, dedup_service):
        seed_duplicate_contributions(store)
        await dedup_service.scan(TENANT, RecordType.CONTRIBUTION)

        stats = await dedup_service.get_stats(TENANT)

        assert stats.total == 1
        assert stats.potential_duplicates == 1
        assert stats.pending_review == 1
        assert stats.by_record_type == {"contribution": 1}
        assert stats.average_match_score == 1.0
        assert stats.last_scan_at is not None
