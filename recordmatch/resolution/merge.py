"""
Merge Operator - consolidates a confirmed duplicate pair.

What happens to dependents and to the losing record is driven by a registry
of record category -> MergePlan, so adding a category only adds an entry.
Every re-pointer is the same (keep_id, merge_id, tenant) -> count operation.
All steps run inside one store transaction; the finding becomes MERGED only
when every step succeeded.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog

from ..errors import InvalidTransitionError, ValidationError
from ..models import DuplicateFinding, DuplicateStatus, MergeResult, RecordType
from ..store import FindingRepository, RecordRepository
from .workflow import can_merge, mark_finding_merged

logger = structlog.get_logger()


class LoserPolicy(str, Enum):
    """What happens to the record that is merged away."""
    SOFT_DELETE = "soft_delete"  # excluded from scans, kept for audit
    DEACTIVATE = "deactivate"  # retained but marked non-active


@dataclass(frozen=True)
class DependentRelation:
    """Records of ``record_type`` pointing at the merged entity through ``reference_field``."""
    name: str
    record_type: RecordType
    reference_field: str

    async def repoint(
        self,
        records: RecordRepository,
        keep_id: str,
        merge_id: str,
        tenant_id: str,
    ) -> int:
        return await records.repoint_dependents(
            tenant_id, self.record_type, self.reference_field, keep_id, merge_id
        )


@dataclass(frozen=True)
class MergePlan:
    dependents: Tuple[DependentRelation, ...] = ()
    loser_policy: LoserPolicy = LoserPolicy.SOFT_DELETE


EMPLOYEE_DEPENDENTS = (
    DependentRelation("contributions", RecordType.CONTRIBUTION, "employee_id"),
    DependentRelation("deferral_elections", RecordType.ELECTION, "employee_id"),
    DependentRelation("loans", RecordType.LOAN, "employee_id"),
)

MERGE_PLANS: Dict[RecordType, MergePlan] = {
    RecordType.CONTRIBUTION: MergePlan(),
    RecordType.ELECTION: MergePlan(),
    RecordType.LOAN: MergePlan(),
    RecordType.EMPLOYEE: MergePlan(
        dependents=EMPLOYEE_DEPENDENTS,
        loser_policy=LoserPolicy.DEACTIVATE,
    ),
}


def validate_merge_pair(finding: DuplicateFinding, keep_id: str, merge_id: str) -> None:
    """keep/merge must be the finding's pair, in either order."""
    if keep_id == merge_id or {keep_id, merge_id} != set(finding.pair):
        raise ValidationError(
            "Keep and merge record IDs must be the finding's record pair",
            details={
                "keep_record_id": keep_id,
                "merge_record_id": merge_id,
                "original_record_id": finding.original_record_id,
                "duplicate_record_id": finding.duplicate_record_id,
            },
        )


class MergeOperator:
    """Executes merges for confirmed findings."""

    def __init__(
        self,
        records: RecordRepository,
        findings: FindingRepository,
        plans: Optional[Mapping[RecordType, MergePlan]] = None,
    ):
        self.records = records
        self.findings = findings
        self.plans = dict(plans or MERGE_PLANS)

    async def merge(
        self,
        finding: DuplicateFinding,
        keep_id: str,
        merge_id: str,
        actor: str,
        field_overrides: Optional[Mapping[str, Any]] = None,
    ) -> MergeResult:
        """
        Merge ``merge_id`` into ``keep_id``.

        Raises:
            ValidationError: IDs are not the finding's pair
            InvalidTransitionError: finding is not CONFIRMED_DUPLICATE

        Returns:
            MergeResult; on a failed step ``success`` is False, ``errors``
            names the step and the finding is left unchanged.
        """
        validate_merge_pair(finding, keep_id, merge_id)
        if not can_merge(finding.status):
            raise InvalidTransitionError("finding", finding.status, DuplicateStatus.MERGED)

        plan = self.plans.get(finding.record_type)
        if plan is None:
            raise ValidationError(f"No merge plan for {finding.record_type.value} records")

        result = MergeResult(success=False, merged_record_id=keep_id, deleted_record_id=merge_id)
        tenant_id = finding.tenant_id
        step = "start"

        try:
            async with self.records.transaction():
                for relation in plan.dependents:
                    step = f"repoint {relation.name}"
                    count = await relation.repoint(self.records, keep_id, merge_id, tenant_id)
                    result.relations_by_type[relation.name] = count
                    result.relations_updated += count
                    result.fields_updated.append(relation.name)

                if field_overrides:
                    step = "apply field overrides"
                    await self.records.update_record_fields(
                        tenant_id, keep_id, dict(field_overrides), actor
                    )
                    result.fields_updated.extend(field_overrides.keys())

                step = f"{plan.loser_policy.value} merged record"
                if plan.loser_policy == LoserPolicy.DEACTIVATE:
                    await self.records.deactivate_record(tenant_id, merge_id, actor)
                else:
                    await self.records.soft_delete_record(tenant_id, merge_id, actor)

                step = "mark finding merged"
                merged = mark_finding_merged(replace(finding), actor)
                await self.findings.update_finding(
                    merged, expected_status=DuplicateStatus.CONFIRMED_DUPLICATE
                )
        except Exception as e:
            logger.exception(
                "Merge failed",
                finding_id=finding.id,
                record_type=finding.record_type.value,
                step=step,
            )
            result.relations_updated = 0
            result.relations_by_type = {}
            result.fields_updated = []
            result.errors.append(f"{step}: {e}")
            return result

        result.success = True
        logger.info(
            "Merge complete",
            finding_id=finding.id,
            record_type=finding.record_type.value,
            kept=keep_id,
            merged=merge_id,
            relations_updated=result.relations_updated,
        )
        return result
