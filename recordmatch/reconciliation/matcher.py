"""
Reconciliation Matcher - key-based partition of source and destination records.

Source records are indexed by matching key; each destination record consumes
the next unconsumed source record with the same key. Pairs are then split by
amount tolerance into matched and amount-mismatched. Every record lands in
exactly one bucket.
"""

from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..models import (
    MatchedRecordPair,
    MatchOutcome,
    MatchStatus,
    ReconcilableRecord,
    ReconciliationItem,
    ReconciliationStatus,
    ReconciliationSummary,
    ReconciliationTolerance,
)

logger = structlog.get_logger()

SOURCE_ONLY_REASON = "Record exists in source but not in destination"
DESTINATION_ONLY_REASON = "Record exists in destination but not in source"


def is_within_tolerance(
    source_amount: int,
    destination_amount: int,
    tolerance: ReconciliationTolerance,
) -> bool:
    """
    Absolute OR percentage tolerance, whichever is satisfied.

    The percentage is taken against the source amount; a zero source makes
    the percentage term zero, so such pairs are always within tolerance.
    """
    abs_diff = abs(source_amount - destination_amount)
    if abs_diff <= tolerance.amount_tolerance_cents:
        return True
    percentage = abs_diff / abs(source_amount) if source_amount != 0 else 0.0
    return percentage <= tolerance.percentage_tolerance


def calculate_variance(source_amount: int, destination_amount: int) -> int:
    """Variance is always source minus destination."""
    return source_amount - destination_amount


def amount_variance_reason(variance: int) -> str:
    return f"Amount variance: {variance} cents"


class ReconciliationMatcher:
    """
    Partitions two record collections for the same tenant, date and category.
    """

    def __init__(
        self,
        tolerance: Optional[ReconciliationTolerance] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.tolerance = tolerance or self.settings.default_tolerance()

    def match(
        self,
        source: Sequence[ReconcilableRecord],
        destination: Sequence[ReconcilableRecord],
    ) -> MatchOutcome:
        """
        Classify records into matched, source-only, destination-only and
        amount mismatches.

        Records sharing a key on the same side are paired with the other
        side's records for that key in input order; leftovers are one-sided.
        """
        outcome = MatchOutcome()

        source_by_key: Dict[str, Deque[ReconcilableRecord]] = defaultdict(deque)
        for record in source:
            source_by_key[record.key].append(record)

        consumed = set()
        for dest_record in destination:
            candidates = source_by_key.get(dest_record.key)
            if not candidates:
                outcome.destination_only.append(dest_record)
                continue

            source_record = candidates.popleft()
            consumed.add(id(source_record))
            pair = MatchedRecordPair(source=source_record, destination=dest_record)
            if is_within_tolerance(
                source_record.amount_cents, dest_record.amount_cents, self.tolerance
            ):
                outcome.matched.append(pair)
            else:
                outcome.amount_mismatches.append(pair)

        outcome.source_only = [r for r in source if id(r) not in consumed]

        logger.debug(
            "Records partitioned",
            source=len(source),
            destination=len(destination),
            matched=len(outcome.matched),
            source_only=len(outcome.source_only),
            destination_only=len(outcome.destination_only),
            amount_mismatches=len(outcome.amount_mismatches),
        )
        return outcome

    def summarize(
        self,
        outcome: MatchOutcome,
        source: Sequence[ReconcilableRecord],
        destination: Sequence[ReconcilableRecord],
    ) -> ReconciliationSummary:
        total_source = sum(r.amount_cents for r in source)
        total_destination = sum(r.amount_cents for r in destination)
        return ReconciliationSummary(
            total_records=len(source) + len(destination),
            matched_records=len(outcome.matched),
            unmatched_source_records=len(outcome.source_only),
            unmatched_destination_records=len(outcome.destination_only),
            amount_discrepancies=len(outcome.amount_mismatches),
            total_source_amount=total_source,
            total_destination_amount=total_destination,
            variance_amount=calculate_variance(total_source, total_destination),
            status=(
                ReconciliationStatus.DISCREPANCIES_FOUND
                if outcome.has_discrepancies
                else ReconciliationStatus.RECONCILED
            ),
        )

    def build_items(self, report_id: str, outcome: MatchOutcome) -> List[ReconciliationItem]:
        """One item per matched pair, one-sided record and mismatched pair."""
        items = []

        for pair in outcome.matched:
            items.append(ReconciliationItem(
                report_id=report_id,
                match_key=pair.source.key,
                match_status=MatchStatus.MATCHED,
                source_record=pair.source.to_dict(),
                destination_record=pair.destination.to_dict(),
                source_amount=pair.source.amount_cents,
                destination_amount=pair.destination.amount_cents,
                variance_amount=pair.variance_cents,
                discrepancy_reason=self._date_note(pair),
            ))

        for record in outcome.source_only:
            items.append(ReconciliationItem(
                report_id=report_id,
                match_key=record.key,
                match_status=MatchStatus.SOURCE_ONLY,
                source_record=record.to_dict(),
                source_amount=record.amount_cents,
                discrepancy_reason=SOURCE_ONLY_REASON,
            ))

        for record in outcome.destination_only:
            items.append(ReconciliationItem(
                report_id=report_id,
                match_key=record.key,
                match_status=MatchStatus.DESTINATION_ONLY,
                destination_record=record.to_dict(),
                destination_amount=record.amount_cents,
                discrepancy_reason=DESTINATION_ONLY_REASON,
            ))

        for pair in outcome.amount_mismatches:
            variance = pair.variance_cents
            items.append(ReconciliationItem(
                report_id=report_id,
                match_key=pair.source.key,
                match_status=MatchStatus.AMOUNT_MISMATCH,
                source_record=pair.source.to_dict(),
                destination_record=pair.destination.to_dict(),
                source_amount=pair.source.amount_cents,
                destination_amount=pair.destination.amount_cents,
                variance_amount=variance,
                discrepancy_reason=amount_variance_reason(variance),
            ))

        return items

    def _date_note(self, pair: MatchedRecordPair) -> Optional[str]:
        # Informational only: a date gap never changes the match status
        source_date = pair.source.record_date
        dest_date = pair.destination.record_date
        if source_date is None or dest_date is None:
            return None
        days = abs((source_date - dest_date).days)
        if days > self.tolerance.date_tolerance_days:
            return f"Date variance: {days} days"
        return None
