"""
Duplicate Scanner - pairwise scoring of records inside blocking buckets.

Records are grouped by equality of the config's blocking fields; only
records sharing a bucket are compared. Within a bucket the comparison is
quadratic, which is acceptable because blocking keeps buckets small.
The engine is pure: persistence and idempotency live in the service layer.
"""

from collections import defaultdict
from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import MatchFieldResult, Record, RecordType
from .rules import (
    MatchingConfig,
    calculate_total_match_score,
    compare_records,
    is_potential_duplicate,
)

logger = structlog.get_logger()

BlockingKey = Tuple[Hashable, ...]
PairFilter = Callable[[Record, Record], bool]


@dataclass
class ScoredPair:
    """A compared pair; ``original`` is the older record."""
    original: Record
    candidate: Record
    score: float
    match_fields: List[MatchFieldResult]
    is_duplicate: bool = False


@dataclass
class ScanPassResult:
    """Result of one scoring pass over a record set."""
    record_type: RecordType
    records_scanned: int = 0
    pairs_compared: int = 0
    buckets: int = 0
    unblocked_records: int = 0
    duplicates: List[ScoredPair] = field(default_factory=list)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "records_scanned": self.records_scanned,
            "pairs_compared": self.pairs_compared,
            "buckets": self.buckets,
            "unblocked_records": self.unblocked_records,
            "duplicates": len(self.duplicates),
        }


class DuplicateScanner:
    """
    Scores record pairs with a MatchingConfig.

    Field results below the reporting threshold still count towards the
    score but are left out of a finding's match fields.
    """

    def __init__(
        self,
        config: MatchingConfig,
        field_report_threshold: Optional[float] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config
        if field_report_threshold is None:
            field_report_threshold = self.settings.field_report_threshold
        self.field_report_threshold = field_report_threshold

    def process(
        self,
        records: Sequence[Record],
        pair_filter: Optional[PairFilter] = None,
    ) -> ScanPassResult:
        """
        Score every eligible pair of records that share a blocking bucket.

        Args:
            records: Live records of the config's category for one tenant
            pair_filter: Optional predicate limiting which pairs are compared

        Returns:
            ScanPassResult with pairs scoring at or above the minimum score
        """
        result = ScanPassResult(
            record_type=self.config.record_type,
            records_scanned=len(records),
        )

        buckets, unblocked = self.build_buckets(records)
        result.buckets = len(buckets)
        result.unblocked_records = unblocked

        for bucket in buckets.values():
            # Oldest first so the earlier record becomes the original
            ordered = sorted(bucket, key=lambda r: (r.created_at, r.id))
            for i, original in enumerate(ordered):
                for candidate in ordered[i + 1:]:
                    if pair_filter is not None and not pair_filter(original, candidate):
                        continue
                    result.pairs_compared += 1
                    scored = self.score_pair(original, candidate)
                    if scored.is_duplicate:
                        result.duplicates.append(scored)

        logger.info(
            "Duplicate scoring complete",
            record_type=self.config.record_type.value,
            **result.stats,
        )
        return result

    def build_buckets(
        self, records: Sequence[Record]
    ) -> Tuple[Dict[BlockingKey, List[Record]], int]:
        """
        Group records by blocking-field values.

        Records missing any blocking value cannot be placed and are only
        counted. Without blocking fields every record shares one bucket.
        """
        buckets: Dict[BlockingKey, List[Record]] = defaultdict(list)
        unblocked = 0
        for record in records:
            key = self.blocking_key(record)
            if key is None:
                unblocked += 1
                continue
            buckets[key].append(record)
        return buckets, unblocked

    def blocking_key(self, record: Record) -> Optional[BlockingKey]:
        values = []
        for name in self.config.blocking_fields:
            value = record.get(name)
            if value is None:
                return None
            values.append(value if isinstance(value, Hashable) else repr(value))
        return tuple(values)

    def score_pair(self, original: Record, candidate: Record) -> ScoredPair:
        results = compare_records(original, candidate, self.config)
        score = calculate_total_match_score(results, self.config)
        return ScoredPair(
            original=original,
            candidate=candidate,
            score=score,
            match_fields=[r for r in results if r.score >= self.field_report_threshold],
            is_duplicate=is_potential_duplicate(score, self.config),
        )

    def find_best_match(
        self,
        candidate: Record,
        existing: Sequence[Record],
    ) -> Optional[ScoredPair]:
        """
        Highest-scoring existing record in the candidate's blocking bucket.

        Returns None when nothing could be compared.
        """
        key = self.blocking_key(candidate)
        if key is None:
            return None

        best: Optional[ScoredPair] = None
        for record in existing:
            if record.id == candidate.id or self.blocking_key(record) != key:
                continue
            scored = self.score_pair(record, candidate)
            if best is None or scored.score > best.score:
                best = scored
        return best
