"""
Report Aggregator - read-only rollups for dashboards.

Computes status breakdowns, a per-day discrepancy trend over a bounded
window, per-system-pair statistics and duplicate-finding statistics.
Never mutates matching state.
"""

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..config import Settings, get_settings
from ..models import (
    DeduplicationStats,
    DuplicateFinding,
    DuplicateStatus,
    ReconciliationDashboard,
    ReconciliationReport,
    ReconciliationStatus,
    ReconciliationTrend,
    SystemReconciliationStats,
    utcnow,
)

logger = structlog.get_logger()

# Reports whose counters describe a finished computation
COMPLETED_STATUSES = frozenset({
    ReconciliationStatus.RECONCILED,
    ReconciliationStatus.DISCREPANCIES_FOUND,
})


class ReportAggregator:
    """Builds dashboard metrics from persisted reports and findings."""

    def __init__(
        self,
        trend_days: Optional[int] = None,
        recent_limit: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.trend_days = trend_days or self.settings.dashboard_trend_days
        self.recent_limit = (
            recent_limit if recent_limit is not None else self.settings.dashboard_recent_reports
        )

    def build_dashboard(
        self,
        reports: Sequence[ReconciliationReport],
        findings: Optional[Sequence[DuplicateFinding]] = None,
        last_scan_at: Optional[datetime] = None,
        today: Optional[date] = None,
    ) -> ReconciliationDashboard:
        counts, percentages = self.status_breakdown(reports)
        dashboard = ReconciliationDashboard(
            total_reports=len(reports),
            status_counts=counts,
            status_percentages=percentages,
            recent_reports=self.recent_reports(reports),
            discrepancy_trend=self.discrepancy_trend(reports, today=today),
            by_system=self.by_system(reports),
        )
        if findings is not None:
            dashboard.duplicates = self.duplicate_stats(findings, last_scan_at)

        logger.debug(
            "Dashboard built",
            reports=dashboard.total_reports,
            trend_days=len(dashboard.discrepancy_trend),
            system_pairs=len(dashboard.by_system),
        )
        return dashboard

    def status_breakdown(
        self, reports: Sequence[ReconciliationReport]
    ) -> Tuple[Dict[str, int], Dict[str, float]]:
        """Count and percentage of reports per status (every status present)."""
        counter = Counter(r.status for r in reports)
        total = len(reports)
        counts = {status.value: counter.get(status, 0) for status in ReconciliationStatus}
        percentages = {
            status: round(count / total * 100, 2) if total else 0.0
            for status, count in counts.items()
        }
        return counts, percentages

    def recent_reports(
        self, reports: Sequence[ReconciliationReport]
    ) -> List[ReconciliationReport]:
        ordered = sorted(reports, key=lambda r: r.created_at, reverse=True)
        return ordered[:self.recent_limit]

    def discrepancy_trend(
        self,
        reports: Sequence[ReconciliationReport],
        today: Optional[date] = None,
    ) -> List[ReconciliationTrend]:
        """
        Per-day totals for reports dated within the trend window, oldest first.
        Days without reports are omitted.
        """
        today = today or utcnow().date()
        cutoff = today - timedelta(days=self.trend_days)

        by_day: Dict[date, ReconciliationTrend] = {}
        for report in reports:
            day = report.reconciliation_date
            if day is None or day < cutoff or day > today:
                continue
            trend = by_day.get(day)
            if trend is None:
                trend = by_day[day] = ReconciliationTrend(date=day.isoformat())
            trend.total += report.total_records
            trend.matched += report.matched_records
            trend.discrepancies += report.discrepancy_count
            trend.variance_amount += report.variance_amount or 0

        return [by_day[day] for day in sorted(by_day)]

    def by_system(
        self, reports: Sequence[ReconciliationReport]
    ) -> List[SystemReconciliationStats]:
        """Group reports by (source, destination) with average match rate."""
        groups: Dict[Tuple[str, str], List[ReconciliationReport]] = defaultdict(list)
        for report in reports:
            groups[(report.source_system, report.destination_system)].append(report)

        stats = []
        for (source, destination), group in sorted(groups.items()):
            rates = [r.match_rate for r in group if r.status in COMPLETED_STATUSES]
            stats.append(SystemReconciliationStats(
                source_system=source,
                destination_system=destination,
                total_reports=len(group),
                average_match_rate=round(float(np.mean(rates)), 2) if rates else 0.0,
                total_variance=int(sum(r.variance_amount or 0 for r in group)),
            ))
        return stats

    def duplicate_stats(
        self,
        findings: Sequence[DuplicateFinding],
        last_scan_at: Optional[datetime] = None,
    ) -> DeduplicationStats:
        by_status = Counter(f.status for f in findings)
        scores = [f.match_score for f in findings]
        return DeduplicationStats(
            total=len(findings),
            potential_duplicates=by_status.get(DuplicateStatus.POTENTIAL_DUPLICATE, 0),
            confirmed_duplicates=by_status.get(DuplicateStatus.CONFIRMED_DUPLICATE, 0),
            not_duplicates=by_status.get(DuplicateStatus.NOT_DUPLICATE, 0),
            merged=by_status.get(DuplicateStatus.MERGED, 0),
            by_record_type=dict(Counter(f.record_type.value for f in findings)),
            average_match_score=round(float(np.mean(scores)), 4) if scores else 0.0,
            last_scan_at=last_scan_at,
        )
