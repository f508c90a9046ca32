"""Dashboard and statistics rollups."""

from .aggregator import ReportAggregator

__all__ = ["ReportAggregator"]
