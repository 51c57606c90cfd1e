"""
Report builders for the folio-pilot engine.

Provides the rebalance report and the performance report.
"""

from folio_pilot.reports.rebalance import build_rebalance_report
from folio_pilot.reports.performance import (
    build_date_grid,
    build_performance_report,
)

__all__ = [
    "build_rebalance_report",
    "build_date_grid",
    "build_performance_report",
]
