"""
Persistence adapter for the folio-pilot engine.

Provides functionality for loading portfolio tables from CSV/Parquet files
or a JSON snapshot and for writing report files.
"""

from folio_pilot.data.loaders import (
    DataLoadError,
    PortfolioData,
    load_portfolio,
    load_snapshot,
    load_table,
    normalize_related,
    save_lots,
    save_performance_series,
    save_rebalance_report,
)
from folio_pilot.data.schemas import (
    LOTS_SCHEMA,
    PRICES_SCHEMA,
    TRANSACTIONS_SCHEMA,
)

__all__ = [
    "DataLoadError",
    "PortfolioData",
    "load_portfolio",
    "load_snapshot",
    "load_table",
    "normalize_related",
    "save_lots",
    "save_performance_series",
    "save_rebalance_report",
    "LOTS_SCHEMA",
    "PRICES_SCHEMA",
    "TRANSACTIONS_SCHEMA",
]
