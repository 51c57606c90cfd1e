"""
Portfolio module for the folio-pilot engine.

Provides the tax lot ledger, holdings aggregation and price-based valuation.
"""

from folio_pilot.portfolio.ledger import (
    TaxLotLedger,
    ReplayResult,
    replay_transactions,
    reconcile_lots,
)
from folio_pilot.portfolio.holdings import (
    aggregate_lots_by_asset,
    aggregate_lots_by_account,
    allocation_by_lens,
)
from folio_pilot.portfolio.valuation import (
    PriceBook,
    value_lots,
    calculate_cash_balance,
)

__all__ = [
    "TaxLotLedger",
    "ReplayResult",
    "replay_transactions",
    "reconcile_lots",
    "aggregate_lots_by_asset",
    "aggregate_lots_by_account",
    "allocation_by_lens",
    "PriceBook",
    "value_lots",
    "calculate_cash_balance",
]
