"""
Analytics module for the folio-pilot engine.

Provides drift analysis, tax-aware sell selection, return calculations and
P&L helpers.
"""

from folio_pilot.analytics.drift import (
    analyze_drift,
    calculate_holding_drift,
    summarize_drift,
    summarize_groups,
    validate_targets,
)
from folio_pilot.analytics.tax_selection import (
    plan_reinvestment,
    recommend_buy_accounts,
    select_sell_accounts,
)
from folio_pilot.analytics.returns import (
    annualize_return,
    calculate_irr,
    money_weighted_return,
    time_weighted_returns,
)
from folio_pilot.analytics.pnl import (
    calculate_income,
    calculate_net_gain,
    calculate_pnl_by_gain_type,
    calculate_realized_gain,
    calculate_unrealized_pnl_summary,
)

__all__ = [
    "analyze_drift",
    "calculate_holding_drift",
    "summarize_drift",
    "summarize_groups",
    "validate_targets",
    "plan_reinvestment",
    "recommend_buy_accounts",
    "select_sell_accounts",
    "annualize_return",
    "calculate_irr",
    "money_weighted_return",
    "time_weighted_returns",
    "calculate_income",
    "calculate_net_gain",
    "calculate_pnl_by_gain_type",
    "calculate_realized_gain",
    "calculate_unrealized_pnl_summary",
]
