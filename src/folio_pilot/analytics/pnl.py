"""
P&L (Profit and Loss) calculations.

This module provides realized, income and unrealized P&L figures over
transactions and lot valuations, with breakdowns by gain type.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from folio_pilot.models import (
    GainType,
    LotValuation,
    Transaction,
    TransactionType,
)


ZERO = Decimal("0")


def _in_range(tx: Transaction, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and tx.date < start:
        return False
    if end is not None and tx.date > end:
        return False
    return True


def calculate_realized_gain(
    transactions: Iterable[Transaction],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Decimal:
    """
    Total realized gain recorded on Sell transactions.

    Args:
        transactions: Transaction history
        start: Only include sales on or after this date
        end: Only include sales on or before this date

    Returns:
        Sum of realized_gain over the selected sales
    """
    return sum(
        (
            tx.realized_gain or ZERO
            for tx in transactions
            if tx.transaction_type == TransactionType.SELL and _in_range(tx, start, end)
        ),
        ZERO,
    )


def calculate_income(
    transactions: Iterable[Transaction],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Decimal:
    """Dividends and interest received."""
    return sum(
        (tx.amount for tx in transactions if tx.is_income and _in_range(tx, start, end)),
        ZERO,
    )


def calculate_net_gain(unrealized: Decimal, realized: Decimal, income: Decimal) -> Decimal:
    """
    Net gain of a position or portfolio.

    Fees are already reflected: buy fees are part of the cost basis and sell
    fees are deducted from realized gain.
    """
    return unrealized + realized + income


def calculate_unrealized_pnl_summary(
    valuations: list[LotValuation],
) -> dict[str, Decimal]:
    """
    Calculate summary unrealized P&L statistics.

    Args:
        valuations: List of lot valuations

    Returns:
        Dictionary with P&L summary:
        - total_unrealized_pnl: Total unrealized P&L
        - total_unrealized_gain: Sum of all gains
        - total_unrealized_loss: Sum of all losses (negative)
        - total_cost_basis: Total open cost basis
        - total_market_value: Total market value
        - return_pct: Unrealized P&L over cost basis (fraction)
    """
    total_pnl = ZERO
    total_gain = ZERO
    total_loss = ZERO
    total_cost = ZERO
    total_market_value = ZERO

    for val in valuations:
        total_pnl += val.unrealized_pnl
        total_cost += val.lot.remaining_cost
        total_market_value += val.market_value

        if val.unrealized_pnl > ZERO:
            total_gain += val.unrealized_pnl
        else:
            total_loss += val.unrealized_pnl

    return_pct = ZERO
    if total_cost != ZERO:
        return_pct = total_pnl / total_cost

    return {
        "total_unrealized_pnl": total_pnl,
        "total_unrealized_gain": total_gain,
        "total_unrealized_loss": total_loss,
        "total_cost_basis": total_cost,
        "total_market_value": total_market_value,
        "return_pct": return_pct,
    }


def calculate_pnl_by_gain_type(
    valuations: list[LotValuation],
) -> dict[str, dict[str, Decimal]]:
    """
    Unrealized P&L broken down by short-term vs long-term lots.

    Returns:
        {"short_term": {...}, "long_term": {...}} with unrealized_gain,
        unrealized_loss, net_pnl, cost_basis and market_value
    """
    result: dict[str, dict[str, Decimal]] = {
        key: {
            "unrealized_gain": ZERO,
            "unrealized_loss": ZERO,
            "net_pnl": ZERO,
            "cost_basis": ZERO,
            "market_value": ZERO,
        }
        for key in ("short_term", "long_term")
    }

    for val in valuations:
        key = "short_term" if val.gain_type == GainType.SHORT_TERM else "long_term"
        result[key]["net_pnl"] += val.unrealized_pnl
        result[key]["cost_basis"] += val.lot.remaining_cost
        result[key]["market_value"] += val.market_value

        if val.unrealized_pnl > ZERO:
            result[key]["unrealized_gain"] += val.unrealized_pnl
        else:
            result[key]["unrealized_loss"] += val.unrealized_pnl

    return result
