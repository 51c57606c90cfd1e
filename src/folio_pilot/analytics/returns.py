"""
Return calculations: time-weighted return, annualization and IRR.

Valuation series are lists of ValuationPoint. Cash flows on a point are
external flows from the portfolio's point of view: positive for a deposit,
negative for a withdrawal. Trades inside the portfolio are not flows.

Returns are expressed in percent for time-weighted series and as fractions
for annualized figures and IRR.
"""

import logging
import math
from collections import OrderedDict
from datetime import date
from typing import Sequence

import numpy as np

from folio_pilot.models import ValuationPoint


logger = logging.getLogger(__name__)


def time_weighted_returns(
    points: Sequence[ValuationPoint],
    adjust_for_flows: bool = False,
) -> list[float]:
    """
    Cumulative time-weighted return at each point, in percent.

    Without flow adjustment the series is rebased to its first point:
    twr(t) = 100 * (value(t) / value(0) - 1). With flow adjustment each
    sub-period return (V_i - CF_i) / V_{i-1} - 1 is chained so that deposits
    and withdrawals are not counted as performance. Both give the same result
    when there are no flows. The first point is always exactly 0.

    Args:
        points: Chronological valuation points
        adjust_for_flows: Chain sub-period returns net of each point's cash flow

    Returns:
        One cumulative return per point; 0.0 while the base value is not positive
    """
    if not points:
        return []

    returns = [0.0]
    base = float(points[0].portfolio_value)

    if not adjust_for_flows:
        for point in points[1:]:
            if base > 0:
                returns.append(100.0 * (float(point.portfolio_value) / base - 1.0))
            else:
                returns.append(0.0)
        return returns

    growth = 1.0
    previous = base
    for point in points[1:]:
        value = float(point.portfolio_value)
        flow = float(point.cash_flow)
        if previous > 0:
            growth *= (value - flow) / previous
        returns.append(100.0 * (growth - 1.0))
        previous = value

    return returns


def annualize_return(total_return_pct: float, years: float) -> float:
    """
    Annualize a cumulative return.

    Args:
        total_return_pct: Cumulative return in percent
        years: Length of the period in years

    Returns:
        Annualized return as a fraction; 0.0 for a non-positive period and
        -1.0 when the whole investment was lost
    """
    if years <= 0:
        return 0.0
    growth = 1.0 + total_return_pct / 100.0
    if growth <= 0:
        return -1.0
    return growth ** (1.0 / years) - 1.0


def year_fractions(dates: Sequence[date], day_count: float = 365.25) -> list[float]:
    """Years elapsed from the first date to each date."""
    if not dates:
        return []
    start = dates[0]
    return [(d - start).days / day_count for d in dates]


def net_cash_flows_by_date(
    flows: Sequence[float],
    dates: Sequence[date],
) -> tuple[list[float], list[date]]:
    """
    Merge flows sharing a date and order them chronologically.

    Returns:
        Tuple of (net flows, dates) with one entry per distinct date
    """
    merged: dict[date, float] = OrderedDict()
    for flow, d in sorted(zip(flows, dates), key=lambda pair: pair[1]):
        merged[d] = merged.get(d, 0.0) + float(flow)
    return list(merged.values()), list(merged.keys())


def calculate_irr(
    cash_flows: Sequence[float],
    times: Sequence[float],
    initial_guess: float = 0.1,
    max_iterations: int = 100,
    tolerance: float = 1e-8,
) -> float:
    """
    Internal rate of return by Newton-Raphson.

    Solves sum(cf / (1 + r) ** t) = 0 for r, where t is in years.

    Args:
        cash_flows: Signed flows (negative = invested, positive = returned)
        times: Year fraction of each flow
        initial_guess: Starting rate
        max_iterations: Iteration cap
        tolerance: Stop once |NPV| falls below this

    Returns:
        Annual rate as a fraction, or nan when the rate is undefined (fewer
        than two flows, no sign change, vanishing derivative, a rate at or
        below -100%, or no convergence)
    """
    if len(cash_flows) != len(times):
        raise ValueError("cash_flows and times must have the same length")

    flows = np.asarray(cash_flows, dtype=float)
    t = np.asarray(times, dtype=float)

    if flows.size < 2 or not (np.any(flows > 0) and np.any(flows < 0)):
        return math.nan

    rate = float(initial_guess)
    for _ in range(max_iterations):
        base = 1.0 + rate
        if base <= 0:
            return math.nan

        discount = np.power(base, t)
        npv = float(np.sum(flows / discount))
        if abs(npv) < tolerance:
            return rate

        dnpv = float(np.sum(-t * flows / (discount * base)))
        if not math.isfinite(dnpv) or abs(dnpv) < 1e-12:
            return math.nan

        rate -= npv / dnpv
        if not math.isfinite(rate):
            return math.nan

    logger.debug("IRR did not converge after %d iterations", max_iterations)
    return math.nan


def money_weighted_return(
    points: Sequence[ValuationPoint],
    day_count: float = 365.25,
    initial_guess: float = 0.1,
    max_iterations: int = 100,
    tolerance: float = 1e-8,
) -> float:
    """
    Money-weighted return (IRR) of a valuation series.

    From the investor's side, the opening value and every deposit are money
    put in (negative), withdrawals are money taken out (positive) and the
    closing value is returned as a final inflow.

    Returns:
        Annual rate as a fraction, or nan when undefined
    """
    if len(points) < 2:
        return math.nan

    flows = [-float(points[0].portfolio_value)]
    dates = [points[0].date]
    for point in points[1:]:
        if point.cash_flow != 0:
            flows.append(-float(point.cash_flow))
            dates.append(point.date)
    flows.append(float(points[-1].portfolio_value))
    dates.append(points[-1].date)

    net_flows, net_dates = net_cash_flows_by_date(flows, dates)
    return calculate_irr(
        net_flows,
        year_fractions(net_dates, day_count),
        initial_guess=initial_guess,
        max_iterations=max_iterations,
        tolerance=tolerance,
    )


def _usable(value) -> bool:
    return value is not None and not math.isnan(float(value)) and value > 0


def rebase_series(values: Sequence) -> list[float]:
    """
    Rebase a price series to 0% at its first usable value.

    None and NaN mark gaps. Gaps, and values before the first usable
    observation, are reported as 0.0.
    """
    base = next((float(v) for v in values if _usable(v)), None)
    if base is None:
        return [0.0 for _ in values]
    return [100.0 * (float(v) / base - 1.0) if _usable(v) else 0.0 for v in values]
