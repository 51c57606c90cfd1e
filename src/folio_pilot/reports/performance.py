"""
Performance report: transaction replay over a date grid.

For every date of the grid the transactions up to that date are replayed
through a FIFO ledger per series, the open lots are valued with the latest
known prices, and the resulting value series is fed into the return
calculator. Series can be split along an allocation lens (account, group or
an asset tag) and optionally broken down per asset.

Cash belongs to the portfolio only for the total and account lenses. For
asset-based lenses a buy is money flowing into the series and sales and
income are money flowing out of it.
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from folio_pilot.analytics.pnl import calculate_income, calculate_net_gain
from folio_pilot.analytics.returns import (
    annualize_return,
    money_weighted_return,
    rebase_series,
    time_weighted_returns,
)
from folio_pilot.errors import InvalidInputError
from folio_pilot.models import (
    Account,
    Asset,
    ConditionType,
    EngineConfig,
    Group,
    PerformancePoint,
    PerformanceReport,
    PerformanceSummary,
    ReportCondition,
    ReturnMetric,
    Transaction,
    ValuationPoint,
)
from folio_pilot.portfolio.holdings import ASSET_LENSES, UNASSIGNED, lens_key
from folio_pilot.portfolio.ledger import TaxLotLedger, apply_transaction, sort_transactions
from folio_pilot.portfolio.valuation import PriceBook


logger = logging.getLogger(__name__)

ZERO = Decimal("0")

PERFORMANCE_LENSES = ("total", "account") + tuple(ASSET_LENSES)
CASH_LENSES = ("total", "account")
LENS_ALIASES = {"sub_portfolio": "group"}
GRANULARITIES = ("daily", "monthly")

SIXTY_FORTY = "6040"
SIXTY_FORTY_WEIGHTS = (("sp500", 0.6), ("tlt", 0.4))


def build_date_grid(start: date, end: date, granularity: str = "monthly") -> list[date]:
    """
    Evaluation dates between start and end.

    Daily grids hold every calendar day. Monthly grids hold each month end
    from the start month onwards that falls on or before end, plus end itself.

    Raises:
        InvalidInputError: On an unknown granularity or start after end
    """
    if granularity not in GRANULARITIES:
        raise InvalidInputError(
            f"Unknown granularity: {granularity}. Expected one of {', '.join(GRANULARITIES)}"
        )
    if start > end:
        raise InvalidInputError(f"Start date {start} is after end date {end}")

    if granularity == "daily":
        return [start + timedelta(days=i) for i in range((end - start).days + 1)]

    dates = []
    year, month = start.year, start.month
    while True:
        month_end = date(year, month, calendar.monthrange(year, month)[1])
        if month_end > end:
            break
        dates.append(month_end)
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)

    if not dates or dates[-1] != end:
        dates.append(end)
    return dates


@dataclass
class _SeriesState:
    """Running replay state of one series."""
    include_cash: bool
    long_term_days: int = 365
    ledger: Optional[TaxLotLedger] = None
    cash: Decimal = ZERO
    realized: Decimal = ZERO
    income: Decimal = ZERO
    pending_flow: Decimal = ZERO
    points: list[PerformancePoint] = field(default_factory=list)

    def __post_init__(self):
        if self.ledger is None:
            self.ledger = TaxLotLedger(long_term_days=self.long_term_days)

    def apply(self, tx: Transaction) -> None:
        sale = apply_transaction(self.ledger, tx)
        if sale is not None:
            self.realized += sale.realized_gain
        self.income += calculate_income((tx,))

        self.cash += tx.amount
        if self.include_cash:
            if tx.is_external_flow:
                self.pending_flow += tx.amount
        elif tx.asset_id is not None:
            # Cash leaving the account is money entering the holding
            self.pending_flow -= tx.amount

    def snapshot(
        self,
        as_of: date,
        assets: dict[str, Asset],
        prices: PriceBook,
        missing: dict[str, date],
    ) -> PerformancePoint:
        market_value = ZERO
        unrealized = ZERO
        cost_basis = ZERO
        for lot in self.ledger.open_lots():
            asset = assets.get(lot.asset_id)
            ticker = asset.ticker if asset else lot.asset_id
            price = prices.price(ticker, as_of)
            cost_basis += lot.remaining_cost
            if price is None:
                missing.setdefault(lot.asset_id, as_of)
                continue
            value = lot.remaining_quantity * price
            market_value += value
            unrealized += value - lot.remaining_cost

        portfolio_value = market_value + self.cash if self.include_cash else market_value
        point = PerformancePoint(
            date=as_of,
            portfolio_value=portfolio_value,
            cash_flow=self.pending_flow,
            net_gain=calculate_net_gain(unrealized, self.realized, self.income),
            unrealized=unrealized,
            realized=self.realized,
            income=self.income,
            cost_basis_total=cost_basis,
        )
        self.pending_flow = ZERO
        self.points.append(point)
        return point


def _series_key(
    tx: Transaction,
    lens: str,
    assets: dict[str, Asset],
    groups: dict[str, Group],
) -> Optional[str]:
    """Key of the series a transaction belongs to, or None if it belongs to none."""
    if lens == "total":
        return "total"
    if lens == "account":
        return tx.account_id or UNASSIGNED
    if tx.asset_id is None:
        return None
    asset = assets.get(tx.asset_id)
    if lens == "group":
        # Keyed by id; labelled by name afterwards
        return (asset.group_id if asset and asset.group_id in groups else None) or UNASSIGNED
    return lens_key(asset, lens)


def _series_label(
    key: str,
    lens: str,
    accounts: dict[str, Account],
    groups: dict[str, Group],
) -> str:
    if lens == "account" and key in accounts:
        return accounts[key].name
    if lens == "group" and key in groups:
        return groups[key].name
    return key


def _to_valuation_points(points: list[PerformancePoint]) -> list[ValuationPoint]:
    return [ValuationPoint(p.date, p.portfolio_value, p.cash_flow) for p in points]


def summarize_series(
    points: list[PerformancePoint],
    metric: ReturnMetric,
    config: EngineConfig,
) -> PerformanceSummary:
    """
    Fill each point's return and summarize the series.

    Returns are in percent. For the money-weighted metric the annualized
    return is the IRR and the total return compounds it over the period;
    both are nan when the IRR is undefined.
    """
    if not points:
        return PerformanceSummary(total_return=0.0, annualized_return=0.0, net_gain=ZERO)

    valuation_points = _to_valuation_points(points)
    cumulative = time_weighted_returns(valuation_points, config.twr_adjust_for_flows)
    for point, value in zip(points, cumulative):
        point.return_pct = value

    years = (points[-1].date - points[0].date).days / config.day_count
    net_gain = points[-1].net_gain

    if metric == ReturnMetric.TWR:
        total = cumulative[-1]
        return PerformanceSummary(
            total_return=total,
            annualized_return=annualize_return(total, years) * 100.0,
            net_gain=net_gain,
        )

    irr = money_weighted_return(
        valuation_points,
        day_count=config.day_count,
        initial_guess=config.irr_initial_guess,
        max_iterations=config.irr_max_iterations,
        tolerance=config.irr_tolerance,
    )
    if math.isnan(irr):
        return PerformanceSummary(total_return=math.nan, annualized_return=math.nan, net_gain=net_gain)
    return PerformanceSummary(
        total_return=((1.0 + irr) ** years - 1.0) * 100.0,
        annualized_return=irr * 100.0,
        net_gain=net_gain,
    )


def build_benchmark_series(
    keys: Iterable[str],
    dates: list[date],
    prices: PriceBook,
    benchmark_map: dict[str, str],
) -> dict[str, list[tuple[date, float]]]:
    """
    Benchmark returns over the grid, rebased to 0% at the first priced date.

    The "6040" key blends the sp500 and tlt series 60/40.

    Raises:
        InvalidInputError: For a key missing from the benchmark map
    """
    keys = list(keys)
    if not keys:
        return {}
    needed = set(keys)
    if SIXTY_FORTY in needed:
        needed.discard(SIXTY_FORTY)
        needed.update(k for k, _ in SIXTY_FORTY_WEIGHTS)

    tickers: dict[str, str] = {}
    for key in sorted(needed):
        if key not in benchmark_map:
            raise InvalidInputError(f"Unknown benchmark: {key}")
        tickers[key] = benchmark_map[key].upper()

    frame = prices.price_frame(tickers.values(), dates)
    rebased = {key: rebase_series(frame[ticker].tolist()) for key, ticker in tickers.items()}

    series = {}
    for key in keys:
        if key == SIXTY_FORTY:
            values = [
                sum(weight * rebased[k][i] for k, weight in SIXTY_FORTY_WEIGHTS)
                for i in range(len(dates))
            ]
        else:
            values = rebased[key]
        series[key] = list(zip(dates, values))
    return series


def build_performance_report(
    transactions: list[Transaction],
    assets: list[Asset],
    accounts: list[Account],
    groups: list[Group],
    prices: PriceBook,
    start: date,
    end: date,
    config: Optional[EngineConfig] = None,
    granularity: str = "monthly",
    lens: str = "total",
    selected_values: Optional[Iterable[str]] = None,
    aggregate: bool = True,
    metric: str = "twr",
    benchmarks: Iterable[str] = (),
) -> PerformanceReport:
    """
    Build a performance report over [start, end].

    Args:
        transactions: Full transaction history (earlier transactions count
            towards the opening state)
        assets: All assets
        accounts: All accounts
        groups: All groups
        prices: Price lookup; gaps carry the last known price forward
        start: First day of the period
        end: Last day of the period
        config: Engine configuration
        granularity: "daily" or "monthly"
        lens: "total", "account", "group" (or "sub_portfolio") or an asset tag lens
        selected_values: Only report these series keys (account ids, group
            ids or tag values)
        aggregate: When False, also report one series per asset in each series
        metric: "twr" or "mwr" for the summaries
        benchmarks: Benchmark keys (see EngineConfig.benchmarks, plus "6040")

    Returns:
        PerformanceReport

    Raises:
        InvalidInputError: On an unknown lens, metric, granularity or
            benchmark, or when start is after end
        InsufficientLotsError: If the history sells more units than it bought
    """
    config = config or EngineConfig()
    lens = LENS_ALIASES.get(lens, lens)
    if lens not in PERFORMANCE_LENSES:
        raise InvalidInputError(
            f"Unknown lens: {lens}. Expected one of {', '.join(PERFORMANCE_LENSES)}"
        )
    try:
        return_metric = ReturnMetric(metric)
    except ValueError:
        raise InvalidInputError(f"Unknown metric: {metric}. Expected twr or mwr")

    dates = build_date_grid(start, end, granularity)
    assets_by_id = {a.asset_id: a for a in assets}
    accounts_by_id = {a.account_id: a for a in accounts}
    groups_by_id = {g.group_id: g for g in groups}
    selected = set(selected_values) if selected_values is not None else None
    include_cash = lens in CASH_LENSES

    states: dict[str, _SeriesState] = {}
    asset_states: dict[tuple[str, str], _SeriesState] = {}
    missing: dict[str, date] = {}

    ordered = sort_transactions(tx for tx in transactions if tx.date <= end)
    cursor = 0

    for grid_date in dates:
        while cursor < len(ordered) and ordered[cursor].date <= grid_date:
            tx = ordered[cursor]
            cursor += 1

            key = _series_key(tx, lens, assets_by_id, groups_by_id)
            if key is None or (selected is not None and lens != "total" and key not in selected):
                continue

            state = states.get(key)
            if state is None:
                state = states[key] = _SeriesState(include_cash, config.long_term_days)
                # Series that open mid-period still report every earlier date
                for earlier in dates:
                    if earlier >= grid_date:
                        break
                    state.snapshot(earlier, assets_by_id, prices, missing)
            state.apply(tx)

            if not aggregate and tx.asset_id is not None:
                asset_key = (key, tx.asset_id)
                asset_state = asset_states.get(asset_key)
                if asset_state is None:
                    asset_state = asset_states[asset_key] = _SeriesState(False, config.long_term_days)
                    for earlier in dates:
                        if earlier >= grid_date:
                            break
                        asset_state.snapshot(earlier, assets_by_id, prices, missing)
                asset_state.apply(tx)

        for state in states.values():
            state.snapshot(grid_date, assets_by_id, prices, missing)
        for asset_state in asset_states.values():
            asset_state.snapshot(grid_date, assets_by_id, prices, missing)

    conditions = []
    series: dict[str, list[PerformancePoint]] = {}
    summaries: dict[str, PerformanceSummary] = {}
    labels: dict[str, str] = {}

    for key in sorted(states):
        label = labels[key] = _series_label(key, lens, accounts_by_id, groups_by_id)
        series[key] = states[key].points
        summaries[key] = summarize_series(states[key].points, return_metric, config)
        if return_metric == ReturnMetric.MWR and math.isnan(summaries[key].annualized_return):
            logger.warning("Money-weighted return undefined for series %s", label)
            conditions.append(
                ReportCondition(
                    condition=ConditionType.NON_CONVERGENT_IRR,
                    subject=key,
                    message=f"Money-weighted return for {label} did not converge; reported as nan",
                )
            )

    breakdown: dict[str, dict[str, list[PerformancePoint]]] = {}
    for (key, asset_id) in sorted(asset_states):
        asset = assets_by_id.get(asset_id)
        points = asset_states[(key, asset_id)].points
        summarize_series(points, ReturnMetric.TWR, config)
        breakdown.setdefault(key, {})[asset.ticker if asset else asset_id] = points

    for asset_id, first_missing in sorted(missing.items()):
        asset = assets_by_id.get(asset_id)
        ticker = asset.ticker if asset else asset_id
        conditions.append(
            ReportCondition(
                condition=ConditionType.MISSING_PRICE,
                subject=asset_id,
                message=f"No price for {ticker} on or before {first_missing.isoformat()}; valued at 0",
            )
        )

    benchmark_series = build_benchmark_series(benchmarks, dates, prices, config.benchmarks)

    logger.info(
        "Performance report %s to %s (%s lens, %s): %d series over %d dates",
        start, end, lens, return_metric.value, len(series), len(dates),
    )

    return PerformanceReport(
        start_date=start,
        end_date=end,
        lens=lens,
        metric=return_metric,
        series=series,
        summaries=summaries,
        labels=labels,
        breakdown=breakdown,
        benchmarks=benchmark_series,
        conditions=conditions,
    )
