"""
Rebalance report assembly.

Values the open lots, runs drift analysis over the target hierarchy, picks
sell accounts with the tax-aware selector, pairs sale proceeds with
underweight buys in the same group and suggests accounts for buys. Stored
lots are loaded into a TaxLotLedger, which owns the open-lot state for the
valuation and the selector.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from folio_pilot.analytics.drift import (
    analyze_drift,
    get_buy_candidates,
    get_sell_candidates,
    summarize_drift,
    summarize_groups,
)
from folio_pilot.analytics.pnl import (
    calculate_income,
    calculate_net_gain,
    calculate_pnl_by_gain_type,
    calculate_realized_gain,
    calculate_unrealized_pnl_summary,
)
from folio_pilot.analytics.tax_selection import (
    plan_reinvestment,
    recommend_buy_accounts,
    select_sell_accounts,
)
from folio_pilot.errors import InvalidInputError
from folio_pilot.models import (
    Account,
    Asset,
    ConditionType,
    EngineConfig,
    Group,
    HoldingTarget,
    RebalanceAction,
    RebalanceReport,
    RebalanceRow,
    ReportCondition,
    TaxLot,
    TaxSelection,
    Transaction,
)
from folio_pilot.portfolio.holdings import LENSES, UNASSIGNED, allocation_by_lens, calculate_weights
from folio_pilot.portfolio.ledger import TaxLotLedger
from folio_pilot.portfolio.valuation import (
    PriceBook,
    calculate_cash_balance,
    value_lots,
    values_by_asset,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def build_rebalance_report(
    assets: list[Asset],
    groups: list[Group],
    targets: list[HoldingTarget],
    accounts: list[Account],
    lots: list[TaxLot],
    transactions: list[Transaction],
    prices: PriceBook,
    as_of: date,
    config: Optional[EngineConfig] = None,
    selected_groups: Optional[Iterable[str]] = None,
    lens: str = "group",
) -> RebalanceReport:
    """
    Build the rebalance report for a portfolio.

    Total value is the market value of all open lots plus the cash balance
    implied by the transactions up to as_of.

    Args:
        assets: All assets
        groups: All groups (sub-portfolios)
        targets: Holding targets within groups
        accounts: All accounts
        lots: Open tax lots
        transactions: Transaction history (cash balance, realized gain and
            income up to as_of)
        prices: Price lookup
        as_of: Valuation date
        config: Engine configuration (tax rates, long-term holding period)
        selected_groups: Only report rows of these group ids ("unassigned"
            selects holdings without a group)
        lens: Allocation lens for the breakdown (see portfolio.holdings.LENSES)

    Returns:
        RebalanceReport

    Raises:
        InvalidInputError: If targets are out of range or the lens is unknown
    """
    config = config or EngineConfig()
    if lens not in LENSES:
        raise InvalidInputError(f"Unknown lens: {lens}. Expected one of {', '.join(LENSES)}")

    assets_by_id = {a.asset_id: a for a in assets}
    accounts_by_id = {a.account_id: a for a in accounts}
    groups_by_id = {g.group_id: g for g in groups}

    ledger = TaxLotLedger.from_lots(lots, long_term_days=config.long_term_days)

    # Lots may reference assets missing from the asset table
    for asset_id in sorted(ledger.asset_ids()):
        if asset_id not in assets_by_id:
            assets_by_id[asset_id] = Asset(asset_id=asset_id, ticker=asset_id)
    all_assets = list(assets_by_id.values())

    valuations, conditions = value_lots(
        ledger.open_lots(), assets_by_id, prices, as_of, long_term_days=config.long_term_days
    )
    asset_values = values_by_asset(valuations)
    total_cash = calculate_cash_balance(transactions, as_of=as_of)
    total_value = sum(asset_values.values(), ZERO) + total_cash

    analyses = analyze_drift(all_assets, groups, targets, asset_values, total_value)

    if selected_groups is not None:
        selected = set(selected_groups)
        analyses = [a for a in analyses if (a.group_id or UNASSIGNED) in selected]
        report_groups = [g for g in groups if g.group_id in selected]
    else:
        report_groups = list(groups)

    unit_prices = {
        asset_id: prices.price(asset.ticker, as_of)
        for asset_id, asset in assets_by_id.items()
    }

    selections: dict[str, TaxSelection] = {}
    sells = get_sell_candidates(analyses)
    for drift in sells:
        selection = select_sell_accounts(
            asset_id=drift.asset_id,
            amount=drift.amount,
            lots=ledger.open_lots(drift.asset_id),
            accounts=accounts_by_id,
            price=unit_prices.get(drift.asset_id),
            as_of=as_of,
            short_term_rate=config.short_term_rate,
            long_term_rate=config.long_term_rate,
            long_term_days=config.long_term_days,
        )
        selections[drift.asset_id] = selection
        if selection.degraded:
            conditions.append(
                ReportCondition(
                    condition=ConditionType.DEGRADED_SELECTION,
                    subject=drift.asset_id,
                    message=selection.notes,
                )
            )

    buys = get_buy_candidates(analyses)
    reinvestment = plan_reinvestment(
        [(drift, selections[drift.asset_id]) for drift in sells],
        buys,
        unit_prices,
    )

    holding_values: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for val in valuations:
        if val.lot.account_id is not None:
            holding_values[val.lot.asset_id][val.lot.account_id] += val.market_value

    rows = []
    for drift in analyses:
        row = RebalanceRow(drift=drift)
        if drift.action == RebalanceAction.SELL:
            selection = selections[drift.asset_id]
            row.recommended_accounts = selection.recommended_accounts
            row.reinvestment_suggestions = reinvestment.get(drift.asset_id, [])
            row.tax_impact = selection.net_tax_impact
            row.tax_notes = selection.notes
            row.degraded = selection.degraded
        elif drift.action == RebalanceAction.BUY:
            row.recommended_accounts = recommend_buy_accounts(
                accounts, drift.amount, holding_values.get(drift.asset_id)
            )
            row.tax_notes = "Consider tax-advantaged accounts for purchases"
        rows.append(row)

    cash_needed = (
        sum((d.amount for d in buys), ZERO)
        - sum((d.amount for d in sells), ZERO)
    )

    lens_breakdown = allocation_by_lens(
        lens,
        [(v.lot, v.market_value) for v in valuations],
        assets_by_id,
        accounts=accounts_by_id,
        groups=groups_by_id,
    )

    pnl = calculate_unrealized_pnl_summary(valuations)
    pnl["realized_gain"] = calculate_realized_gain(transactions, end=as_of)
    pnl["income"] = calculate_income(transactions, end=as_of)
    pnl["net_gain"] = calculate_net_gain(
        pnl["total_unrealized_pnl"], pnl["realized_gain"], pnl["income"]
    )

    logger.info(
        "Rebalance report as of %s: %d rows, %d buys, %d sells, total value %s",
        as_of, len(rows), len(buys), len(sells), total_value,
    )

    return RebalanceReport(
        as_of=as_of,
        rows=rows,
        groups=summarize_groups(report_groups, analyses, total_value),
        lens=lens,
        lens_breakdown=lens_breakdown,
        total_value=total_value,
        total_cash=total_cash,
        cash_needed=cash_needed,
        drift_summary=summarize_drift(analyses),
        lens_weights=calculate_weights(lens_breakdown, total_value),
        pnl=pnl,
        pnl_by_term=calculate_pnl_by_gain_type(valuations),
        conditions=conditions,
    )
