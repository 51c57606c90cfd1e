"""
Tax-aware account selection for sells and reinvestment of the proceeds.

Given a holding that must be trimmed by a dollar amount, the selector decides
which accounts to sell from. When the holding carries a net unrealized gain,
tax-advantaged accounts are drawn down first so no taxable gain is realized;
when it carries a net loss, taxable accounts go first so the loss can be
harvested. Tax is estimated only on the taxable portion, lot by lot, at the
short- or long-term rate according to each lot's age.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from folio_pilot.models import (
    Account,
    AccountRecommendation,
    DriftAnalysis,
    ReinvestmentSuggestion,
    TaxLot,
    TaxSelection,
    TaxStatus,
)
from folio_pilot.portfolio.holdings import UNASSIGNED


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def lot_tax_rate(
    lot: TaxLot,
    as_of: date,
    short_term_rate: Decimal,
    long_term_rate: Decimal,
    long_term_days: int = 365,
) -> Decimal:
    """Short-term rate for lots younger than long_term_days at as_of, else long-term."""
    days_held = (as_of - lot.acquisition_date).days
    return short_term_rate if days_held < long_term_days else long_term_rate


def _fifo(lots: list[TaxLot]) -> list[TaxLot]:
    return sorted(lots, key=lambda lot: lot.acquisition_date)


def _deplete_by_value(
    lots: list[TaxLot],
    amount: Decimal,
    price: Decimal,
) -> list[tuple[TaxLot, Decimal, Decimal]]:
    """
    Walk lots oldest first, taking market value until amount is covered.

    Returns:
        (lot, sale value taken, cost basis consumed) per depleted lot
    """
    taken = []
    left = amount
    for lot in _fifo(lots):
        if left <= ZERO:
            break
        lot_value = lot.remaining_quantity * price
        if lot_value <= ZERO:
            continue
        take = min(lot_value, left)
        basis = lot.remaining_cost * take / lot_value
        taken.append((lot, take, basis))
        left -= take
    return taken


def _tax_notes(net_tax_impact: Decimal, any_taxable: bool) -> str:
    if net_tax_impact > ZERO:
        return f"Estimated capital gains tax on taxable portion: ${net_tax_impact:,.2f}"
    if net_tax_impact < ZERO:
        return f"Potential tax-loss harvesting benefit: ${-net_tax_impact:,.2f}"
    if not any_taxable:
        return "Sold from tax-advantaged accounts; no taxable gain"
    return "No net taxable gain expected"


def select_sell_accounts(
    asset_id: str,
    amount: Decimal,
    lots: list[TaxLot],
    accounts: dict[str, Account],
    price: Optional[Decimal],
    as_of: date,
    short_term_rate: Decimal = Decimal("0.37"),
    long_term_rate: Decimal = Decimal("0.15"),
    long_term_days: int = 365,
) -> TaxSelection:
    """
    Choose the accounts to raise a sell amount from.

    Args:
        asset_id: Holding to sell
        amount: Dollar amount to raise
        lots: Open lots of the holding (other assets are ignored)
        accounts: Accounts by id
        price: Current unit price; None or 0 makes nothing sellable
        as_of: Date lot ages are measured at
        short_term_rate: Rate on gains of lots younger than long_term_days
        long_term_rate: Rate on gains of older lots
        long_term_days: Holding period separating the two rates

    Returns:
        TaxSelection with per-account amounts and the estimated tax impact.
        Falls back to a degraded estimate when no lot is linked to a known
        account.
    """
    asset_lots = [lot for lot in lots if lot.asset_id == asset_id and lot.is_open]
    price = price or ZERO

    if asset_lots and not any(lot.account_id in accounts for lot in asset_lots):
        return _degraded_selection(
            asset_id, amount, asset_lots, price, as_of,
            short_term_rate, long_term_rate, long_term_days,
        )

    by_account: dict[str, list[TaxLot]] = defaultdict(list)
    skipped = 0
    for lot in asset_lots:
        if lot.account_id in accounts:
            by_account[lot.account_id].append(lot)
        else:
            skipped += 1

    account_values = {
        acc_id: sum((lot.remaining_quantity * price for lot in acc_lots), ZERO)
        for acc_id, acc_lots in by_account.items()
    }
    account_bases = {
        acc_id: sum((lot.remaining_cost for lot in acc_lots), ZERO)
        for acc_id, acc_lots in by_account.items()
    }
    net_unrealized = sum(account_values.values(), ZERO) - sum(account_bases.values(), ZERO)
    is_net_gain = net_unrealized > ZERO

    def priority(acc_id: str) -> tuple[int, Decimal]:
        taxable = accounts[acc_id].is_taxable
        first = (not taxable) if is_net_gain else taxable
        return (0 if first else 1, -account_values[acc_id])

    rationale = (
        "Prioritize tax-advantaged holdings to limit taxable gains"
        if is_net_gain
        else "Prioritize taxable holdings to realize losses"
    )

    recommendations = []
    tax_owed = ZERO
    loss_benefit = ZERO
    any_taxable = False
    remaining = amount

    for acc_id in sorted(by_account, key=priority):
        if remaining <= ZERO:
            break
        take = min(account_values[acc_id], remaining)
        if take <= ZERO:
            continue

        account = accounts[acc_id]
        depleted = _deplete_by_value(by_account[acc_id], take, price)

        if account.is_taxable:
            any_taxable = True
            for lot, sale_value, basis in depleted:
                gain = sale_value - basis
                rate = lot_tax_rate(lot, as_of, short_term_rate, long_term_rate, long_term_days)
                if gain > ZERO:
                    tax_owed += gain * rate
                elif gain < ZERO:
                    loss_benefit += -gain * rate

        recommendations.append(
            AccountRecommendation(
                account_id=acc_id,
                name=account.name,
                account_type=account.account_type,
                amount=take,
                holding_value=account_values[acc_id],
                lot_ids=[lot.lot_id for lot, _, _ in depleted],
                rationale=rationale,
            )
        )
        remaining -= take

    net_tax_impact = tax_owed - loss_benefit
    notes = _tax_notes(net_tax_impact, any_taxable)
    if remaining > ZERO:
        notes += f"; ${remaining:,.2f} could not be covered by open lots"
    if skipped:
        notes += f"; {skipped} lot(s) without a known account ignored"

    return TaxSelection(
        asset_id=asset_id,
        requested_amount=amount,
        recommended_accounts=recommendations,
        tax_owed=tax_owed,
        loss_benefit=loss_benefit,
        net_tax_impact=net_tax_impact,
        unfilled_amount=max(remaining, ZERO),
        notes=notes,
    )


def _degraded_selection(
    asset_id: str,
    amount: Decimal,
    lots: list[TaxLot],
    price: Decimal,
    as_of: date,
    short_term_rate: Decimal,
    long_term_rate: Decimal,
    long_term_days: int,
) -> TaxSelection:
    """
    Flat estimate over all lots of a holding when no account is known.

    Every lot is sold in the same proportion and its gain taxed at the rate
    matching its age. Losses are not credited since the accounts' tax status
    is unknown.
    """
    logger.warning("No account linkage for lots of %s; using degraded tax estimate", asset_id)

    total_value = sum((lot.remaining_quantity * price for lot in lots), ZERO)
    ratio = min(Decimal("1"), amount / total_value) if total_value > ZERO else ZERO

    tax_owed = ZERO
    for lot in lots:
        gain = (lot.remaining_quantity * price - lot.remaining_cost) * ratio
        if gain > ZERO:
            tax_owed += gain * lot_tax_rate(lot, as_of, short_term_rate, long_term_rate, long_term_days)

    sold = total_value * ratio
    recommendations = []
    if sold > ZERO:
        recommendations.append(
            AccountRecommendation(
                account_id=None,
                name=UNASSIGNED,
                account_type="",
                amount=sold,
                holding_value=total_value,
                lot_ids=[lot.lot_id for lot in _fifo(lots)],
                rationale="No account metadata available",
            )
        )

    return TaxSelection(
        asset_id=asset_id,
        requested_amount=amount,
        recommended_accounts=recommendations,
        tax_owed=tax_owed,
        loss_benefit=ZERO,
        net_tax_impact=tax_owed,
        unfilled_amount=max(amount - sold, ZERO),
        degraded=True,
        notes="Lots are not linked to accounts; tax estimated proportionally across all lots",
    )


def sale_proceeds(selection: TaxSelection) -> Decimal:
    """Cash available to reinvest: amount sold plus any net tax benefit."""
    return selection.selected_amount + max(ZERO, -selection.net_tax_impact)


def plan_reinvestment(
    sells: list[tuple[DriftAnalysis, TaxSelection]],
    buys: list[DriftAnalysis],
    prices: dict[str, Optional[Decimal]],
) -> dict[str, list[ReinvestmentSuggestion]]:
    """
    Allocate sale proceeds to underweight holdings of the same group.

    Sells are processed most overweight first. Each sell's proceeds cascade
    into the group's buy rows by descending |drift|; a buy need already funded
    by an earlier sell is not funded again.

    Args:
        sells: Sell drift rows with their tax selections
        buys: Buy drift rows
        prices: Current unit price per asset id

    Returns:
        Dictionary mapping sold asset_id to its reinvestment suggestions
    """
    needs: dict[str, Decimal] = {b.asset_id: b.amount for b in buys}
    buys_by_group: dict[Optional[str], list[DriftAnalysis]] = defaultdict(list)
    for buy in sorted(buys, key=lambda b: abs(b.drift_pct), reverse=True):
        buys_by_group[buy.group_id].append(buy)

    plan: dict[str, list[ReinvestmentSuggestion]] = {}
    for drift, selection in sorted(sells, key=lambda s: abs(s[0].drift_pct), reverse=True):
        proceeds = sale_proceeds(selection)
        suggestions = []
        for buy in buys_by_group.get(drift.group_id, []):
            if proceeds <= ZERO:
                break
            take = min(needs[buy.asset_id], proceeds)
            if take <= ZERO:
                continue
            price = prices.get(buy.asset_id)
            suggestions.append(
                ReinvestmentSuggestion(
                    asset_id=buy.asset_id,
                    ticker=buy.ticker,
                    amount=take,
                    units=take / price if price else ZERO,
                    rationale=f"Underweight by {abs(buy.drift_pct):.2f}%; highest drift funded first",
                )
            )
            needs[buy.asset_id] -= take
            proceeds -= take
        plan[drift.asset_id] = suggestions

    return plan


def recommend_buy_accounts(
    accounts: list[Account],
    amount: Decimal,
    holding_values: Optional[dict[str, Decimal]] = None,
    limit: int = 2,
) -> list[AccountRecommendation]:
    """
    Suggest accounts for a buy, preferring tax-advantaged ones.

    The first account carries the whole amount; further accounts are listed
    as alternatives with a zero amount.

    Args:
        accounts: All accounts
        amount: Dollar amount to buy
        holding_values: Current value of the holding per account id
        limit: Maximum number of accounts to suggest

    Returns:
        Up to limit recommendations; empty when there are no accounts
    """
    holding_values = holding_values or {}
    preferred = [a for a in accounts if a.tax_status == TaxStatus.TAX_ADVANTAGED]
    chosen = preferred or list(accounts)
    reason = (
        "Tax-advantaged account preferred for buying"
        if preferred
        else "No tax-advantaged account available"
    )

    recommendations = []
    for i, account in enumerate(chosen[:limit]):
        recommendations.append(
            AccountRecommendation(
                account_id=account.account_id,
                name=account.name,
                account_type=account.account_type,
                amount=amount if i == 0 else ZERO,
                holding_value=holding_values.get(account.account_id, ZERO),
                lot_ids=[],
                rationale=reason if i == 0 else f"Alternative: {reason.lower()}",
            )
        )
    return recommendations
