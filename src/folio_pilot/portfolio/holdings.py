"""
Holdings aggregation over open tax lots.

Provides utilities for grouping lots by asset and account and for rolling
holding values up into the allocation lenses used by the reports.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

from folio_pilot.models import Account, Asset, Group, TaxLot


UNASSIGNED = "unassigned"

# Lens name -> Asset attribute holding the lens key
ASSET_LENSES = {
    "group": "group_id",
    "asset_type": "asset_type",
    "asset_subtype": "asset_subtype",
    "geography": "geography",
    "size_tag": "size_tag",
    "factor_tag": "factor_tag",
}

LENSES = ("account",) + tuple(ASSET_LENSES)


def aggregate_lots_by_asset(lots: list[TaxLot]) -> dict[str, list[TaxLot]]:
    """
    Group open tax lots by asset.

    Args:
        lots: List of tax lots

    Returns:
        Dictionary mapping asset_id to its open lots
    """
    holdings: dict[str, list[TaxLot]] = defaultdict(list)
    for lot in lots:
        if lot.is_open:
            holdings[lot.asset_id].append(lot)
    return dict(holdings)


def aggregate_lots_by_account(lots: list[TaxLot]) -> dict[Optional[str], list[TaxLot]]:
    """Group open tax lots by account id (None for lots with no account)."""
    by_account: dict[Optional[str], list[TaxLot]] = defaultdict(list)
    for lot in lots:
        if lot.is_open:
            by_account[lot.account_id].append(lot)
    return dict(by_account)


def calculate_total_quantity(lots: list[TaxLot], asset_id: str) -> Decimal:
    """Total open units of an asset across all accounts."""
    return sum(
        (lot.remaining_quantity for lot in lots if lot.asset_id == asset_id),
        Decimal("0"),
    )


def calculate_total_cost_basis(lots: list[TaxLot], asset_id: Optional[str] = None) -> Decimal:
    """
    Calculate the open cost basis of lots.

    Args:
        lots: List of tax lots
        asset_id: Optional asset to filter by

    Returns:
        Sum of remaining quantity * cost basis per unit
    """
    if asset_id:
        lots = [lot for lot in lots if lot.asset_id == asset_id]
    return sum((lot.remaining_cost for lot in lots if lot.is_open), Decimal("0"))


def lens_key(
    asset: Optional[Asset],
    lens: str,
    groups: Optional[dict[str, Group]] = None,
) -> str:
    """
    Key of an asset under an allocation lens.

    The group lens resolves to the group's name when the group is known.
    Missing tags and unknown assets fall into the "unassigned" bucket.
    """
    if lens not in ASSET_LENSES:
        raise ValueError(f"Unknown asset lens: {lens}")

    if asset is None:
        return UNASSIGNED

    value = getattr(asset, ASSET_LENSES[lens])
    if not value:
        return UNASSIGNED
    if lens == "group" and groups and value in groups:
        return groups[value].name
    return value


def allocation_by_lens(
    lens: str,
    lot_values: list[tuple[TaxLot, Decimal]],
    assets: dict[str, Asset],
    accounts: Optional[dict[str, Account]] = None,
    groups: Optional[dict[str, Group]] = None,
) -> dict[str, Decimal]:
    """
    Roll lot market values up into lens buckets.

    Args:
        lens: One of LENSES
        lot_values: (lot, market value) pairs
        assets: Assets by id
        accounts: Accounts by id (account lens labels)
        groups: Groups by id (group lens labels)

    Returns:
        Dictionary mapping bucket label to market value, largest first
    """
    if lens not in LENSES:
        raise ValueError(f"Unknown lens: {lens}. Expected one of {', '.join(LENSES)}")

    buckets: dict[str, Decimal] = defaultdict(Decimal)
    for lot, value in lot_values:
        if lens == "account":
            account = (accounts or {}).get(lot.account_id) if lot.account_id else None
            key = account.name if account else (lot.account_id or UNASSIGNED)
        else:
            key = lens_key(assets.get(lot.asset_id), lens, groups)
        buckets[key] += value

    return dict(sorted(buckets.items(), key=lambda item: item[1], reverse=True))


def calculate_weights(values: dict[str, Decimal], total: Decimal) -> dict[str, Decimal]:
    """
    Convert bucket values into percentage weights of a total.

    Returns:
        Dictionary mapping bucket to weight in percent; empty when total is 0
    """
    if total == Decimal("0"):
        return {}
    return {key: value / total * Decimal("100") for key, value in values.items()}
