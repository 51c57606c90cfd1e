"""
Drift analysis against a hierarchical target allocation.

Each holding has a target share within its group and each group a target
share of the portfolio. Drift is measured relative to the holding's target
weight (a 12% holding against a 10% target has drifted +20%), and the group's
upside/downside thresholds turn drift into a buy, sell or hold decision.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Optional

from folio_pilot.errors import InvalidInputError
from folio_pilot.models import (
    Asset,
    DriftAnalysis,
    Group,
    GroupDrift,
    HoldingDrift,
    HoldingTarget,
    RebalanceAction,
)
from folio_pilot.portfolio.holdings import UNASSIGNED


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def calculate_holding_drift(
    current_value: Decimal,
    group_value: Decimal,
    target_in_group: Decimal,
    group_target_pct: Decimal,
    upside_threshold: Decimal = Decimal("5"),
    downside_threshold: Decimal = Decimal("5"),
    band_mode: bool = False,
) -> HoldingDrift:
    """
    Compute drift and the rebalance decision for one holding.

    Args:
        current_value: Market value of the holding
        group_value: Market value of the holding's group
        target_in_group: Target percentage of the holding within its group
        group_target_pct: Target percentage of the group within the portfolio
        upside_threshold: Drift (percent of target) at or above which to sell
        downside_threshold: Drift (percent of target) at or below whose
            negative to buy
        band_mode: Trade back to the threshold edge instead of the target

    Returns:
        HoldingDrift with the implied overall target, in-group weight, drift,
        action and trade amount
    """
    implied_overall_target = group_target_pct * target_in_group / HUNDRED

    if group_value > ZERO:
        current_in_group_pct = HUNDRED * current_value / group_value
    else:
        current_in_group_pct = ZERO

    if target_in_group > ZERO:
        drift_pct = HUNDRED * (current_in_group_pct - target_in_group) / target_in_group
    else:
        drift_pct = ZERO

    action = RebalanceAction.HOLD
    if target_in_group > ZERO and group_target_pct > ZERO:
        if drift_pct >= abs(upside_threshold):
            action = RebalanceAction.SELL
        elif drift_pct <= -abs(downside_threshold):
            action = RebalanceAction.BUY

    amount = ZERO
    if action != RebalanceAction.HOLD:
        if band_mode:
            signed = upside_threshold if action == RebalanceAction.SELL else -downside_threshold
            target_weight = target_in_group * (1 + signed / HUNDRED)
        else:
            target_weight = target_in_group
        amount = abs(group_value * target_weight / HUNDRED - current_value)

    return HoldingDrift(
        implied_overall_target=implied_overall_target,
        current_in_group_pct=current_in_group_pct,
        drift_pct=drift_pct,
        action=action,
        amount=amount,
    )


def validate_targets(groups: list[Group], targets: list[HoldingTarget]) -> None:
    """
    Check target percentages and thresholds before any drift is computed.

    Sums are not checked; targets that do not add up to 100% still produce
    well-defined drift.

    Raises:
        InvalidInputError: For a target outside 0-100 or a negative threshold
    """
    for group in groups:
        if not ZERO <= group.target_pct <= HUNDRED:
            raise InvalidInputError(
                f"Group {group.group_id} target {group.target_pct} is outside 0-100"
            )
        if group.upside_threshold < ZERO or group.downside_threshold < ZERO:
            raise InvalidInputError(
                f"Group {group.group_id} has a negative drift threshold"
            )

    for target in targets:
        if not ZERO <= target.target_pct <= HUNDRED:
            raise InvalidInputError(
                f"Holding target {target.target_pct} in group {target.group_id} is outside 0-100",
                asset_id=target.asset_id,
            )


def analyze_drift(
    assets: list[Asset],
    groups: list[Group],
    targets: list[HoldingTarget],
    asset_values: dict[str, Decimal],
    total_value: Decimal,
) -> list[DriftAnalysis]:
    """
    Analyze drift for every holding in the target hierarchy.

    A holding is included when it has market value or a target. Holdings whose
    group is missing or unknown are reported in the "unassigned" bucket with a
    zero target, so they always hold. A target that names a group other than
    the holding's own is ignored.

    Args:
        assets: All assets
        groups: All groups
        targets: Holding targets within groups
        asset_values: Current market value per asset id
        total_value: Total portfolio value (holdings plus cash)

    Returns:
        List of DriftAnalysis, ordered by group then descending |drift|

    Raises:
        InvalidInputError: If targets or thresholds are out of range
    """
    validate_targets(groups, targets)

    groups_by_id = {g.group_id: g for g in groups}
    assets_by_id = {a.asset_id: a for a in assets}
    target_lookup = {(t.group_id, t.asset_id): t.target_pct for t in targets}

    # Each holding belongs to its own group only
    members: dict[str, set[str]] = defaultdict(set)
    for asset in assets:
        group_id = asset.group_id if asset.group_id in groups_by_id else UNASSIGNED
        if asset_values.get(asset.asset_id, ZERO) != ZERO or (group_id, asset.asset_id) in target_lookup:
            members[group_id].add(asset.asset_id)
    for target in targets:
        asset = assets_by_id.get(target.asset_id)
        if asset is not None and asset.group_id != target.group_id:
            logger.warning(
                "Ignoring target for %s in group %s: holding belongs to %s",
                asset.ticker, target.group_id, asset.group_id or UNASSIGNED,
            )

    analyses = []
    for group_id in sorted(members, key=lambda g: (g == UNASSIGNED, g)):
        group = groups_by_id.get(group_id)
        asset_ids = members[group_id]
        group_value = sum((asset_values.get(a, ZERO) for a in asset_ids), ZERO)

        rows = []
        for asset_id in asset_ids:
            asset = assets_by_id[asset_id]
            current_value = asset_values.get(asset_id, ZERO)
            target_in_group = target_lookup.get((group_id, asset_id), ZERO) if group else ZERO

            result = calculate_holding_drift(
                current_value=current_value,
                group_value=group_value,
                target_in_group=target_in_group,
                group_target_pct=group.target_pct if group else ZERO,
                upside_threshold=group.upside_threshold if group else ZERO,
                downside_threshold=group.downside_threshold if group else ZERO,
                band_mode=group.band_mode if group else False,
            )

            current_pct = HUNDRED * current_value / total_value if total_value > ZERO else ZERO

            rows.append(
                DriftAnalysis(
                    asset_id=asset_id,
                    ticker=asset.ticker,
                    group_id=group_id if group else None,
                    current_value=current_value,
                    group_value=group_value,
                    current_pct=current_pct,
                    current_in_group_pct=result.current_in_group_pct,
                    target_in_group_pct=target_in_group,
                    implied_overall_target=result.implied_overall_target,
                    drift_pct=result.drift_pct,
                    action=result.action,
                    amount=result.amount,
                )
            )

        rows.sort(key=lambda r: (-abs(r.drift_pct), r.ticker))
        analyses.extend(rows)

    return analyses


def summarize_groups(
    groups: list[Group],
    analyses: list[DriftAnalysis],
    total_value: Decimal,
) -> list[GroupDrift]:
    """
    Group-level allocation versus target.

    Drift here is the raw percentage-point difference of the group's share of
    the portfolio from its target.

    Args:
        groups: All groups
        analyses: Output of analyze_drift
        total_value: Total portfolio value

    Returns:
        One GroupDrift per group, in input order
    """
    values: dict[str, Decimal] = defaultdict(Decimal)
    for row in analyses:
        if row.group_id is not None:
            values[row.group_id] += row.current_value

    summaries = []
    for group in groups:
        current_value = values.get(group.group_id, ZERO)
        current_pct = HUNDRED * current_value / total_value if total_value > ZERO else ZERO
        summaries.append(
            GroupDrift(
                group_id=group.group_id,
                name=group.name,
                current_value=current_value,
                current_pct=current_pct,
                target_pct=group.target_pct,
                drift_points=current_pct - group.target_pct,
            )
        )
    return summaries


def get_actionable(analyses: list[DriftAnalysis]) -> list[DriftAnalysis]:
    """Rows whose action is buy or sell."""
    return [a for a in analyses if a.action != RebalanceAction.HOLD]


def get_buy_candidates(
    analyses: list[DriftAnalysis],
    group_id: Optional[str] = None,
) -> list[DriftAnalysis]:
    """
    Buy rows, most underweight first.

    Args:
        analyses: Drift rows
        group_id: Restrict to one group

    Returns:
        Buy rows sorted by descending |drift|
    """
    buys = [
        a for a in analyses
        if a.action == RebalanceAction.BUY and (group_id is None or a.group_id == group_id)
    ]
    buys.sort(key=lambda a: abs(a.drift_pct), reverse=True)
    return buys


def get_sell_candidates(
    analyses: list[DriftAnalysis],
    group_id: Optional[str] = None,
) -> list[DriftAnalysis]:
    """Sell rows, most overweight first."""
    sells = [
        a for a in analyses
        if a.action == RebalanceAction.SELL and (group_id is None or a.group_id == group_id)
    ]
    sells.sort(key=lambda a: abs(a.drift_pct), reverse=True)
    return sells


def summarize_drift(analyses: list[DriftAnalysis]) -> dict:
    """
    Generate summary statistics for a drift analysis.

    Args:
        analyses: List of drift analyses

    Returns:
        Dictionary with summary statistics
    """
    buys = get_buy_candidates(analyses)
    sells = get_sell_candidates(analyses)
    actionable = get_actionable(analyses)

    return {
        "total_holdings": len(analyses),
        "buy_count": len(buys),
        "sell_count": len(sells),
        "hold_count": len(analyses) - len(actionable),
        "total_buy_amount": sum((a.amount for a in buys), ZERO),
        "total_sell_amount": sum((a.amount for a in sells), ZERO),
        "max_abs_drift": max((abs(a.drift_pct) for a in analyses), default=ZERO),
    }
