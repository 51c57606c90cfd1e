"""
Portfolio valuation and mark-to-market calculations.

This module resolves point-in-time prices, values open tax lots and computes
cash balances from the transaction history. A holding without a usable price
is valued at zero and reported through a MISSING_PRICE condition rather than
aborting the valuation.
"""

import bisect
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import pandas as pd

from folio_pilot.models import (
    Asset,
    ConditionType,
    LotValuation,
    PricePoint,
    ReportCondition,
    TaxLot,
    Transaction,
)


logger = logging.getLogger(__name__)


class PriceBook:
    """
    Point-in-time price lookup.

    Holds every price observation per ticker and answers "latest price at or
    before a date", which carries the last known price forward across gaps.
    """

    def __init__(self, prices: Iterable[PricePoint] = ()):
        self._dates: dict[str, list[date]] = defaultdict(list)
        self._prices: dict[str, list[Decimal]] = defaultdict(list)
        self.add_all(prices)

    def add_all(self, prices: Iterable[PricePoint]) -> None:
        by_ticker: dict[str, dict[date, Decimal]] = defaultdict(dict)
        for ticker in self._dates:
            by_ticker[ticker] = dict(zip(self._dates[ticker], self._prices[ticker]))
        for point in prices:
            # A later observation for the same date replaces the earlier one
            by_ticker[point.ticker.upper()][point.date] = point.price

        for ticker, observations in by_ticker.items():
            ordered = sorted(observations.items())
            self._dates[ticker] = [d for d, _ in ordered]
            self._prices[ticker] = [p for _, p in ordered]

    @property
    def tickers(self) -> set[str]:
        return set(self._dates)

    def price(self, ticker: str, as_of: Optional[date] = None) -> Optional[Decimal]:
        """
        Latest price for a ticker at or before as_of.

        Args:
            ticker: Ticker symbol
            as_of: Evaluation date; None returns the latest observation

        Returns:
            Price, or None when no observation exists at or before as_of
        """
        ticker = ticker.upper()
        dates = self._dates.get(ticker)
        if not dates:
            return None
        if as_of is None:
            return self._prices[ticker][-1]

        idx = bisect.bisect_right(dates, as_of)
        if idx == 0:
            return None
        return self._prices[ticker][idx - 1]

    def price_frame(self, tickers: Iterable[str], dates: list[date]) -> pd.DataFrame:
        """
        Forward-filled price table.

        Args:
            tickers: Ticker symbols (columns)
            dates: Evaluation dates (index), ascending

        Returns:
            DataFrame of floats indexed by date; NaN where no price exists yet
        """
        columns = {}
        for ticker in tickers:
            ticker = ticker.upper()
            raw = pd.Series(
                [float(p) for p in self._prices.get(ticker, [])],
                index=pd.to_datetime(self._dates.get(ticker, [])),
                dtype=float,
            )
            target = pd.to_datetime(dates)
            if raw.empty:
                columns[ticker] = pd.Series(float("nan"), index=target)
                continue
            combined = raw.reindex(raw.index.union(target)).sort_index().ffill()
            columns[ticker] = combined.reindex(target)

        frame = pd.DataFrame(columns, index=pd.to_datetime(dates))
        frame.index.name = "date"
        return frame


def value_lots(
    lots: list[TaxLot],
    assets: dict[str, Asset],
    price_book: PriceBook,
    valuation_date: date,
    long_term_days: int = 365,
) -> tuple[list[LotValuation], list[ReportCondition]]:
    """
    Value open tax lots at the latest price on or before valuation_date.

    Args:
        lots: Tax lots to value (closed lots are skipped)
        assets: Assets by id, for ticker resolution
        price_book: Price lookup
        valuation_date: Date of valuation
        long_term_days: Holding period threshold for gain classification

    Returns:
        Tuple of (lot valuations, missing-price conditions; one per asset)
    """
    valuations = []
    missing: dict[str, str] = {}

    for lot in lots:
        if not lot.is_open:
            continue

        asset = assets.get(lot.asset_id)
        ticker = asset.ticker if asset else lot.asset_id
        price = price_book.price(ticker, valuation_date)
        if price is None:
            missing[lot.asset_id] = ticker

        valuations.append(
            LotValuation.from_lot(
                lot=lot,
                ticker=ticker,
                current_price=price,
                valuation_date=valuation_date,
                long_term_days=long_term_days,
            )
        )

    conditions = []
    for asset_id, ticker in sorted(missing.items()):
        logger.warning("No price for %s (%s) on or before %s", ticker, asset_id, valuation_date)
        conditions.append(
            ReportCondition(
                condition=ConditionType.MISSING_PRICE,
                subject=asset_id,
                message=f"No price for {ticker} on or before {valuation_date.isoformat()}; valued at 0",
            )
        )

    return valuations, conditions


def values_by_asset(valuations: list[LotValuation]) -> dict[str, Decimal]:
    """Market value per asset."""
    values: dict[str, Decimal] = defaultdict(Decimal)
    for val in valuations:
        values[val.lot.asset_id] += val.market_value
    return dict(values)


def calculate_cash_balance(
    transactions: Iterable[Transaction],
    as_of: Optional[date] = None,
    account_id: Optional[str] = None,
) -> Decimal:
    """
    Cash balance implied by the transaction history.

    Every transaction's amount is its signed cash effect, so the balance is
    their sum.

    Args:
        transactions: Transaction history
        as_of: Only include transactions on or before this date
        account_id: Only include transactions of this account

    Returns:
        Signed cash balance
    """
    total = Decimal("0")
    for tx in transactions:
        if as_of is not None and tx.date > as_of:
            continue
        if account_id is not None and tx.account_id != account_id:
            continue
        total += tx.amount
    return total
