"""
Tax lot ledger with FIFO depletion.

The ledger holds the open lots of every (asset, account) pair. Buys create
lots; sells deplete them oldest acquisition date first, ties broken by the
order in which lots were added. No other component mutates lot state.

A ledger is built for the duration of one request (from stored lots or by
replaying transactions) and discarded afterwards; durable changes go through
the persistence layer.
"""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

from folio_pilot.errors import InsufficientLotsError, InvalidInputError
from folio_pilot.models import (
    GainType,
    LotDepletion,
    SaleResult,
    TaxLot,
    Transaction,
    TransactionType,
)


ZERO = Decimal("0")

PairKey = tuple[str, Optional[str]]


class TaxLotLedger:
    """
    In-memory set of open tax lots.

    Lots are copied on the way in, so callers' records are never mutated.
    """

    def __init__(self, long_term_days: int = 365):
        """
        Initialize an empty ledger.

        Args:
            long_term_days: Holding period (days) at or beyond which a
                depleted slice is classified as long-term
        """
        self.long_term_days = long_term_days
        self._lots: list[TaxLot] = []
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self._bought: dict[PairKey, Decimal] = defaultdict(Decimal)
        self._sold: dict[PairKey, Decimal] = defaultdict(Decimal)

    @classmethod
    def from_lots(cls, lots: Iterable[TaxLot], long_term_days: int = 365) -> "TaxLotLedger":
        """
        Build a ledger from stored lots.

        Closed lots (remaining quantity <= 0) are skipped. Stored lots only
        carry what is still open, so bought/sold totals start from the
        remaining quantities.
        """
        ledger = cls(long_term_days=long_term_days)
        for lot in lots:
            if not lot.is_open:
                continue
            ledger._add(replace(lot))
            key = (lot.asset_id, lot.account_id)
            ledger._bought[key] += lot.remaining_quantity
        return ledger

    def _add(self, lot: TaxLot) -> None:
        self._lots.append(lot)
        self._sequence[lot.lot_id] = self._next_sequence
        self._next_sequence += 1

    def _fifo_key(self, lot: TaxLot) -> tuple[date, int]:
        return (lot.acquisition_date, self._sequence[lot.lot_id])

    def apply_buy(
        self,
        asset_id: str,
        account_id: Optional[str],
        acquisition_date: date,
        quantity: Decimal,
        cost_basis_per_unit: Decimal,
        lot_id: Optional[str] = None,
    ) -> TaxLot:
        """
        Open a new lot.

        Args:
            asset_id: Asset bought
            account_id: Account the lot is held in
            acquisition_date: Trade date
            quantity: Units bought (must be > 0)
            cost_basis_per_unit: Per-unit basis (must be > 0)
            lot_id: Optional identifier; generated when omitted

        Returns:
            The newly opened TaxLot

        Raises:
            InvalidInputError: If quantity or cost basis is not strictly positive
        """
        if quantity is None or quantity <= ZERO:
            raise InvalidInputError(
                f"Buy quantity must be positive, got {quantity}",
                asset_id=asset_id,
                account_id=account_id,
            )
        if cost_basis_per_unit is None or cost_basis_per_unit <= ZERO:
            raise InvalidInputError(
                f"Buy cost basis per unit must be positive, got {cost_basis_per_unit}",
                asset_id=asset_id,
                account_id=account_id,
            )

        lot = TaxLot.create(
            asset_id=asset_id,
            account_id=account_id,
            acquisition_date=acquisition_date,
            quantity=quantity,
            cost_basis_per_unit=cost_basis_per_unit,
        )
        if lot_id is not None:
            if lot_id in self._sequence:
                raise InvalidInputError(
                    f"Duplicate lot id {lot_id}",
                    asset_id=asset_id,
                    account_id=account_id,
                )
            lot.lot_id = lot_id

        self._add(lot)
        self._bought[(asset_id, account_id)] += quantity
        return lot

    def apply_sell(
        self,
        asset_id: str,
        account_id: Optional[str],
        sale_date: date,
        quantity: Decimal,
        price_per_unit: Decimal,
        fees: Decimal = ZERO,
    ) -> SaleResult:
        """
        Deplete open lots oldest-first to satisfy a sale.

        The depletion plan is computed in full before any lot is touched, so
        a failed sale leaves the ledger unchanged.

        Args:
            asset_id: Asset sold
            account_id: Account sold from
            sale_date: Trade date (used to age each slice)
            quantity: Units sold (must be > 0)
            price_per_unit: Sale price (must be >= 0)
            fees: Fees charged on the sale (must be >= 0)

        Returns:
            SaleResult with realized gain, cost basis consumed and per-slice ages

        Raises:
            InvalidInputError: On a non-positive quantity or negative price/fees
            InsufficientLotsError: If fewer than quantity units are open
        """
        fees = ZERO if fees is None else fees
        if quantity is None or quantity <= ZERO:
            raise InvalidInputError(
                f"Sell quantity must be positive, got {quantity}",
                asset_id=asset_id,
                account_id=account_id,
            )
        if price_per_unit is None or price_per_unit < ZERO:
            raise InvalidInputError(
                f"Sell price must not be negative, got {price_per_unit}",
                asset_id=asset_id,
                account_id=account_id,
            )
        if fees < ZERO:
            raise InvalidInputError(
                f"Sell fees must not be negative, got {fees}",
                asset_id=asset_id,
                account_id=account_id,
            )

        candidates = self.open_lots(asset_id=asset_id, account_id=account_id, match_account=True)
        available = sum((lot.remaining_quantity for lot in candidates), ZERO)
        if available < quantity:
            raise InsufficientLotsError(asset_id, account_id, quantity, available)

        plan: list[tuple[TaxLot, Decimal]] = []
        remaining = quantity
        for lot in candidates:
            if remaining <= ZERO:
                break
            take = min(remaining, lot.remaining_quantity)
            plan.append((lot, take))
            remaining -= take

        depletions = []
        cost_basis_consumed = ZERO
        for lot, take in plan:
            slice_cost = take * lot.cost_basis_per_unit
            days_held = (sale_date - lot.acquisition_date).days
            depletions.append(
                LotDepletion(
                    lot_id=lot.lot_id,
                    quantity=take,
                    cost_basis=slice_cost,
                    acquisition_date=lot.acquisition_date,
                    days_held=days_held,
                    gain_type=self.classify(days_held),
                )
            )
            cost_basis_consumed += slice_cost

            lot.remaining_quantity -= take
            if lot.remaining_quantity <= ZERO:
                self._lots.remove(lot)

        self._sold[(asset_id, account_id)] += quantity

        proceeds = quantity * price_per_unit
        return SaleResult(
            asset_id=asset_id,
            account_id=account_id,
            sale_date=sale_date,
            quantity=quantity,
            proceeds=proceeds,
            fees=fees,
            cost_basis_consumed=cost_basis_consumed,
            realized_gain=proceeds - fees - cost_basis_consumed,
            lot_ages=depletions,
        )

    def classify(self, days_held: int) -> GainType:
        """Short-term below long_term_days, long-term at or beyond it."""
        return GainType.LONG_TERM if days_held >= self.long_term_days else GainType.SHORT_TERM

    def open_lots(
        self,
        asset_id: Optional[str] = None,
        account_id: Optional[str] = None,
        match_account: bool = False,
    ) -> list[TaxLot]:
        """
        Get open lots in FIFO order, optionally filtered.

        Args:
            asset_id: Only lots of this asset
            account_id: Only lots in this account
            match_account: Treat account_id=None as "lots with no account"
                rather than "any account"

        Returns:
            Open lots sorted by acquisition date, then insertion order
        """
        lots = [lot for lot in self._lots if lot.is_open]
        if asset_id is not None:
            lots = [lot for lot in lots if lot.asset_id == asset_id]
        if account_id is not None or match_account:
            lots = [lot for lot in lots if lot.account_id == account_id]
        lots.sort(key=self._fifo_key)
        return lots

    def value_at(
        self,
        asset_id: str,
        price_fn: Callable[[str], Optional[Decimal]],
        account_id: Optional[str] = None,
    ) -> Decimal:
        """
        Market value of the open lots of an asset.

        Args:
            asset_id: Asset to value
            price_fn: Returns the unit price for an asset id; None counts as zero
            account_id: Optional account filter

        Returns:
            Sum of remaining quantity * price
        """
        price = price_fn(asset_id)
        if price is None:
            return ZERO
        return sum(
            (lot.remaining_quantity * price for lot in self.open_lots(asset_id, account_id)),
            ZERO,
        )

    def cost_basis_at(self, asset_id: str, account_id: Optional[str] = None) -> Decimal:
        """Cost basis of the open lots of an asset (remaining quantity * basis per unit)."""
        return sum(
            (lot.remaining_cost for lot in self.open_lots(asset_id, account_id)),
            ZERO,
        )

    def total_remaining(self, asset_id: str, account_id: Optional[str]) -> Decimal:
        return sum(
            (lot.remaining_quantity
             for lot in self.open_lots(asset_id, account_id, match_account=True)),
            ZERO,
        )

    def total_bought(self, asset_id: str, account_id: Optional[str]) -> Decimal:
        return self._bought.get((asset_id, account_id), ZERO)

    def total_sold(self, asset_id: str, account_id: Optional[str]) -> Decimal:
        return self._sold.get((asset_id, account_id), ZERO)

    def asset_ids(self) -> set[str]:
        return {lot.asset_id for lot in self._lots if lot.is_open}

    def __len__(self) -> int:
        return len(self.open_lots())


@dataclass
class ReplayResult:
    """Ledger state after replaying a transaction history."""
    ledger: TaxLotLedger
    sales: dict[str, SaleResult] = field(default_factory=dict)  # transaction_id -> result

    @property
    def realized_gain(self) -> Decimal:
        return sum((s.realized_gain for s in self.sales.values()), ZERO)


def buy_cost_basis_per_unit(transaction: Transaction) -> Optional[Decimal]:
    """
    Per-unit basis of a Buy transaction.

    The cash amount (which includes any fees) is preferred over the quoted
    price when both are recorded.
    """
    quantity = transaction.quantity
    if quantity is None or quantity <= ZERO:
        return None
    if transaction.amount is not None and transaction.amount != ZERO:
        return abs(transaction.amount) / quantity
    return transaction.price_per_unit


def apply_transaction(
    ledger: TaxLotLedger,
    transaction: Transaction,
) -> Optional[SaleResult]:
    """
    Apply one Buy or Sell transaction to a ledger.

    Other transaction types do not touch lots and are ignored.

    Returns:
        The SaleResult for a Sell, otherwise None
    """
    if not transaction.is_trade:
        return None

    if transaction.transaction_type == TransactionType.BUY:
        ledger.apply_buy(
            asset_id=transaction.asset_id,
            account_id=transaction.account_id,
            acquisition_date=transaction.date,
            quantity=transaction.quantity,
            cost_basis_per_unit=buy_cost_basis_per_unit(transaction),
        )
        return None

    price = transaction.price_per_unit
    if price is None and transaction.quantity:
        # Gross proceeds are the net cash amount plus the fees paid
        price = (abs(transaction.amount) + (transaction.fees or ZERO)) / transaction.quantity
    return ledger.apply_sell(
        asset_id=transaction.asset_id,
        account_id=transaction.account_id,
        sale_date=transaction.date,
        quantity=transaction.quantity,
        price_per_unit=price,
        fees=transaction.fees or ZERO,
    )


def sort_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Chronological order; transactions on the same date keep their input order."""
    return sorted(transactions, key=lambda t: t.date)


def replay_transactions(
    transactions: Iterable[Transaction],
    long_term_days: int = 365,
) -> ReplayResult:
    """
    Rebuild lot state from an empty ledger by replaying a transaction history.

    Args:
        transactions: Full transaction history (any order)
        long_term_days: Holding period threshold for gain classification

    Returns:
        ReplayResult with the resulting ledger and each sale's result

    Raises:
        InvalidInputError: If a Buy carries an invalid quantity or price
        InsufficientLotsError: If the history sells more than it bought
    """
    ledger = TaxLotLedger(long_term_days=long_term_days)
    result = ReplayResult(ledger=ledger)

    for tx in sort_transactions(transactions):
        sale = apply_transaction(ledger, tx)
        if sale is not None:
            result.sales[tx.transaction_id] = sale

    return result


def reconcile_lots(
    replayed: list[TaxLot],
    stored: list[TaxLot],
    tolerance: Decimal = Decimal("0.000001"),
) -> list[str]:
    """
    Compare replayed open lots with the stored open lots.

    Lots are matched on (asset, account, acquisition date, basis per unit) in
    FIFO order, since replayed lots carry fresh identifiers.

    Args:
        replayed: Open lots produced by replay_transactions
        stored: Open lots held by the persistence layer
        tolerance: Allowed absolute difference on quantities and bases

    Returns:
        List of discrepancy descriptions; empty when the round-trip holds
    """
    def bucket(lots: list[TaxLot]) -> dict[tuple, list[TaxLot]]:
        grouped: dict[tuple, list[TaxLot]] = defaultdict(list)
        for lot in sorted(lots, key=lambda l: l.acquisition_date):
            if lot.is_open:
                grouped[(lot.asset_id, lot.account_id, lot.acquisition_date)].append(lot)
        return grouped

    replayed_buckets = bucket(replayed)
    stored_buckets = bucket(stored)
    discrepancies = []

    for key in sorted(set(replayed_buckets) | set(stored_buckets), key=str):
        asset_id, account_id, acquired = key
        ours = replayed_buckets.get(key, [])
        theirs = stored_buckets.get(key, [])
        label = f"{asset_id}/{account_id} acquired {acquired.isoformat()}"

        if len(ours) != len(theirs):
            discrepancies.append(
                f"{label}: {len(ours)} replayed lot(s) vs {len(theirs)} stored lot(s)"
            )
            continue

        for mine, stored_lot in zip(ours, theirs):
            if abs(mine.remaining_quantity - stored_lot.remaining_quantity) > tolerance:
                discrepancies.append(
                    f"{label}: remaining {mine.remaining_quantity} replayed "
                    f"vs {stored_lot.remaining_quantity} stored"
                )
            if abs(mine.cost_basis_per_unit - stored_lot.cost_basis_per_unit) > tolerance:
                discrepancies.append(
                    f"{label}: basis {mine.cost_basis_per_unit} replayed "
                    f"vs {stored_lot.cost_basis_per_unit} stored"
                )

    return discrepancies
