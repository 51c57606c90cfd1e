"""
Core data models for the portfolio accounting and rebalancing engine.

This module defines the records consumed from the persistence layer (assets,
groups, targets, accounts, lots, transactions, prices) and the typed results
produced by the ledger, drift engine, tax-aware selector and return calculator.
All monetary and share quantities use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid


class TaxStatus(Enum):
    """Tax treatment of an account."""
    TAXABLE = "Taxable"
    TAX_ADVANTAGED = "Tax-Advantaged"


class TransactionType(Enum):
    """Kinds of ledger events recorded by the persistence layer."""
    BUY = "Buy"
    SELL = "Sell"
    DIVIDEND = "Dividend"
    INTEREST = "Interest"
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"


class GainType(Enum):
    """Classification of capital gain/loss for tax purposes."""
    SHORT_TERM = "SHORT_TERM"  # Held < 365 days
    LONG_TERM = "LONG_TERM"    # Held >= 365 days


class RebalanceAction(Enum):
    """Drift engine decision for a holding."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class ReturnMetric(Enum):
    """Return convention for performance summaries."""
    TWR = "twr"
    MWR = "mwr"


class ConditionType(Enum):
    """Non-fatal degradations surfaced alongside a report."""
    MISSING_PRICE = "MISSING_PRICE"
    NON_CONVERGENT_IRR = "NON_CONVERGENT_IRR"
    DEGRADED_SELECTION = "DEGRADED_SELECTION"


class ActionType(Enum):
    """Types of logged actions for the decision log."""
    CONFIG_LOADED = "CONFIG_LOADED"
    LOTS_REPLAYED = "LOTS_REPLAYED"
    REBALANCE_REPORT_GENERATED = "REBALANCE_REPORT_GENERATED"
    PERFORMANCE_REPORT_GENERATED = "PERFORMANCE_REPORT_GENERATED"


@dataclass
class Asset:
    """
    A holding that lots and transactions refer to.

    Attributes:
        asset_id: Unique identifier
        ticker: Ticker symbol used for price lookups
        name: Display name
        group_id: Group (sub-portfolio) the asset belongs to, if any
        asset_type: Classification tag (e.g. Equity, Bond)
        asset_subtype: Finer classification tag
        geography: Region tag
        size_tag: Market-cap tag
        factor_tag: Factor tag (value, growth, ...)
    """
    asset_id: str
    ticker: str
    name: str = ""
    group_id: Optional[str] = None
    asset_type: Optional[str] = None
    asset_subtype: Optional[str] = None
    geography: Optional[str] = None
    size_tag: Optional[str] = None
    factor_tag: Optional[str] = None


@dataclass
class Group:
    """
    A sub-portfolio with a target share of total portfolio value.

    Thresholds are relative drift percentages (5 means 5% of the holding's
    own target weight). band_mode selects band rebalancing (trade back to the
    threshold edge) over absolute rebalancing (trade back to target).
    """
    group_id: str
    name: str
    target_pct: Decimal
    upside_threshold: Decimal = Decimal("5")
    downside_threshold: Decimal = Decimal("5")
    band_mode: bool = False


@dataclass
class HoldingTarget:
    """Target percentage of an asset within its group."""
    asset_id: str
    group_id: str
    target_pct: Decimal


@dataclass
class Account:
    """A brokerage or retirement account."""
    account_id: str
    name: str
    account_type: str = ""
    tax_status: TaxStatus = TaxStatus.TAXABLE

    @property
    def is_taxable(self) -> bool:
        return self.tax_status == TaxStatus.TAXABLE


@dataclass
class TaxLot:
    """
    Represents a single tax lot of one asset held in one account.

    Attributes:
        lot_id: Unique identifier for this lot
        asset_id: Asset the lot belongs to
        account_id: Account holding the lot (None when linkage is missing)
        acquisition_date: Date the units were acquired
        quantity: Original quantity bought
        cost_basis_per_unit: Per-unit cost basis at acquisition
        remaining_quantity: Units still open; only ever decreases
    """
    lot_id: str
    asset_id: str
    account_id: Optional[str]
    acquisition_date: date
    quantity: Decimal
    cost_basis_per_unit: Decimal
    remaining_quantity: Decimal

    @classmethod
    def create(
        cls,
        asset_id: str,
        account_id: Optional[str],
        acquisition_date: date,
        quantity: Decimal,
        cost_basis_per_unit: Decimal,
    ) -> "TaxLot":
        """Factory method to create a new, fully open TaxLot with auto-generated ID."""
        return cls(
            lot_id=str(uuid.uuid4()),
            asset_id=asset_id,
            account_id=account_id,
            acquisition_date=acquisition_date,
            quantity=quantity,
            cost_basis_per_unit=cost_basis_per_unit,
            remaining_quantity=quantity,
        )

    @property
    def remaining_cost(self) -> Decimal:
        """Cost basis of the units still open."""
        return self.remaining_quantity * self.cost_basis_per_unit

    @property
    def is_open(self) -> bool:
        return self.remaining_quantity > Decimal("0")


@dataclass
class Transaction:
    """
    Immutable record of one portfolio event.

    amount is the signed cash effect on the account: negative for a Buy or
    Withdrawal, positive for a Sell, Dividend, Interest or Deposit.
    realized_gain is only set on Sell transactions.
    """
    transaction_id: str
    date: date
    transaction_type: TransactionType
    account_id: Optional[str]
    amount: Decimal
    asset_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    price_per_unit: Optional[Decimal] = None
    fees: Decimal = Decimal("0")
    realized_gain: Optional[Decimal] = None

    @property
    def is_trade(self) -> bool:
        return self.transaction_type in (TransactionType.BUY, TransactionType.SELL)

    @property
    def is_income(self) -> bool:
        return self.transaction_type in (TransactionType.DIVIDEND, TransactionType.INTEREST)

    @property
    def is_external_flow(self) -> bool:
        return self.transaction_type in (TransactionType.DEPOSIT, TransactionType.WITHDRAWAL)


@dataclass
class PricePoint:
    """
    Price observation for a ticker.

    Attributes:
        ticker: Ticker symbol
        date: Observation date
        price: Price per unit
    """
    ticker: str
    date: date
    price: Decimal


@dataclass
class LotDepletion:
    """One unit-slice taken from a lot by a sale."""
    lot_id: str
    quantity: Decimal
    cost_basis: Decimal
    acquisition_date: date
    days_held: int
    gain_type: GainType


@dataclass
class SaleResult:
    """
    Outcome of applying a sale to the ledger.

    Attributes:
        asset_id: Asset sold
        account_id: Account sold from
        sale_date: Date of sale
        quantity: Units sold
        proceeds: Gross proceeds (quantity * price)
        fees: Fees charged on the sale
        cost_basis_consumed: Cost basis of all depleted slices
        realized_gain: proceeds - fees - cost_basis_consumed
        lot_ages: Per-slice depletion detail in FIFO order
    """
    asset_id: str
    account_id: Optional[str]
    sale_date: date
    quantity: Decimal
    proceeds: Decimal
    fees: Decimal
    cost_basis_consumed: Decimal
    realized_gain: Decimal
    lot_ages: list[LotDepletion] = field(default_factory=list)

    @property
    def short_term_quantity(self) -> Decimal:
        return sum(
            (d.quantity for d in self.lot_ages if d.gain_type == GainType.SHORT_TERM),
            Decimal("0"),
        )

    @property
    def long_term_quantity(self) -> Decimal:
        return sum(
            (d.quantity for d in self.lot_ages if d.gain_type == GainType.LONG_TERM),
            Decimal("0"),
        )


@dataclass
class LotValuation:
    """
    Mark-to-market valuation of a single open lot.

    A lot whose ticker has no usable price is valued at zero and flagged with
    price_missing instead of being dropped.
    """
    lot: TaxLot
    ticker: str
    current_price: Decimal
    valuation_date: date
    market_value: Decimal
    unrealized_pnl: Decimal
    gain_type: GainType
    price_missing: bool = False

    @classmethod
    def from_lot(
        cls,
        lot: TaxLot,
        ticker: str,
        current_price: Optional[Decimal],
        valuation_date: date,
        long_term_days: int = 365,
    ) -> "LotValuation":
        """Create a LotValuation from a TaxLot and a (possibly absent) price."""
        price_missing = current_price is None
        price = Decimal("0") if price_missing else current_price
        market_value = lot.remaining_quantity * price

        days_held = (valuation_date - lot.acquisition_date).days
        gain_type = GainType.LONG_TERM if days_held >= long_term_days else GainType.SHORT_TERM

        return cls(
            lot=lot,
            ticker=ticker,
            current_price=price,
            valuation_date=valuation_date,
            market_value=market_value,
            unrealized_pnl=Decimal("0") if price_missing else market_value - lot.remaining_cost,
            gain_type=gain_type,
            price_missing=price_missing,
        )


@dataclass
class ReportCondition:
    """A non-fatal degradation that the caller should display."""
    condition: ConditionType
    subject: str
    message: str


@dataclass
class HoldingDrift:
    """Drift formula outputs for one holding, before any report context."""
    implied_overall_target: Decimal
    current_in_group_pct: Decimal
    drift_pct: Decimal
    action: RebalanceAction
    amount: Decimal


@dataclass
class DriftAnalysis:
    """
    Drift and rebalance decision for a single holding within its group.

    Percentages are expressed in percent (10 means 10%).

    Attributes:
        asset_id: Asset identifier
        ticker: Ticker symbol
        group_id: Group the holding is evaluated in
        current_value: Market value of the holding
        group_value: Total market value of the group
        current_pct: Share of total portfolio value
        current_in_group_pct: Share of the group's value
        target_in_group_pct: Target share within the group
        implied_overall_target: Group target * in-group target / 100
        drift_pct: Drift relative to the in-group target
        action: buy, sell or hold
        amount: Trade value required by the group's rebalance policy
    """
    asset_id: str
    ticker: str
    group_id: Optional[str]
    current_value: Decimal
    group_value: Decimal
    current_pct: Decimal
    current_in_group_pct: Decimal
    target_in_group_pct: Decimal
    implied_overall_target: Decimal
    drift_pct: Decimal
    action: RebalanceAction
    amount: Decimal


@dataclass
class GroupDrift:
    """Group-level allocation versus its portfolio target (percentage points)."""
    group_id: str
    name: str
    current_value: Decimal
    current_pct: Decimal
    target_pct: Decimal
    drift_points: Decimal


@dataclass
class AccountRecommendation:
    """An account to trade a holding in, with the amount and the lots involved."""
    account_id: Optional[str]
    name: str
    account_type: str
    amount: Decimal
    holding_value: Decimal
    lot_ids: list[str]
    rationale: str


@dataclass
class ReinvestmentSuggestion:
    """Allocation of sale proceeds into an underweight holding."""
    asset_id: str
    ticker: str
    amount: Decimal
    units: Decimal
    rationale: str


@dataclass
class TaxSelection:
    """
    Result of choosing where to raise a required sell amount.

    net_tax_impact is positive when tax is owed and negative for a net
    tax benefit from realized losses.
    """
    asset_id: str
    requested_amount: Decimal
    recommended_accounts: list[AccountRecommendation]
    tax_owed: Decimal
    loss_benefit: Decimal
    net_tax_impact: Decimal
    unfilled_amount: Decimal = Decimal("0")
    degraded: bool = False
    notes: str = ""

    @property
    def selected_amount(self) -> Decimal:
        return sum((r.amount for r in self.recommended_accounts), Decimal("0"))


@dataclass
class RebalanceRow:
    """One holding's line in a rebalance report."""
    drift: DriftAnalysis
    recommended_accounts: list[AccountRecommendation] = field(default_factory=list)
    reinvestment_suggestions: list[ReinvestmentSuggestion] = field(default_factory=list)
    tax_impact: Decimal = Decimal("0")
    tax_notes: str = ""
    degraded: bool = False


@dataclass
class RebalanceReport:
    """Complete rebalance report for one portfolio."""
    as_of: date
    rows: list[RebalanceRow]
    groups: list[GroupDrift]
    lens: str
    lens_breakdown: dict[str, Decimal]
    total_value: Decimal
    total_cash: Decimal
    cash_needed: Decimal
    drift_summary: dict[str, Any] = field(default_factory=dict)
    lens_weights: dict[str, Decimal] = field(default_factory=dict)
    pnl: dict[str, Decimal] = field(default_factory=dict)
    pnl_by_term: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    conditions: list[ReportCondition] = field(default_factory=list)


@dataclass
class ValuationPoint:
    """A portfolio value observation with the external cash flow on that date."""
    date: date
    portfolio_value: Decimal
    cash_flow: Decimal = Decimal("0")


@dataclass
class PerformancePoint:
    """One date of a performance series."""
    date: date
    portfolio_value: Decimal
    cash_flow: Decimal
    net_gain: Decimal
    unrealized: Decimal
    realized: Decimal
    income: Decimal
    cost_basis_total: Decimal
    return_pct: float = 0.0


@dataclass
class PerformanceSummary:
    """Summary metrics of one performance series (returns in percent)."""
    total_return: float
    annualized_return: float
    net_gain: Decimal


@dataclass
class PerformanceReport:
    """
    Date-indexed performance series plus summaries, keyed by series id.

    Series ids are account ids, group ids or lens values; labels maps each
    id to its display name.
    """
    start_date: date
    end_date: date
    lens: str
    metric: ReturnMetric
    series: dict[str, list[PerformancePoint]]
    summaries: dict[str, PerformanceSummary]
    labels: dict[str, str] = field(default_factory=dict)
    breakdown: dict[str, dict[str, list[PerformancePoint]]] = field(default_factory=dict)
    benchmarks: dict[str, list[tuple[date, float]]] = field(default_factory=dict)
    conditions: list[ReportCondition] = field(default_factory=list)

    def label(self, key: str) -> str:
        return self.labels.get(key, key)


@dataclass
class EngineConfig:
    """
    Engine configuration loaded from YAML.

    Attributes:
        short_term_rate: Tax rate applied to gains on lots held < long_term_days
        long_term_rate: Tax rate applied to gains on lots held >= long_term_days
        long_term_days: Holding period separating short- and long-term
        default_upside_threshold: Upside threshold for groups that omit one
        default_downside_threshold: Downside threshold for groups that omit one
        irr_initial_guess: Newton-Raphson starting rate
        irr_max_iterations: Newton-Raphson iteration cap
        irr_tolerance: |NPV| below which the solver stops
        day_count: Days per year when converting dates to year fractions
        twr_adjust_for_flows: Chain sub-period returns net of external flows
        benchmarks: Benchmark key to ticker mapping
        output_dir: Directory for output files
    """
    short_term_rate: Decimal = Decimal("0.37")
    long_term_rate: Decimal = Decimal("0.15")
    long_term_days: int = 365
    default_upside_threshold: Decimal = Decimal("5")
    default_downside_threshold: Decimal = Decimal("5")
    irr_initial_guess: float = 0.1
    irr_max_iterations: int = 100
    irr_tolerance: float = 1e-8
    day_count: float = 365.25
    twr_adjust_for_flows: bool = True
    benchmarks: dict[str, str] = field(default_factory=lambda: {
        "sp500": "SPY",
        "nasdaq": "QQQ",
        "tlt": "TLT",
        "vxus": "VXUS",
    })
    output_dir: str = "output"


@dataclass
class DecisionLogEntry:
    """
    Entry for the append-only decision log.

    Attributes:
        timestamp: When the action occurred
        action_type: Type of action
        details: JSON-serializable details dictionary
    """
    timestamp: datetime
    action_type: ActionType
    details: dict

    @classmethod
    def create(
        cls,
        action_type: ActionType,
        details: dict,
    ) -> "DecisionLogEntry":
        """Factory method with auto-generated timestamp."""
        return cls(
            timestamp=datetime.now(),
            action_type=action_type,
            details=details,
        )
