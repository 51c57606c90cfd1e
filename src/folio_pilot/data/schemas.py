"""
Data schemas for CSV/Parquet file validation.

Defines expected columns and data types for the portfolio tables and the
report files written by the engine.
"""

from dataclasses import dataclass


@dataclass
class ColumnSchema:
    """Schema definition for a single column."""
    name: str
    dtype: str  # pandas dtype string
    required: bool = True
    nullable: bool = False


@dataclass
class FileSchema:
    """Schema definition for a file."""
    name: str
    columns: list[ColumnSchema]
    description: str

    @property
    def required_columns(self) -> list[str]:
        """Get list of required column names."""
        return [c.name for c in self.columns if c.required]

    @property
    def all_columns(self) -> list[str]:
        """Get list of all column names."""
        return [c.name for c in self.columns]

    @property
    def non_nullable_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.required and not c.nullable]

    def validate_columns(self, df_columns: list[str]) -> tuple[bool, list[str]]:
        """
        Validate that a dataframe has the required columns.

        Args:
            df_columns: List of column names from the dataframe

        Returns:
            Tuple of (is_valid, list of missing columns)
        """
        missing = [col for col in self.required_columns if col not in df_columns]
        return len(missing) == 0, missing


ACCOUNTS_SCHEMA = FileSchema(
    name="accounts",
    description="Brokerage and retirement accounts with tax status",
    columns=[
        ColumnSchema(name="account_id", dtype="str"),
        ColumnSchema(name="name", dtype="str"),
        ColumnSchema(name="account_type", dtype="str", required=False, nullable=True),
        ColumnSchema(name="tax_status", dtype="str", required=False, nullable=True),
    ],
)

ASSETS_SCHEMA = FileSchema(
    name="assets",
    description="Holdings with classification tags and group membership",
    columns=[
        ColumnSchema(name="asset_id", dtype="str"),
        ColumnSchema(name="ticker", dtype="str"),
        ColumnSchema(name="name", dtype="str", required=False, nullable=True),
        ColumnSchema(name="group_id", dtype="str", required=False, nullable=True),
        ColumnSchema(name="asset_type", dtype="str", required=False, nullable=True),
        ColumnSchema(name="asset_subtype", dtype="str", required=False, nullable=True),
        ColumnSchema(name="geography", dtype="str", required=False, nullable=True),
        ColumnSchema(name="size_tag", dtype="str", required=False, nullable=True),
        ColumnSchema(name="factor_tag", dtype="str", required=False, nullable=True),
    ],
)

GROUPS_SCHEMA = FileSchema(
    name="groups",
    description="Sub-portfolios with target share and drift thresholds",
    columns=[
        ColumnSchema(name="group_id", dtype="str"),
        ColumnSchema(name="name", dtype="str"),
        ColumnSchema(name="target_pct", dtype="float64"),
        ColumnSchema(name="upside_threshold", dtype="float64", required=False, nullable=True),
        ColumnSchema(name="downside_threshold", dtype="float64", required=False, nullable=True),
        ColumnSchema(name="band_mode", dtype="bool", required=False, nullable=True),
    ],
)

TARGETS_SCHEMA = FileSchema(
    name="targets",
    description="Holding target percentages within groups",
    columns=[
        ColumnSchema(name="asset_id", dtype="str"),
        ColumnSchema(name="group_id", dtype="str"),
        ColumnSchema(name="target_pct", dtype="float64"),
    ],
)

LOTS_SCHEMA = FileSchema(
    name="lots",
    description="Open tax lots with cost basis",
    columns=[
        ColumnSchema(name="lot_id", dtype="str"),
        ColumnSchema(name="asset_id", dtype="str"),
        ColumnSchema(name="account_id", dtype="str", nullable=True),
        ColumnSchema(name="acquisition_date", dtype="datetime64[ns]"),
        ColumnSchema(name="quantity", dtype="float64"),
        ColumnSchema(name="cost_basis_per_unit", dtype="float64"),
        ColumnSchema(name="remaining_quantity", dtype="float64", required=False, nullable=True),
    ],
)

TRANSACTIONS_SCHEMA = FileSchema(
    name="transactions",
    description="Append-only transaction history",
    columns=[
        ColumnSchema(name="transaction_id", dtype="str"),
        ColumnSchema(name="date", dtype="datetime64[ns]"),
        ColumnSchema(name="type", dtype="str"),
        ColumnSchema(name="account_id", dtype="str", nullable=True),
        ColumnSchema(name="amount", dtype="float64"),
        ColumnSchema(name="asset_id", dtype="str", required=False, nullable=True),
        ColumnSchema(name="quantity", dtype="float64", required=False, nullable=True),
        ColumnSchema(name="price_per_unit", dtype="float64", required=False, nullable=True),
        ColumnSchema(name="fees", dtype="float64", required=False, nullable=True),
        ColumnSchema(name="realized_gain", dtype="float64", required=False, nullable=True),
    ],
)

PRICES_SCHEMA = FileSchema(
    name="prices",
    description="Price observations by ticker",
    columns=[
        ColumnSchema(name="ticker", dtype="str"),
        ColumnSchema(name="date", dtype="datetime64[ns]"),
        ColumnSchema(name="price", dtype="float64"),
    ],
)

REBALANCE_SCHEMA = FileSchema(
    name="rebalance_report",
    description="Per-holding drift, action and account recommendations",
    columns=[
        ColumnSchema(name="asset_id", dtype="str"),
        ColumnSchema(name="ticker", dtype="str"),
        ColumnSchema(name="group_id", dtype="str", nullable=True),
        ColumnSchema(name="current_value", dtype="float64"),
        ColumnSchema(name="current_pct", dtype="float64"),
        ColumnSchema(name="current_in_group_pct", dtype="float64"),
        ColumnSchema(name="target_in_group_pct", dtype="float64"),
        ColumnSchema(name="implied_overall_target", dtype="float64"),
        ColumnSchema(name="drift_pct", dtype="float64"),
        ColumnSchema(name="action", dtype="str"),
        ColumnSchema(name="amount", dtype="float64"),
        ColumnSchema(name="recommended_accounts", dtype="str", nullable=True),
        ColumnSchema(name="reinvestment", dtype="str", nullable=True),
        ColumnSchema(name="tax_impact", dtype="float64"),
        ColumnSchema(name="tax_notes", dtype="str", nullable=True),
        ColumnSchema(name="degraded", dtype="bool"),
    ],
)

PERFORMANCE_SCHEMA = FileSchema(
    name="performance_series",
    description="Date-indexed performance series in long format",
    columns=[
        ColumnSchema(name="series", dtype="str"),
        ColumnSchema(name="label", dtype="str"),
        ColumnSchema(name="asset", dtype="str", nullable=True),
        ColumnSchema(name="date", dtype="datetime64[ns]"),
        ColumnSchema(name="portfolio_value", dtype="float64"),
        ColumnSchema(name="cash_flow", dtype="float64"),
        ColumnSchema(name="net_gain", dtype="float64"),
        ColumnSchema(name="unrealized", dtype="float64"),
        ColumnSchema(name="realized", dtype="float64"),
        ColumnSchema(name="income", dtype="float64"),
        ColumnSchema(name="cost_basis_total", dtype="float64"),
        ColumnSchema(name="return_pct", dtype="float64"),
    ],
)
