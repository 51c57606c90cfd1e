"""
Data loading and saving functions for the portfolio tables.

Handles ingestion of accounts, assets, groups, targets, lots, transactions and
prices from CSV/Parquet tables or a JSON snapshot, and output of the lot,
rebalance and performance reports.

Records coming from the store may embed related rows (an asset inside a lot,
for instance) either as a single object or as a one-element list. Both shapes
are normalized here so the engine only ever sees a single record or None.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Optional

import pandas as pd

from folio_pilot.config import ConfigurationError, parse_date
from folio_pilot.models import (
    Account,
    Asset,
    EngineConfig,
    Group,
    HoldingTarget,
    PerformanceReport,
    PricePoint,
    RebalanceReport,
    TaxLot,
    TaxStatus,
    Transaction,
    TransactionType,
)
from folio_pilot.data.schemas import (
    ACCOUNTS_SCHEMA,
    ASSETS_SCHEMA,
    FileSchema,
    GROUPS_SCHEMA,
    LOTS_SCHEMA,
    PERFORMANCE_SCHEMA,
    PRICES_SCHEMA,
    REBALANCE_SCHEMA,
    TARGETS_SCHEMA,
    TRANSACTIONS_SCHEMA,
)


class DataLoadError(Exception):
    """Raised when data cannot be loaded or is invalid."""
    pass


@dataclass
class PortfolioData:
    """Every table the engine reads, already converted to models."""
    accounts: list[Account] = field(default_factory=list)
    assets: list[Asset] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    targets: list[HoldingTarget] = field(default_factory=list)
    lots: list[TaxLot] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    prices: list[PricePoint] = field(default_factory=list)


# Table name -> (file stem, schema)
TABLES = {
    "accounts": ("accounts", ACCOUNTS_SCHEMA),
    "assets": ("assets", ASSETS_SCHEMA),
    "groups": ("groups", GROUPS_SCHEMA),
    "targets": ("targets", TARGETS_SCHEMA),
    "lots": ("lots", LOTS_SCHEMA),
    "transactions": ("transactions", TRANSACTIONS_SCHEMA),
    "prices": ("prices", PRICES_SCHEMA),
}


def normalize_related(value: Any) -> Optional[dict]:
    """
    Collapse an embedded related row to a single record.

    Args:
        value: A dict, a list of dicts (first one wins) or None

    Returns:
        The related record, or None when absent
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    if isinstance(value, dict):
        return value
    raise DataLoadError(f"Unexpected related record shape: {type(value).__name__}")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, (list, dict)) and pd.isna(value):
        return None
    text = str(value).strip()
    if text in ("nan", "None", "NaT"):
        return None
    return text or None


def _field(record: dict, *names: str) -> Optional[str]:
    """First non-empty value among several column names."""
    for name in names:
        if name in record:
            value = _clean(record[name])
            if value is not None:
                return value
    return None


def _require(record: dict, table: str, *names: str) -> str:
    value = _field(record, *names)
    if value is None:
        raise DataLoadError(f"{table}: record is missing {names[0]}: {record}")
    return value


def _decimal(value: Optional[str], table: str, name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        result = Decimal(value)
    except InvalidOperation:
        raise DataLoadError(f"{table}: invalid number for {name}: {value!r}")
    if not result.is_finite():
        raise DataLoadError(f"{table}: invalid number for {name}: {value!r}")
    return result


def _date(value: Optional[str], table: str, name: str) -> date:
    if value is None:
        raise DataLoadError(f"{table}: missing date for {name}")
    try:
        return parse_date(value[:10], name)
    except ConfigurationError as e:
        raise DataLoadError(f"{table}: {e}")


def _bool(value: Optional[str]) -> bool:
    return value is not None and value.lower() in ("true", "1", "yes", "y")


def parse_tax_status(value: Optional[str]) -> TaxStatus:
    """
    Parse an account tax status.

    "Taxable" (any case) or an empty value is taxable; every other status
    (IRA, Roth, Tax-Deferred, ...) is tax-advantaged.
    """
    if value is None or value.lower() == "taxable":
        return TaxStatus.TAXABLE
    return TaxStatus.TAX_ADVANTAGED


def parse_transaction_type(value: str) -> TransactionType:
    for tx_type in TransactionType:
        if tx_type.value.lower() == value.lower() or tx_type.name.lower() == value.lower():
            return tx_type
    raise DataLoadError(f"transactions: unknown transaction type {value!r}")


def records_to_accounts(records: list[dict]) -> list[Account]:
    accounts = []
    for record in records:
        accounts.append(
            Account(
                account_id=_require(record, "accounts", "account_id", "id"),
                name=_field(record, "name") or "",
                account_type=_field(record, "account_type", "type") or "",
                tax_status=parse_tax_status(_field(record, "tax_status")),
            )
        )
    return accounts


def records_to_assets(records: list[dict]) -> list[Asset]:
    assets = []
    for record in records:
        group = normalize_related(record.get("group") or record.get("sub_portfolio"))
        group_id = _field(record, "group_id", "sub_portfolio_id")
        if group_id is None and group is not None:
            group_id = _field(group, "group_id", "id")

        assets.append(
            Asset(
                asset_id=_require(record, "assets", "asset_id", "id"),
                ticker=_require(record, "assets", "ticker").upper(),
                name=_field(record, "name") or "",
                group_id=group_id,
                asset_type=_field(record, "asset_type"),
                asset_subtype=_field(record, "asset_subtype"),
                geography=_field(record, "geography"),
                size_tag=_field(record, "size_tag"),
                factor_tag=_field(record, "factor_tag"),
            )
        )
    return assets


def records_to_groups(
    records: list[dict],
    config: Optional[EngineConfig] = None,
) -> list[Group]:
    """
    Convert group records; missing thresholds take the configured defaults.
    """
    config = config or EngineConfig()
    groups = []
    for record in records:
        upside = _decimal(_field(record, "upside_threshold"), "groups", "upside_threshold")
        downside = _decimal(_field(record, "downside_threshold"), "groups", "downside_threshold")
        groups.append(
            Group(
                group_id=_require(record, "groups", "group_id", "id"),
                name=_field(record, "name") or "",
                target_pct=_decimal(
                    _require(record, "groups", "target_pct", "target_allocation"),
                    "groups", "target_pct",
                ),
                upside_threshold=config.default_upside_threshold if upside is None else upside,
                downside_threshold=config.default_downside_threshold if downside is None else downside,
                band_mode=_bool(_field(record, "band_mode")),
            )
        )
    return groups


def records_to_targets(records: list[dict]) -> list[HoldingTarget]:
    targets = []
    for record in records:
        targets.append(
            HoldingTarget(
                asset_id=_require(record, "targets", "asset_id"),
                group_id=_require(record, "targets", "group_id", "sub_portfolio_id"),
                target_pct=_decimal(
                    _require(record, "targets", "target_pct", "target_percentage"),
                    "targets", "target_pct",
                ),
            )
        )
    return targets


def _related_asset_id(record: dict) -> Optional[str]:
    asset_id = _field(record, "asset_id")
    if asset_id is None:
        asset = normalize_related(record.get("asset"))
        if asset is not None:
            asset_id = _field(asset, "asset_id", "id")
    return asset_id


def records_to_lots(records: list[dict]) -> list[TaxLot]:
    lots = []
    for record in records:
        asset_id = _related_asset_id(record)
        if asset_id is None:
            raise DataLoadError(f"lots: record is missing asset_id: {record}")

        quantity = _decimal(_require(record, "lots", "quantity"), "lots", "quantity")
        remaining = _decimal(_field(record, "remaining_quantity"), "lots", "remaining_quantity")
        lots.append(
            TaxLot(
                lot_id=_require(record, "lots", "lot_id", "id"),
                asset_id=asset_id,
                account_id=_field(record, "account_id"),
                acquisition_date=_date(
                    _field(record, "acquisition_date", "purchase_date"), "lots", "acquisition_date"
                ),
                quantity=quantity,
                cost_basis_per_unit=_decimal(
                    _require(record, "lots", "cost_basis_per_unit"), "lots", "cost_basis_per_unit"
                ),
                remaining_quantity=quantity if remaining is None else remaining,
            )
        )
    return lots


def records_to_transactions(records: list[dict]) -> list[Transaction]:
    transactions = []
    for record in records:
        tx_type = parse_transaction_type(
            _require(record, "transactions", "type", "transaction_type")
        )
        quantity = _decimal(_field(record, "quantity"), "transactions", "quantity")
        asset_id = _related_asset_id(record)

        if tx_type in (TransactionType.BUY, TransactionType.SELL):
            if asset_id is None or quantity is None:
                raise DataLoadError(
                    f"transactions: {tx_type.value} needs asset_id and quantity: {record}"
                )

        transactions.append(
            Transaction(
                transaction_id=_require(record, "transactions", "transaction_id", "id"),
                date=_date(_field(record, "date"), "transactions", "date"),
                transaction_type=tx_type,
                account_id=_field(record, "account_id"),
                amount=_decimal(_require(record, "transactions", "amount"), "transactions", "amount"),
                asset_id=asset_id,
                quantity=quantity,
                price_per_unit=_decimal(
                    _field(record, "price_per_unit"), "transactions", "price_per_unit"
                ),
                fees=_decimal(_field(record, "fees"), "transactions", "fees") or Decimal("0"),
                realized_gain=_decimal(
                    _field(record, "realized_gain"), "transactions", "realized_gain"
                ),
            )
        )
    return transactions


def records_to_prices(records: list[dict]) -> list[PricePoint]:
    prices = []
    for record in records:
        prices.append(
            PricePoint(
                ticker=_require(record, "prices", "ticker").upper(),
                date=_date(_field(record, "date", "timestamp"), "prices", "date"),
                price=_decimal(_require(record, "prices", "price", "close"), "prices", "price"),
            )
        )
    return prices


def _load_table(file_path: Path, schema: FileSchema) -> list[dict]:
    """
    Load a CSV or Parquet file, validate it against its schema and return
    its rows as dictionaries of strings.

    Raises:
        DataLoadError: If the file cannot be loaded or has missing columns
    """
    if not file_path.exists():
        raise DataLoadError(f"File not found: {file_path}")

    if file_path.suffix.lower() == ".parquet":
        try:
            df = pd.read_parquet(file_path).astype(str)
        except Exception as e:
            raise DataLoadError(f"Failed to load parquet file {file_path}: {e}")
    else:
        try:
            # Read as text so monetary values keep their exact decimal digits
            df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
        except Exception as e:
            raise DataLoadError(f"Failed to load CSV file {file_path}: {e}")

    is_valid, missing = schema.validate_columns(df.columns.tolist())
    if not is_valid:
        raise DataLoadError(
            f"File {file_path} is missing required columns: {missing}"
        )

    for column in schema.non_nullable_columns:
        blank = df[column].isin(["", "nan", "None"])
        if blank.any():
            first = int(blank.idxmax()) + 2  # header is line 1
            raise DataLoadError(f"File {file_path} has an empty {column} on line {first}")

    return df.to_dict(orient="records")


def _find_table(data_dir: Path, stem: str) -> Optional[Path]:
    for suffix in (".csv", ".parquet"):
        path = data_dir / f"{stem}{suffix}"
        if path.exists():
            return path
    return None


def load_table(
    file_path: str | Path,
    table: str,
    config: Optional[EngineConfig] = None,
) -> list:
    """
    Load one portfolio table from a CSV or Parquet file.

    Args:
        file_path: Path to the file
        table: Table name (accounts, assets, groups, targets, lots,
            transactions, prices)
        config: Engine configuration (group threshold defaults)

    Returns:
        List of model objects

    Raises:
        DataLoadError: If the file cannot be loaded or is invalid
    """
    if table not in TABLES:
        raise DataLoadError(f"Unknown table: {table}")
    records = _load_table(Path(file_path), TABLES[table][1])
    return _convert(table, records, config)


def _convert(table: str, records: list[dict], config: Optional[EngineConfig]) -> list:
    converters: dict[str, Callable[[list[dict]], list]] = {
        "accounts": records_to_accounts,
        "assets": records_to_assets,
        "groups": lambda r: records_to_groups(r, config),
        "targets": records_to_targets,
        "lots": records_to_lots,
        "transactions": records_to_transactions,
        "prices": records_to_prices,
    }
    return converters[table](records)


def load_portfolio_dir(
    data_dir: str | Path,
    config: Optional[EngineConfig] = None,
) -> PortfolioData:
    """
    Load every table found in a directory.

    Tables are looked up as <table>.csv or <table>.parquet; missing tables
    are left empty.

    Raises:
        DataLoadError: If the directory does not exist or a table is invalid
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise DataLoadError(f"Data directory not found: {data_dir}")

    data = PortfolioData()
    for table, (stem, _) in TABLES.items():
        path = _find_table(data_dir, stem)
        if path is not None:
            setattr(data, table, load_table(path, table, config))
    return data


def load_snapshot(
    file_path: str | Path,
    config: Optional[EngineConfig] = None,
) -> PortfolioData:
    """
    Load a JSON snapshot holding one list of records per table.

    Table names follow the store's naming as well (tax_lots, sub_portfolios,
    asset_targets, asset_prices).

    Raises:
        DataLoadError: If the file cannot be read or a record is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise DataLoadError(f"File not found: {file_path}")

    try:
        with open(file_path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise DataLoadError(f"Invalid JSON in snapshot {file_path}: {e}")

    if not isinstance(raw, dict):
        raise DataLoadError(f"Snapshot {file_path} must contain an object of tables")

    aliases = {
        "tax_lots": "lots",
        "sub_portfolios": "groups",
        "asset_targets": "targets",
        "asset_prices": "prices",
    }
    data = PortfolioData()
    for key, records in raw.items():
        table = aliases.get(key, key)
        if table not in TABLES:
            continue
        if not isinstance(records, list):
            raise DataLoadError(f"Snapshot table {key} must be a list of records")
        setattr(data, table, _convert(table, records, config))
    return data


def load_portfolio(
    path: str | Path,
    config: Optional[EngineConfig] = None,
) -> PortfolioData:
    """Load from a JSON snapshot file or a directory of tables."""
    path = Path(path)
    if path.is_file() and path.suffix.lower() == ".json":
        return load_snapshot(path, config)
    return load_portfolio_dir(path, config)


def save_lots(
    lots: list[TaxLot],
    output_path: str | Path,
) -> Path:
    """
    Save tax lots to CSV file.

    Args:
        lots: List of TaxLot objects to save
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for lot in lots:
        records.append({
            "lot_id": lot.lot_id,
            "asset_id": lot.asset_id,
            "account_id": lot.account_id or "",
            "acquisition_date": lot.acquisition_date.isoformat(),
            "quantity": str(lot.quantity),
            "cost_basis_per_unit": str(lot.cost_basis_per_unit),
            "remaining_quantity": str(lot.remaining_quantity),
        })

    df = pd.DataFrame(records, columns=LOTS_SCHEMA.all_columns)
    df.to_csv(output_path, index=False)

    return output_path


def save_rebalance_report(
    report: RebalanceReport,
    output_path: str | Path,
) -> Path:
    """
    Save rebalance report rows to CSV file.

    Account recommendations and reinvestment suggestions are flattened into
    "name:amount" lists separated by semicolons.

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for row in report.rows:
        d = row.drift
        records.append({
            "asset_id": d.asset_id,
            "ticker": d.ticker,
            "group_id": d.group_id or "",
            "current_value": float(d.current_value),
            "current_pct": float(d.current_pct),
            "current_in_group_pct": float(d.current_in_group_pct),
            "target_in_group_pct": float(d.target_in_group_pct),
            "implied_overall_target": float(d.implied_overall_target),
            "drift_pct": float(d.drift_pct),
            "action": d.action.value,
            "amount": float(d.amount),
            "recommended_accounts": "; ".join(
                f"{r.name}:{r.amount:.2f}" for r in row.recommended_accounts
            ),
            "reinvestment": "; ".join(
                f"{s.ticker}:{s.amount:.2f}" for s in row.reinvestment_suggestions
            ),
            "tax_impact": float(row.tax_impact),
            "tax_notes": row.tax_notes,
            "degraded": row.degraded,
        })

    df = pd.DataFrame(records, columns=REBALANCE_SCHEMA.all_columns)
    df.to_csv(output_path, index=False)

    return output_path


def save_performance_series(
    report: PerformanceReport,
    output_path: str | Path,
) -> Path:
    """
    Save every performance series (and per-asset breakdown) to one CSV file
    in long format: one row per series and date, keyed by series id with its
    display label alongside.

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    def rows(series: str, asset: str, points) -> list[dict]:
        return [
            {
                "series": series,
                "label": report.label(series),
                "asset": asset,
                "date": p.date.isoformat(),
                "portfolio_value": float(p.portfolio_value),
                "cash_flow": float(p.cash_flow),
                "net_gain": float(p.net_gain),
                "unrealized": float(p.unrealized),
                "realized": float(p.realized),
                "income": float(p.income),
                "cost_basis_total": float(p.cost_basis_total),
                "return_pct": p.return_pct,
            }
            for p in points
        ]

    records = []
    for key, points in report.series.items():
        records.extend(rows(key, "", points))
    for key, per_asset in report.breakdown.items():
        for ticker, points in per_asset.items():
            records.extend(rows(key, ticker, points))

    df = pd.DataFrame(records, columns=PERFORMANCE_SCHEMA.all_columns)
    df.to_csv(output_path, index=False)

    return output_path
