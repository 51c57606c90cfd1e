"""
Pytest fixtures for the folio-pilot tests.

The sample portfolio holds two accounts (taxable brokerage and an IRA) and two
groups. At the 2024-06-28 prices VTI is overweight in the equity group and
VXUS underweight by the same dollar amount; BND sits exactly on target.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from folio_pilot.models import (
    Account,
    Asset,
    Group,
    HoldingTarget,
    PricePoint,
    TaxLot,
    TaxStatus,
    Transaction,
    TransactionType,
)
from folio_pilot.portfolio.valuation import PriceBook


AS_OF = date(2024, 6, 30)


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def sample_accounts() -> list[Account]:
    return [
        Account(
            account_id="ACC-TAX",
            name="Brokerage",
            account_type="Individual",
            tax_status=TaxStatus.TAXABLE,
        ),
        Account(
            account_id="ACC-IRA",
            name="IRA",
            account_type="Traditional IRA",
            tax_status=TaxStatus.TAX_ADVANTAGED,
        ),
    ]


@pytest.fixture
def accounts_by_id(sample_accounts: list[Account]) -> dict[str, Account]:
    return {a.account_id: a for a in sample_accounts}


@pytest.fixture
def sample_groups() -> list[Group]:
    return [
        Group(group_id="G-EQ", name="Equities", target_pct=Decimal("60")),
        Group(group_id="G-BD", name="Bonds", target_pct=Decimal("40")),
    ]


@pytest.fixture
def sample_assets() -> list[Asset]:
    return [
        Asset(asset_id="a-vti", ticker="VTI", name="Total Stock Market", group_id="G-EQ",
              asset_type="Equity", geography="US"),
        Asset(asset_id="a-vxus", ticker="VXUS", name="Total International", group_id="G-EQ",
              asset_type="Equity", geography="International"),
        Asset(asset_id="a-bnd", ticker="BND", name="Total Bond Market", group_id="G-BD",
              asset_type="Bond", geography="US"),
    ]


@pytest.fixture
def sample_targets() -> list[HoldingTarget]:
    return [
        HoldingTarget(asset_id="a-vti", group_id="G-EQ", target_pct=Decimal("60")),
        HoldingTarget(asset_id="a-vxus", group_id="G-EQ", target_pct=Decimal("40")),
        HoldingTarget(asset_id="a-bnd", group_id="G-BD", target_pct=Decimal("100")),
    ]


@pytest.fixture
def sample_lots() -> list[TaxLot]:
    return [
        TaxLot(
            lot_id="lot-001",
            asset_id="a-vti",
            account_id="ACC-TAX",
            acquisition_date=date(2022, 1, 10),
            quantity=Decimal("50"),
            cost_basis_per_unit=Decimal("200"),
            remaining_quantity=Decimal("50"),
        ),
        TaxLot(
            lot_id="lot-002",
            asset_id="a-vti",
            account_id="ACC-IRA",
            acquisition_date=date(2023, 9, 1),
            quantity=Decimal("30"),
            cost_basis_per_unit=Decimal("210"),
            remaining_quantity=Decimal("30"),
        ),
        TaxLot(
            lot_id="lot-003",
            asset_id="a-vxus",
            account_id="ACC-TAX",
            acquisition_date=date(2023, 3, 1),
            quantity=Decimal("100"),
            cost_basis_per_unit=Decimal("55"),
            remaining_quantity=Decimal("100"),
        ),
        TaxLot(
            lot_id="lot-004",
            asset_id="a-bnd",
            account_id="ACC-IRA",
            acquisition_date=date(2022, 6, 1),
            quantity=Decimal("100"),
            cost_basis_per_unit=Decimal("80"),
            remaining_quantity=Decimal("100"),
        ),
    ]


def _tx(tx_id, tx_date, tx_type, account_id, amount, asset_id=None, quantity=None, price=None):
    return Transaction(
        transaction_id=tx_id,
        date=tx_date,
        transaction_type=tx_type,
        account_id=account_id,
        amount=Decimal(amount),
        asset_id=asset_id,
        quantity=Decimal(quantity) if quantity is not None else None,
        price_per_unit=Decimal(price) if price is not None else None,
    )


@pytest.fixture
def sample_transactions() -> list[Transaction]:
    """History that replays into exactly sample_lots, leaving $5,200 cash."""
    return [
        _tx("tx-001", date(2022, 1, 3), TransactionType.DEPOSIT, "ACC-TAX", "20000"),
        _tx("tx-002", date(2022, 1, 10), TransactionType.BUY, "ACC-TAX", "-10000", "a-vti", "50", "200"),
        _tx("tx-003", date(2022, 5, 1), TransactionType.DEPOSIT, "ACC-IRA", "15000"),
        _tx("tx-004", date(2022, 6, 1), TransactionType.BUY, "ACC-IRA", "-8000", "a-bnd", "100", "80"),
        _tx("tx-005", date(2023, 3, 1), TransactionType.BUY, "ACC-TAX", "-5500", "a-vxus", "100", "55"),
        _tx("tx-006", date(2023, 9, 1), TransactionType.BUY, "ACC-IRA", "-6300", "a-vti", "30", "210"),
    ]


@pytest.fixture
def sample_prices() -> list[PricePoint]:
    observations = {
        "VTI": [(date(2024, 1, 2), "230"), (date(2024, 6, 28), "260")],
        "VXUS": [(date(2024, 1, 2), "58"), (date(2024, 6, 28), "60")],
        "BND": [(date(2024, 1, 2), "71"), (date(2024, 6, 28), "72")],
    }
    return [
        PricePoint(ticker=ticker, date=d, price=Decimal(p))
        for ticker, points in observations.items()
        for d, p in points
    ]


@pytest.fixture
def sample_price_book(sample_prices: list[PricePoint]) -> PriceBook:
    return PriceBook(sample_prices)


def write_portfolio_dir(
    data_dir: Path,
    accounts: list[Account],
    assets: list[Asset],
    groups: list[Group],
    targets: list[HoldingTarget],
    lots: list[TaxLot],
    transactions: list[Transaction],
    prices: list[PricePoint],
) -> Path:
    """Write the sample tables as CSV files the loaders accept."""
    data_dir.mkdir(parents=True, exist_ok=True)

    def write(name: str, header: str, rows: list[str]) -> None:
        (data_dir / f"{name}.csv").write_text("\n".join([header] + rows) + "\n")

    write("accounts", "account_id,name,account_type,tax_status", [
        f"{a.account_id},{a.name},{a.account_type},{a.tax_status.value}" for a in accounts
    ])
    write("assets", "asset_id,ticker,name,group_id,asset_type,geography", [
        f"{a.asset_id},{a.ticker},{a.name},{a.group_id or ''},{a.asset_type or ''},{a.geography or ''}"
        for a in assets
    ])
    write("groups", "group_id,name,target_pct,upside_threshold,downside_threshold", [
        f"{g.group_id},{g.name},{g.target_pct},{g.upside_threshold},{g.downside_threshold}"
        for g in groups
    ])
    write("targets", "asset_id,group_id,target_pct", [
        f"{t.asset_id},{t.group_id},{t.target_pct}" for t in targets
    ])
    write("lots", "lot_id,asset_id,account_id,acquisition_date,quantity,cost_basis_per_unit,remaining_quantity", [
        f"{l.lot_id},{l.asset_id},{l.account_id or ''},{l.acquisition_date.isoformat()},"
        f"{l.quantity},{l.cost_basis_per_unit},{l.remaining_quantity}"
        for l in lots
    ])
    write("transactions", "transaction_id,date,type,account_id,amount,asset_id,quantity,price_per_unit,fees", [
        f"{t.transaction_id},{t.date.isoformat()},{t.transaction_type.value},{t.account_id or ''},"
        f"{t.amount},{t.asset_id or ''},{'' if t.quantity is None else t.quantity},"
        f"{'' if t.price_per_unit is None else t.price_per_unit},{t.fees}"
        for t in transactions
    ])
    write("prices", "ticker,date,price", [
        f"{p.ticker},{p.date.isoformat()},{p.price}" for p in prices
    ])
    return data_dir


@pytest.fixture
def portfolio_dir(
    tmp_path: Path,
    sample_accounts,
    sample_assets,
    sample_groups,
    sample_targets,
    sample_lots,
    sample_transactions,
    sample_prices,
) -> Path:
    """Directory of CSV tables for the sample portfolio."""
    return write_portfolio_dir(
        tmp_path / "data",
        sample_accounts,
        sample_assets,
        sample_groups,
        sample_targets,
        sample_lots,
        sample_transactions,
        sample_prices,
    )
