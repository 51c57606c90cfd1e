"""
Tests for the performance report: date grids, series replay, summaries and
benchmarks.
"""

import math
from datetime import date
from decimal import Decimal

import pytest

from folio_pilot.errors import InvalidInputError
from folio_pilot.models import (
    Account,
    Asset,
    ConditionType,
    Group,
    PricePoint,
    ReturnMetric,
    Transaction,
    TransactionType,
)
from folio_pilot.portfolio.valuation import PriceBook
from folio_pilot.reports import build_date_grid, build_performance_report


START = date(2024, 1, 1)
END = date(2024, 3, 31)


@pytest.fixture
def history() -> list[Transaction]:
    """$10,000 deposited, 40 VTI bought at $200, one $50 dividend."""
    return [
        Transaction("t1", date(2024, 1, 2), TransactionType.DEPOSIT, "ACC-TAX", Decimal("10000")),
        Transaction("t2", date(2024, 1, 2), TransactionType.BUY, "ACC-TAX", Decimal("-8000"),
                    asset_id="a-vti", quantity=Decimal("40"), price_per_unit=Decimal("200")),
        Transaction("t3", date(2024, 3, 15), TransactionType.DIVIDEND, "ACC-TAX", Decimal("50"),
                    asset_id="a-vti"),
    ]


@pytest.fixture
def prices() -> PriceBook:
    observations = {
        "VTI": [(date(2024, 1, 2), "200"), (date(2024, 1, 31), "210"),
                (date(2024, 2, 29), "220"), (date(2024, 3, 29), "230")],
        "SPY": [(date(2024, 1, 31), "400"), (date(2024, 2, 29), "420"), (date(2024, 3, 29), "440")],
        "TLT": [(date(2024, 1, 31), "100"), (date(2024, 2, 29), "95"), (date(2024, 3, 29), "100")],
    }
    return PriceBook([
        PricePoint(ticker, d, Decimal(p))
        for ticker, points in observations.items()
        for d, p in points
    ])


@pytest.fixture
def build(history, prices, sample_assets, sample_accounts, sample_groups):
    def _build(**overrides):
        kwargs = dict(
            transactions=history,
            assets=sample_assets,
            accounts=sample_accounts,
            groups=sample_groups,
            prices=prices,
            start=START,
            end=END,
        )
        kwargs.update(overrides)
        return build_performance_report(**kwargs)
    return _build


class TestBuildDateGrid:
    """Tests for evaluation date grids."""

    def test_monthly_ends_and_end_date(self):
        grid = build_date_grid(date(2024, 1, 15), date(2024, 3, 10), "monthly")
        assert grid == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 10)]

    def test_monthly_end_on_month_end(self):
        assert build_date_grid(START, END) == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_monthly_within_one_month(self):
        assert build_date_grid(date(2024, 5, 3), date(2024, 5, 20)) == [date(2024, 5, 20)]

    def test_daily(self):
        grid = build_date_grid(date(2024, 1, 30), date(2024, 2, 2), "daily")
        assert len(grid) == 4
        assert grid[0] == date(2024, 1, 30)
        assert grid[-1] == date(2024, 2, 2)

    def test_invalid_inputs(self):
        with pytest.raises(InvalidInputError):
            build_date_grid(END, START)
        with pytest.raises(InvalidInputError):
            build_date_grid(START, END, "weekly")


class TestTotalSeries:
    """Tests for the whole-portfolio series."""

    def test_values_include_cash(self, build):
        report = build()
        points = report.series["total"]

        assert [p.date for p in points] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
        assert [p.portfolio_value for p in points] == [Decimal("10400"), Decimal("10800"), Decimal("11250")]
        assert points[0].cash_flow == Decimal("10000")
        assert points[1].cash_flow == Decimal("0")

    def test_gains(self, build):
        last = build().series["total"][-1]

        assert last.unrealized == Decimal("1200")
        assert last.income == Decimal("50")
        assert last.realized == Decimal("0")
        assert last.net_gain == Decimal("1250")
        assert last.cost_basis_total == Decimal("8000")

    def test_twr_summary(self, build):
        report = build()
        summary = report.summaries["total"]

        assert report.metric == ReturnMetric.TWR
        assert report.series["total"][0].return_pct == 0.0
        assert summary.total_return == pytest.approx(100.0 * (11250 / 10400 - 1))
        assert summary.annualized_return > summary.total_return
        assert summary.net_gain == Decimal("1250")

    def test_mwr_summary(self, build):
        summary = build(metric="mwr").summaries["total"]

        assert not math.isnan(summary.annualized_return)
        assert summary.annualized_return > 0
        assert summary.total_return > 0

    def test_single_point_mwr_is_flagged(self, build):
        report = build(start=END, end=END, granularity="daily", metric="mwr")

        assert math.isnan(report.summaries["total"].annualized_return)
        assert [c.condition for c in report.conditions] == [ConditionType.NON_CONVERGENT_IRR]

    def test_transactions_after_end_ignored(self, build, history):
        late = Transaction("t9", date(2024, 4, 15), TransactionType.WITHDRAWAL, "ACC-TAX", Decimal("-500"))
        report = build(transactions=history + [late])
        assert report.series["total"][-1].portfolio_value == Decimal("11250")


class TestLensSeries:
    """Tests for series split along a lens."""

    def test_group_lens_excludes_cash(self, build):
        report = build(lens="sub_portfolio")

        assert report.lens == "group"
        assert report.label("G-EQ") == "Equities"
        points = report.series["G-EQ"]
        assert [p.portfolio_value for p in points] == [Decimal("8400"), Decimal("8800"), Decimal("9200")]
        assert points[0].cash_flow == Decimal("8000")
        assert points[2].cash_flow == Decimal("-50")
        assert points[2].net_gain == Decimal("1250")

    def test_account_lens_labels(self, build):
        report = build(lens="account")
        assert list(report.series) == ["ACC-TAX"]
        assert report.labels == {"ACC-TAX": "Brokerage"}

    def test_selected_values(self, build):
        assert build(lens="account", selected_values=["ACC-IRA"]).series == {}
        assert list(build(lens="account", selected_values=["ACC-TAX"]).series) == ["ACC-TAX"]

    def test_late_series_backfilled(self, build, history):
        deposit = Transaction("t4", date(2024, 2, 15), TransactionType.DEPOSIT, "ACC-IRA", Decimal("1000"))
        report = build(lens="account", transactions=history + [deposit])

        ira = report.series["ACC-IRA"]
        assert len(ira) == 3
        assert ira[0].portfolio_value == Decimal("0")
        assert ira[1].portfolio_value == Decimal("1000")

    def test_per_asset_breakdown(self, build):
        report = build(lens="account", aggregate=False)

        vti = report.breakdown["ACC-TAX"]["VTI"]
        assert [p.portfolio_value for p in vti] == [Decimal("8400"), Decimal("8800"), Decimal("9200")]

    def test_groups_sharing_a_name_stay_separate(self, build):
        groups = [
            Group(group_id="G1", name="Core", target_pct=Decimal("50")),
            Group(group_id="G2", name="Core", target_pct=Decimal("50")),
        ]
        assets = [
            Asset(asset_id="x", ticker="XXX", group_id="G1"),
            Asset(asset_id="y", ticker="YYY", group_id="G2"),
        ]
        transactions = [
            Transaction("b1", date(2024, 1, 2), TransactionType.BUY, "ACC-TAX", Decimal("-1000"),
                        asset_id="x", quantity=Decimal("10"), price_per_unit=Decimal("100")),
            Transaction("b2", date(2024, 1, 2), TransactionType.BUY, "ACC-TAX", Decimal("-1000"),
                        asset_id="y", quantity=Decimal("10"), price_per_unit=Decimal("100")),
        ]
        prices = PriceBook([
            PricePoint("XXX", date(2024, 1, 2), Decimal("100")),
            PricePoint("XXX", date(2024, 3, 29), Decimal("110")),
            PricePoint("YYY", date(2024, 1, 2), Decimal("100")),
            PricePoint("YYY", date(2024, 3, 29), Decimal("80")),
        ])

        report = build(lens="group", groups=groups, assets=assets,
                       transactions=transactions, prices=prices)

        assert list(report.series) == ["G1", "G2"]
        assert report.labels == {"G1": "Core", "G2": "Core"}
        assert report.series["G1"][-1].portfolio_value == Decimal("1100")
        assert report.series["G2"][-1].portfolio_value == Decimal("800")
        assert report.summaries["G1"].total_return == pytest.approx(10.0)
        assert report.summaries["G2"].total_return == pytest.approx(-20.0)

    def test_accounts_sharing_a_name_stay_separate(self, build, history):
        accounts = [
            Account(account_id="ACC-TAX", name="IRA"),
            Account(account_id="ACC-IRA", name="IRA"),
        ]
        deposit = Transaction("t4", date(2024, 2, 15), TransactionType.DEPOSIT, "ACC-IRA", Decimal("1000"))

        report = build(lens="account", accounts=accounts, transactions=history + [deposit], aggregate=False)

        assert set(report.series) == {"ACC-TAX", "ACC-IRA"}
        assert set(report.summaries) == {"ACC-TAX", "ACC-IRA"}
        assert report.series["ACC-IRA"][-1].portfolio_value == Decimal("1000")
        assert list(report.breakdown) == ["ACC-TAX"]

    def test_invalid_options(self, build):
        with pytest.raises(InvalidInputError):
            build(lens="colour")
        with pytest.raises(InvalidInputError):
            build(metric="simple")


class TestConditions:
    """Tests for degradations reported alongside the series."""

    def test_missing_price(self, build, history, sample_assets):
        assets = sample_assets + [Asset(asset_id="a-zzz", ticker="ZZZ")]
        buy = Transaction("t5", date(2024, 2, 1), TransactionType.BUY, "ACC-TAX", Decimal("-100"),
                          asset_id="a-zzz", quantity=Decimal("10"), price_per_unit=Decimal("10"))

        report = build(assets=assets, transactions=history + [buy])

        missing = [c for c in report.conditions if c.condition == ConditionType.MISSING_PRICE]
        assert [c.subject for c in missing] == ["a-zzz"]
        # Unpriced units drop out of value; their basis stays
        assert report.series["total"][-1].cost_basis_total == Decimal("8100")


class TestBenchmarks:
    """Tests for benchmark series."""

    def test_rebased_benchmark(self, build):
        report = build(benchmarks=["sp500"])

        values = [v for _, v in report.benchmarks["sp500"]]
        assert values == pytest.approx([0.0, 5.0, 10.0])

    def test_sixty_forty_blend(self, build):
        report = build(benchmarks=["6040"])

        values = [v for _, v in report.benchmarks["6040"]]
        assert values == pytest.approx([0.0, 1.0, 6.0])

    def test_unknown_benchmark(self, build):
        with pytest.raises(InvalidInputError):
            build(benchmarks=["ftse"])
