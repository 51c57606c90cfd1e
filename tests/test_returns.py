"""
Tests for time-weighted and money-weighted return calculations.
"""

import math
from datetime import date
from decimal import Decimal

import pytest

from folio_pilot.analytics.returns import (
    annualize_return,
    calculate_irr,
    money_weighted_return,
    net_cash_flows_by_date,
    rebase_series,
    time_weighted_returns,
    year_fractions,
)
from folio_pilot.models import ValuationPoint


def points(*values, flows=None) -> list[ValuationPoint]:
    flows = flows or [0] * len(values)
    return [
        ValuationPoint(date=date(2024, 1, 1 + i), portfolio_value=Decimal(str(v)), cash_flow=Decimal(str(f)))
        for i, (v, f) in enumerate(zip(values, flows))
    ]


class TestTimeWeightedReturns:
    """Tests for the cumulative TWR series."""

    def test_first_point_is_zero(self):
        assert time_weighted_returns(points(100, 110))[0] == 0.0
        assert time_weighted_returns(points(100, 110), adjust_for_flows=True)[0] == 0.0

    def test_rebased_series(self):
        returns = time_weighted_returns(points(100, 110, 121))
        assert returns[1] == pytest.approx(10.0)
        assert returns[2] == pytest.approx(21.0)

    def test_flow_adjusted_excludes_deposit(self):
        series = points(100, 160, flows=[0, 50])

        assert time_weighted_returns(series)[1] == pytest.approx(60.0)
        assert time_weighted_returns(series, adjust_for_flows=True)[1] == pytest.approx(10.0)

    def test_modes_agree_without_flows(self):
        series = points(100, 95, 120, 130)
        assert time_weighted_returns(series) == pytest.approx(
            time_weighted_returns(series, adjust_for_flows=True)
        )

    def test_zero_base_value(self):
        assert time_weighted_returns(points(0, 100, 120)) == [0.0, 0.0, 0.0]

    def test_empty_series(self):
        assert time_weighted_returns([]) == []


class TestAnnualizeReturn:
    """Tests for annualize_return."""

    def test_two_years(self):
        assert annualize_return(21.0, 2.0) == pytest.approx(0.10)

    def test_zero_period(self):
        assert annualize_return(15.0, 0.0) == 0.0

    def test_total_loss(self):
        assert annualize_return(-100.0, 1.5) == -1.0


class TestCalculateIrr:
    """Tests for the Newton-Raphson IRR solver."""

    def test_simple_one_year(self):
        irr = calculate_irr([-1000.0, 1100.0], [0.0, 1.0])
        assert irr == pytest.approx(0.10, abs=1e-6)

    def test_multiple_flows(self):
        # 1000 invested, 500 added after a year, 1760 back after two years
        irr = calculate_irr([-1000.0, -500.0, 1760.0], [0.0, 1.0, 2.0])
        assert irr == pytest.approx(0.10, abs=1e-6)
        npv = -1000.0 - 500.0 / (1 + irr) + 1760.0 / (1 + irr) ** 2
        assert npv == pytest.approx(0.0, abs=1e-6)

    def test_negative_return(self):
        irr = calculate_irr([-1000.0, 900.0], [0.0, 1.0])
        assert irr == pytest.approx(-0.10, abs=1e-6)

    def test_no_sign_change_is_undefined(self):
        assert math.isnan(calculate_irr([-1000.0, -100.0], [0.0, 1.0]))

    def test_single_flow_is_undefined(self):
        assert math.isnan(calculate_irr([-1000.0], [0.0]))

    def test_non_convergence_is_undefined(self):
        assert math.isnan(calculate_irr([-1000.0, 1100.0], [0.0, 1.0], initial_guess=5.0, max_iterations=1))

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            calculate_irr([-1000.0, 1100.0], [0.0])


class TestMoneyWeightedReturn:
    """Tests for IRR over valuation series."""

    def test_single_period(self):
        series = [
            ValuationPoint(date=date(2023, 1, 1), portfolio_value=Decimal("1000")),
            ValuationPoint(date=date(2024, 1, 1), portfolio_value=Decimal("1100")),
        ]
        assert money_weighted_return(series, day_count=365) == pytest.approx(0.10, abs=1e-6)

    def test_deposit_is_not_return(self):
        series = [
            ValuationPoint(date=date(2023, 1, 1), portfolio_value=Decimal("1000")),
            ValuationPoint(date=date(2024, 1, 1), portfolio_value=Decimal("2000"), cash_flow=Decimal("1000")),
        ]
        assert money_weighted_return(series, day_count=365) == pytest.approx(0.0, abs=1e-6)

    def test_too_short_series(self):
        assert math.isnan(money_weighted_return(points(1000)))


class TestHelpers:
    """Tests for date and series helpers."""

    def test_year_fractions(self):
        fractions = year_fractions([date(2023, 1, 1), date(2024, 1, 1)], day_count=365)
        assert fractions == [0.0, 1.0]

    def test_net_cash_flows_merge_same_date(self):
        flows, dates = net_cash_flows_by_date(
            [100.0, -50.0, 25.0],
            [date(2024, 2, 1), date(2024, 1, 1), date(2024, 2, 1)],
        )
        assert dates == [date(2024, 1, 1), date(2024, 2, 1)]
        assert flows == [-50.0, 125.0]

    def test_rebase_series_skips_leading_gaps(self):
        rebased = rebase_series([None, Decimal("100"), Decimal("110"), None])
        assert rebased[0] == 0.0
        assert rebased[1] == 0.0
        assert rebased[2] == pytest.approx(10.0)
        assert rebased[3] == 0.0

    def test_rebase_series_without_prices(self):
        assert rebase_series([None, None]) == [0.0, 0.0]

    def test_rebase_series_treats_nan_as_gap(self):
        rebased = rebase_series([float("nan"), 400.0, 420.0])
        assert rebased == pytest.approx([0.0, 0.0, 5.0])
