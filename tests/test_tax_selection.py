"""
Tests for tax-aware sell account selection and reinvestment planning.
"""

from datetime import date
from decimal import Decimal

import pytest

from folio_pilot.analytics.tax_selection import (
    lot_tax_rate,
    plan_reinvestment,
    recommend_buy_accounts,
    sale_proceeds,
    select_sell_accounts,
)
from folio_pilot.models import (
    Account,
    DriftAnalysis,
    RebalanceAction,
    TaxLot,
    TaxStatus,
)


def make_drift(asset_id, ticker, group_id, drift_pct, action, amount) -> DriftAnalysis:
    return DriftAnalysis(
        asset_id=asset_id,
        ticker=ticker,
        group_id=group_id,
        current_value=Decimal("0"),
        group_value=Decimal("0"),
        current_pct=Decimal("0"),
        current_in_group_pct=Decimal("0"),
        target_in_group_pct=Decimal("0"),
        implied_overall_target=Decimal("0"),
        drift_pct=Decimal(drift_pct),
        action=action,
        amount=Decimal(amount),
    )


class TestLotTaxRate:
    """Tests for per-lot rate selection."""

    def test_short_and_long_term(self, sample_lots, as_of):
        short = Decimal("0.37")
        long = Decimal("0.15")

        # lot-002 acquired 2023-09-01, under a year before as_of
        assert lot_tax_rate(sample_lots[1], as_of, short, long) == short
        assert lot_tax_rate(sample_lots[0], as_of, short, long) == long

    def test_boundary_day_is_long_term(self, sample_lots):
        lot = sample_lots[0]
        assert lot_tax_rate(lot, date(2023, 1, 10), Decimal("0.37"), Decimal("0.15")) == Decimal("0.15")
        assert lot_tax_rate(lot, date(2023, 1, 9), Decimal("0.37"), Decimal("0.15")) == Decimal("0.37")


class TestSelectSellAccounts:
    """Tests for select_sell_accounts."""

    def test_net_gain_sells_tax_advantaged_first(self, sample_lots, accounts_by_id, as_of):
        selection = select_sell_accounts(
            asset_id="a-vti",
            amount=Decimal("4720"),
            lots=sample_lots,
            accounts=accounts_by_id,
            price=Decimal("260"),
            as_of=as_of,
        )

        assert len(selection.recommended_accounts) == 1
        rec = selection.recommended_accounts[0]
        assert rec.account_id == "ACC-IRA"
        assert rec.amount == Decimal("4720")
        assert rec.lot_ids == ["lot-002"]
        assert selection.net_tax_impact == Decimal("0")
        assert selection.notes == "Sold from tax-advantaged accounts; no taxable gain"
        assert selection.selected_amount == Decimal("4720")
        assert not selection.degraded

    def test_spills_into_taxable_account(self, sample_lots, accounts_by_id, as_of):
        selection = select_sell_accounts(
            asset_id="a-vti",
            amount=Decimal("10000"),
            lots=sample_lots,
            accounts=accounts_by_id,
            price=Decimal("260"),
            as_of=as_of,
        )

        assert [r.account_id for r in selection.recommended_accounts] == ["ACC-IRA", "ACC-TAX"]
        assert selection.recommended_accounts[0].amount == Decimal("7800")
        assert selection.recommended_accounts[1].amount == Decimal("2200")

        # $2,200 of a lot worth $13,000 on a $10,000 basis, long-term
        expected_gain = Decimal("2200") - Decimal("10000") * Decimal("2200") / Decimal("13000")
        assert selection.tax_owed == pytest.approx(expected_gain * Decimal("0.15"))
        assert selection.net_tax_impact > Decimal("0")
        assert selection.notes.startswith("Estimated capital gains tax on taxable portion")

    def test_net_loss_sells_taxable_first(self, sample_lots, accounts_by_id, as_of):
        selection = select_sell_accounts(
            asset_id="a-vti",
            amount=Decimal("3000"),
            lots=sample_lots,
            accounts=accounts_by_id,
            price=Decimal("180"),
            as_of=as_of,
        )

        assert selection.recommended_accounts[0].account_id == "ACC-TAX"
        assert selection.loss_benefit == pytest.approx(Decimal("50"))
        assert selection.net_tax_impact == pytest.approx(Decimal("-50"))
        assert "tax-loss harvesting" in selection.notes
        assert sale_proceeds(selection) == pytest.approx(Decimal("3050"))

    def test_unfilled_amount(self, sample_lots, accounts_by_id, as_of):
        selection = select_sell_accounts(
            asset_id="a-vxus",
            amount=Decimal("7000"),
            lots=sample_lots,
            accounts=accounts_by_id,
            price=Decimal("60"),
            as_of=as_of,
        )

        assert selection.selected_amount == Decimal("6000")
        assert selection.unfilled_amount == Decimal("1000")
        assert "could not be covered" in selection.notes

    def test_missing_price_sells_nothing(self, sample_lots, accounts_by_id, as_of):
        selection = select_sell_accounts(
            asset_id="a-vti",
            amount=Decimal("1000"),
            lots=sample_lots,
            accounts=accounts_by_id,
            price=None,
            as_of=as_of,
        )
        assert selection.recommended_accounts == []
        assert selection.unfilled_amount == Decimal("1000")

    def test_degraded_without_account_linkage(self, accounts_by_id, as_of):
        lots = [
            TaxLot(
                lot_id="orphan",
                asset_id="a-x",
                account_id=None,
                acquisition_date=date(2024, 1, 2),
                quantity=Decimal("100"),
                cost_basis_per_unit=Decimal("100"),
                remaining_quantity=Decimal("100"),
            )
        ]

        selection = select_sell_accounts(
            asset_id="a-x",
            amount=Decimal("3000"),
            lots=lots,
            accounts=accounts_by_id,
            price=Decimal("150"),
            as_of=as_of,
        )

        assert selection.degraded
        assert len(selection.recommended_accounts) == 1
        assert selection.recommended_accounts[0].account_id is None
        assert selection.recommended_accounts[0].name == "unassigned"
        # 20% of a $5,000 short-term gain at 37%
        assert selection.tax_owed == pytest.approx(Decimal("370"))


class TestPlanReinvestment:
    """Tests for pairing sale proceeds with buys."""

    def test_proceeds_fund_highest_drift_first(self, sample_lots, accounts_by_id, as_of):
        sell = make_drift("a-vti", "VTI", "G-EQ", "30", RebalanceAction.SELL, "1000")
        selection = select_sell_accounts(
            "a-vti", Decimal("1000"), sample_lots, accounts_by_id, Decimal("260"), as_of
        )
        buys = [
            make_drift("a-vxus", "VXUS", "G-EQ", "-10", RebalanceAction.BUY, "800"),
            make_drift("a-vea", "VEA", "G-EQ", "-40", RebalanceAction.BUY, "600"),
            make_drift("a-bnd", "BND", "G-BD", "-50", RebalanceAction.BUY, "900"),
        ]

        plan = plan_reinvestment(
            [(sell, selection)], buys, {"a-vxus": Decimal("50"), "a-vea": Decimal("40")}
        )

        suggestions = plan["a-vti"]
        assert [s.asset_id for s in suggestions] == ["a-vea", "a-vxus"]
        assert suggestions[0].amount == Decimal("600")
        assert suggestions[0].units == Decimal("15")
        assert suggestions[1].amount == Decimal("400")

    def test_need_not_funded_twice(self, sample_lots, accounts_by_id, as_of):
        first = make_drift("a-vti", "VTI", "G-EQ", "40", RebalanceAction.SELL, "500")
        second = make_drift("a-vxus", "VXUS", "G-EQ", "20", RebalanceAction.SELL, "500")
        selections = {
            d.asset_id: select_sell_accounts(
                d.asset_id, d.amount, sample_lots, accounts_by_id, Decimal("260"), as_of
            )
            for d in (first, second)
        }
        buy = make_drift("a-vea", "VEA", "G-EQ", "-30", RebalanceAction.BUY, "700")

        plan = plan_reinvestment(
            [(second, selections["a-vxus"]), (first, selections["a-vti"])],
            [buy],
            {"a-vea": Decimal("40")},
        )

        assert plan["a-vti"][0].amount == Decimal("500")
        assert plan["a-vxus"][0].amount == Decimal("200")


class TestRecommendBuyAccounts:
    """Tests for buy account suggestions."""

    def test_prefers_tax_advantaged(self, sample_accounts):
        recs = recommend_buy_accounts(sample_accounts, Decimal("4720"))

        assert recs[0].account_id == "ACC-IRA"
        assert recs[0].amount == Decimal("4720")

    def test_falls_back_to_any_account(self):
        accounts = [
            Account(account_id="A1", name="One", tax_status=TaxStatus.TAXABLE),
            Account(account_id="A2", name="Two", tax_status=TaxStatus.TAXABLE),
        ]
        recs = recommend_buy_accounts(accounts, Decimal("100"))

        assert [r.account_id for r in recs] == ["A1", "A2"]
        assert recs[1].amount == Decimal("0")
        assert recs[1].rationale.startswith("Alternative")

    def test_no_accounts(self):
        assert recommend_buy_accounts([], Decimal("100")) == []
