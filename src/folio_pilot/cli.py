"""
Command-line interface for the folio-pilot engine.

Provides commands for:
- lots: Replay transactions into tax lots and reconcile with stored lots
- rebalance: Drift analysis with tax-aware sell and buy recommendations
- performance: Time-weighted / money-weighted performance series
- irr: Internal rate of return of dated cash flows
"""

import logging
import math
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

import click

from folio_pilot import __version__
from folio_pilot.analytics.returns import calculate_irr, net_cash_flows_by_date, year_fractions
from folio_pilot.config import ConfigurationError, load_engine_config, parse_date
from folio_pilot.data import (
    DataLoadError,
    load_portfolio,
    save_lots,
    save_performance_series,
    save_rebalance_report,
)
from folio_pilot.errors import FolioPilotError
from folio_pilot.logging import DecisionLogger, get_logger
from folio_pilot.models import EngineConfig, RebalanceAction
from folio_pilot.portfolio import PriceBook, reconcile_lots, replay_transactions
from folio_pilot.reports import build_performance_report, build_rebalance_report


def _parse_date(value: str, option: str) -> date:
    try:
        return parse_date(value, option)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _load_config(config_path: Optional[str]) -> EngineConfig:
    if config_path is None:
        return EngineConfig()
    try:
        return load_engine_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)


def _setup(config_path: Optional[str], output_dir: Optional[str]) -> tuple[EngineConfig, Path, DecisionLogger]:
    config = _load_config(config_path)
    out_dir = Path(output_dir or config.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    logger = get_logger(out_dir / "decision_log.jsonl")
    if config_path is not None:
        logger.log_config_loaded(config, config_path)
    return config, out_dir, logger


def _load_data(data: str, config: EngineConfig):
    click.echo(f"Loading portfolio data from {data}...")
    try:
        return load_portfolio(data, config)
    except DataLoadError as e:
        click.echo(f"Error loading data: {e}", err=True)
        sys.exit(1)


config_option = click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    default=None,
    help="Path to engine configuration YAML file",
)
data_option = click.option(
    "--data", "-d",
    required=True,
    type=click.Path(exists=True),
    help="Directory of CSV/Parquet tables or a JSON snapshot",
)
output_option = click.option(
    "--output-dir", "-o",
    type=click.Path(),
    default=None,
    help="Output directory. Defaults to config output_dir.",
)


@click.group()
@click.version_option(version=__version__, prog_name="folio-pilot")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """
    Portfolio accounting and rebalancing engine.

    Tracks tax lots across accounts, recommends tax-aware rebalancing trades
    and reports time- and money-weighted performance. Estimates only; no
    orders are placed.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@data_option
@config_option
@output_option
@click.option("--strict", is_flag=True, help="Exit with an error when lots do not reconcile")
def lots(data: str, config: Optional[str], output_dir: Optional[str], strict: bool):
    """
    Replay all transactions into tax lots.

    Rebuilds FIFO lot state from the full transaction history and compares
    it with the stored open lots.
    """
    engine_config, out_dir, logger = _setup(config, output_dir)
    portfolio = _load_data(data, engine_config)

    click.echo(f"Replaying {len(portfolio.transactions)} transactions...")
    try:
        result = replay_transactions(portfolio.transactions, engine_config.long_term_days)
    except FolioPilotError as e:
        click.echo(f"Error replaying transactions: {e}", err=True)
        sys.exit(1)

    replayed = result.ledger.open_lots()
    discrepancies = reconcile_lots(replayed, portfolio.lots) if portfolio.lots else []
    logger.log_lots_replayed(result, len(portfolio.transactions), discrepancies)

    lots_path = out_dir / "replayed_lots.csv"
    save_lots(replayed, lots_path)
    click.echo(f"  Lots saved: {lots_path}")

    click.echo()
    click.echo("Replay summary:")
    click.echo(f"  Open lots:     {len(replayed)}")
    click.echo(f"  Sales:         {len(result.sales)}")
    click.echo(f"  Realized gain: ${result.realized_gain:,.2f}")

    if not portfolio.lots:
        click.echo("  No stored lots to reconcile against")
    elif discrepancies:
        click.echo(f"  Discrepancies: {len(discrepancies)}")
        for line in discrepancies[:10]:
            click.echo(f"    {line}")
        if strict:
            sys.exit(1)
    else:
        click.echo("  Stored lots reconcile with the transaction history")


@main.command()
@data_option
@config_option
@output_option
@click.option("--date", "as_of", required=True, help="Valuation date (YYYY-MM-DD)")
@click.option(
    "--lens", "-l",
    type=click.Choice(["group", "account", "asset_type", "asset_subtype", "geography", "size_tag", "factor_tag"]),
    default="group",
    help="Allocation lens for the breakdown",
)
@click.option("--group", "-g", "groups", multiple=True, help="Only report these group ids")
def rebalance(
    data: str,
    config: Optional[str],
    output_dir: Optional[str],
    as_of: str,
    lens: str,
    groups: tuple[str, ...],
):
    """
    Generate a rebalance report.

    Compares holdings with their group targets, flags buys and sells past
    the drift thresholds and picks the accounts to trade in.
    """
    valuation_date = _parse_date(as_of, "--date")
    engine_config, out_dir, logger = _setup(config, output_dir)
    portfolio = _load_data(data, engine_config)

    click.echo(f"Building rebalance report for {valuation_date}...")
    try:
        report = build_rebalance_report(
            assets=portfolio.assets,
            groups=portfolio.groups,
            targets=portfolio.targets,
            accounts=portfolio.accounts,
            lots=portfolio.lots,
            transactions=portfolio.transactions,
            prices=PriceBook(portfolio.prices),
            as_of=valuation_date,
            config=engine_config,
            selected_groups=list(groups) or None,
            lens=lens,
        )
    except FolioPilotError as e:
        click.echo(f"Error building rebalance report: {e}", err=True)
        sys.exit(1)

    logger.log_rebalance_report(report)

    report_path = out_dir / f"rebalance_{valuation_date}.csv"
    save_rebalance_report(report, report_path)
    click.echo(f"  Report saved: {report_path}")

    click.echo()
    click.echo(f"Rebalance Report ({valuation_date}):")
    click.echo(f"  Total value: ${report.total_value:,.2f}")
    click.echo(f"  Cash:        ${report.total_cash:,.2f}")
    click.echo(f"  Cash needed: ${report.cash_needed:,.2f}")

    summary = report.drift_summary
    click.echo(
        f"  Holdings:    {summary['total_holdings']} "
        f"({summary['buy_count']} buy, {summary['sell_count']} sell, {summary['hold_count']} hold), "
        f"max drift {summary['max_abs_drift']:.2f}%"
    )
    click.echo(f"  Unrealized:  ${report.pnl['total_unrealized_pnl']:,.2f}")

    actionable = [r for r in report.rows if r.drift.action != RebalanceAction.HOLD]
    if actionable:
        click.echo()
        click.echo("  Trades:")
        for row in actionable:
            d = row.drift
            line = f"    {d.action.value.upper():4} {d.ticker:8} ${d.amount:,.2f} (drift {d.drift_pct:+.2f}%)"
            if d.action == RebalanceAction.SELL and row.tax_impact:
                line += f" est. tax ${row.tax_impact:,.2f}"
            click.echo(line)

    for condition in report.conditions:
        click.echo(f"  Warning [{condition.condition.value}]: {condition.message}", err=True)


@main.command()
@data_option
@config_option
@output_option
@click.option("--start", required=True, help="Start date (YYYY-MM-DD)")
@click.option("--end", required=True, help="End date (YYYY-MM-DD)")
@click.option("--granularity", type=click.Choice(["daily", "monthly"]), default="monthly")
@click.option(
    "--lens", "-l",
    type=click.Choice(["total", "account", "group", "sub_portfolio", "asset_type",
                       "asset_subtype", "geography", "size_tag", "factor_tag"]),
    default="total",
)
@click.option("--select", "-s", "selected", multiple=True, help="Only report these lens values")
@click.option("--aggregate/--by-asset", default=True, help="Add a per-asset breakdown")
@click.option("--metric", type=click.Choice(["twr", "mwr"]), default="twr")
@click.option("--benchmark", "-b", "benchmarks", multiple=True, help="Benchmark key (sp500, nasdaq, tlt, vxus, 6040)")
def performance(
    data: str,
    config: Optional[str],
    output_dir: Optional[str],
    start: str,
    end: str,
    granularity: str,
    lens: str,
    selected: tuple[str, ...],
    aggregate: bool,
    metric: str,
    benchmarks: tuple[str, ...],
):
    """
    Generate a performance report.

    Replays transactions over a date grid and reports value, gains and
    returns per series, with optional benchmarks.
    """
    start_date = _parse_date(start, "--start")
    end_date = _parse_date(end, "--end")
    engine_config, out_dir, logger = _setup(config, output_dir)
    portfolio = _load_data(data, engine_config)

    click.echo(f"Building performance report {start_date} to {end_date}...")
    try:
        report = build_performance_report(
            transactions=portfolio.transactions,
            assets=portfolio.assets,
            accounts=portfolio.accounts,
            groups=portfolio.groups,
            prices=PriceBook(portfolio.prices),
            start=start_date,
            end=end_date,
            config=engine_config,
            granularity=granularity,
            lens=lens,
            selected_values=list(selected) or None,
            aggregate=aggregate,
            metric=metric,
            benchmarks=benchmarks,
        )
    except FolioPilotError as e:
        click.echo(f"Error building performance report: {e}", err=True)
        sys.exit(1)

    logger.log_performance_report(report)

    series_path = out_dir / f"performance_{start_date}_{end_date}.csv"
    save_performance_series(report, series_path)
    click.echo(f"  Series saved: {series_path}")

    click.echo()
    click.echo(f"Performance ({metric.upper()}, {report.lens} lens):")
    for key, summary in report.summaries.items():
        click.echo(
            f"  {report.label(key)}: total {summary.total_return:.2f}%, "
            f"annualized {summary.annualized_return:.2f}%, "
            f"net gain ${summary.net_gain:,.2f}"
        )
    for key, points in report.benchmarks.items():
        if points:
            click.echo(f"  Benchmark {key}: {points[-1][1]:.2f}%")

    for condition in report.conditions:
        click.echo(f"  Warning [{condition.condition.value}]: {condition.message}", err=True)


@main.command()
@click.argument("flows", nargs=-1, required=True)
@config_option
def irr(flows: tuple[str, ...], config: Optional[str]):
    """
    Compute the internal rate of return of dated cash flows.

    FLOWS are DATE:AMOUNT pairs, e.g. 2024-01-01:-1000 2025-01-01:1100.
    Negative amounts are money invested, positive amounts money returned.
    """
    engine_config = _load_config(config)

    amounts = []
    dates = []
    for flow in flows:
        date_text, sep, amount_text = flow.partition(":")
        if not sep:
            click.echo(f"Invalid cash flow: {flow}. Use DATE:AMOUNT.", err=True)
            sys.exit(1)
        dates.append(_parse_date(date_text, "FLOWS"))
        try:
            amounts.append(float(Decimal(amount_text)))
        except ArithmeticError:
            click.echo(f"Invalid amount in cash flow: {flow}", err=True)
            sys.exit(1)

    net_flows, net_dates = net_cash_flows_by_date(amounts, dates)
    rate = calculate_irr(
        net_flows,
        year_fractions(net_dates, engine_config.day_count),
        initial_guess=engine_config.irr_initial_guess,
        max_iterations=engine_config.irr_max_iterations,
        tolerance=engine_config.irr_tolerance,
    )

    if math.isnan(rate):
        click.echo("IRR: undefined (no convergence)")
        sys.exit(1)
    click.echo(f"IRR: {rate:.4%}")


if __name__ == "__main__":
    main()
