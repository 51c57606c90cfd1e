"""
Append-only decision logging for the folio-pilot engine.

Every report the engine produces is logged with a timestamp and a compact
summary so that runs can be audited and reproduced.
"""

import json
import math
from datetime import datetime, date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from folio_pilot.models import (
    ActionType,
    DecisionLogEntry,
    EngineConfig,
    PerformanceReport,
    RebalanceAction,
    RebalanceReport,
)
from folio_pilot.portfolio.ledger import ReplayResult


DEFAULT_LOG_PATH = "output/decision_log.jsonl"


class DecisionLogger:
    """
    Append-only decision logger.

    Writes all decisions to a JSONL file for audit purposes.
    Each line is a complete JSON object representing one action.
    """

    def __init__(self, log_path: str | Path):
        """
        Initialize the decision logger.

        Args:
            log_path: Path to the log file (will be created if not exists)
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: DecisionLogEntry) -> None:
        """
        Write a decision log entry.

        Args:
            entry: DecisionLogEntry to write
        """
        record = {
            "timestamp": entry.timestamp.isoformat(),
            "action_type": entry.action_type.value,
            "details": entry.details,
        }

        with open(self.log_path, "a") as f:
            f.write(json.dumps(record, cls=DecimalEncoder) + "\n")

    def log_config_loaded(
        self,
        config: EngineConfig,
        config_path: str,
    ) -> None:
        """
        Log configuration loading.

        Args:
            config: Loaded configuration
            config_path: Path to configuration file
        """
        details = {
            "config_path": config_path,
            "short_term_rate": str(config.short_term_rate),
            "long_term_rate": str(config.long_term_rate),
            "long_term_days": config.long_term_days,
            "irr_max_iterations": config.irr_max_iterations,
            "twr_adjust_for_flows": config.twr_adjust_for_flows,
            "benchmarks": dict(config.benchmarks),
        }

        self.log(DecisionLogEntry.create(ActionType.CONFIG_LOADED, details))

    def log_lots_replayed(
        self,
        result: ReplayResult,
        transaction_count: int,
        discrepancies: list[str],
    ) -> None:
        """
        Log a transaction replay and its reconciliation with stored lots.

        Args:
            result: Replay result
            transaction_count: Number of transactions replayed
            discrepancies: Output of reconcile_lots
        """
        open_lots = result.ledger.open_lots()
        details = {
            "transactions": transaction_count,
            "sales": len(result.sales),
            "open_lots": len(open_lots),
            "assets": len({lot.asset_id for lot in open_lots}),
            "realized_gain": result.realized_gain,
            "discrepancy_count": len(discrepancies),
            "discrepancies": discrepancies[:10],  # First 10
        }

        self.log(DecisionLogEntry.create(ActionType.LOTS_REPLAYED, details))

    def log_rebalance_report(self, report: RebalanceReport) -> None:
        """
        Log rebalance report generation.

        Args:
            report: The generated report
        """
        buys = [r for r in report.rows if r.drift.action == RebalanceAction.BUY]
        sells = [r for r in report.rows if r.drift.action == RebalanceAction.SELL]

        details = {
            "as_of": report.as_of,
            "lens": report.lens,
            "total_value": report.total_value,
            "total_cash": report.total_cash,
            "cash_needed": report.cash_needed,
            "holdings": len(report.rows),
            "buy_count": len(buys),
            "sell_count": len(sells),
            "estimated_tax": sum((r.tax_impact for r in sells), Decimal("0")),
            "max_abs_drift": report.drift_summary.get("max_abs_drift"),
            "unrealized_pnl": report.pnl.get("total_unrealized_pnl"),
            "sell_tickers": [r.drift.ticker for r in sells[:10]],
            "buy_tickers": [r.drift.ticker for r in buys[:10]],
            "conditions": [c.condition.value for c in report.conditions],
        }

        self.log(DecisionLogEntry.create(ActionType.REBALANCE_REPORT_GENERATED, details))

    def log_performance_report(self, report: PerformanceReport) -> None:
        """
        Log performance report generation.

        Args:
            report: The generated report
        """
        details = {
            "start_date": report.start_date,
            "end_date": report.end_date,
            "lens": report.lens,
            "metric": report.metric.value,
            "series": {
                key: {
                    "label": report.label(key),
                    "total_return": _finite_or_none(summary.total_return),
                    "annualized_return": _finite_or_none(summary.annualized_return),
                    "net_gain": summary.net_gain,
                }
                for key, summary in report.summaries.items()
            },
            "benchmarks": sorted(report.benchmarks),
            "conditions": [c.condition.value for c in report.conditions],
        }

        self.log(DecisionLogEntry.create(ActionType.PERFORMANCE_REPORT_GENERATED, details))

    def read_log(self) -> list[DecisionLogEntry]:
        """
        Read all entries from the log file.

        Returns:
            List of DecisionLogEntry objects
        """
        if not self.log_path.exists():
            return []

        entries = []
        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                entries.append(
                    DecisionLogEntry(
                        timestamp=datetime.fromisoformat(record["timestamp"]),
                        action_type=ActionType(record["action_type"]),
                        details=record.get("details", {}),
                    )
                )

        return entries

    def filter_by_action_type(
        self,
        action_type: ActionType,
    ) -> list[DecisionLogEntry]:
        """
        Get log entries of a specific action type.

        Args:
            action_type: Action type to filter by

        Returns:
            Filtered list of entries
        """
        return [e for e in self.read_log() if e.action_type == action_type]


def _finite_or_none(value: float) -> Optional[float]:
    return None if math.isnan(value) else value


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


def get_logger(log_path: Optional[str | Path] = None) -> DecisionLogger:
    """
    Create a decision logger.

    Args:
        log_path: Path of the JSONL file; defaults to output/decision_log.jsonl

    Returns:
        DecisionLogger instance
    """
    return DecisionLogger(log_path or DEFAULT_LOG_PATH)


def log_action(
    action_type: ActionType,
    details: dict,
    logger: Optional[DecisionLogger] = None,
) -> None:
    """
    Convenience function to log an action.

    Args:
        action_type: Type of action
        details: Action details dictionary
        logger: Logger to write to; a default-path logger when omitted
    """
    logger = logger or get_logger()
    logger.log(DecisionLogEntry.create(action_type=action_type, details=details))
