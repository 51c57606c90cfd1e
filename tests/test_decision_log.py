"""
Tests for the append-only decision log.
"""

import json
from decimal import Decimal

from folio_pilot.logging import DecisionLogger, get_logger, log_action
from folio_pilot.models import ActionType, EngineConfig
from folio_pilot.portfolio import replay_transactions
from folio_pilot.reports import build_rebalance_report


class TestDecisionLogger:
    """Tests for DecisionLogger."""

    def test_log_and_read(self, tmp_path):
        logger = DecisionLogger(tmp_path / "logs" / "decision_log.jsonl")
        log_action(ActionType.CONFIG_LOADED, {"rate": Decimal("0.37")}, logger=logger)

        entries = logger.read_log()
        assert len(entries) == 1
        assert entries[0].action_type == ActionType.CONFIG_LOADED
        assert entries[0].details == {"rate": "0.37"}

    def test_append_only(self, tmp_path):
        path = tmp_path / "decision_log.jsonl"
        logger = get_logger(path)
        logger.log_config_loaded(EngineConfig(), "engine.yaml")
        get_logger(path).log_config_loaded(EngineConfig(), "engine.yaml")

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["details"]["config_path"] == "engine.yaml"

    def test_read_missing_log(self, tmp_path):
        assert DecisionLogger(tmp_path / "missing.jsonl").read_log() == []

    def test_log_lots_replayed(self, tmp_path, sample_transactions):
        logger = DecisionLogger(tmp_path / "decision_log.jsonl")
        result = replay_transactions(sample_transactions)

        logger.log_lots_replayed(result, len(sample_transactions), ["a mismatch"])

        entry = logger.filter_by_action_type(ActionType.LOTS_REPLAYED)[0]
        assert entry.details["open_lots"] == 4
        assert entry.details["assets"] == 3
        assert entry.details["discrepancy_count"] == 1

    def test_log_rebalance_report(
        self,
        tmp_path,
        sample_assets,
        sample_groups,
        sample_targets,
        sample_accounts,
        sample_lots,
        sample_transactions,
        sample_price_book,
        as_of,
    ):
        report = build_rebalance_report(
            sample_assets, sample_groups, sample_targets, sample_accounts,
            sample_lots, sample_transactions, sample_price_book, as_of,
        )
        logger = DecisionLogger(tmp_path / "decision_log.jsonl")
        logger.log_rebalance_report(report)

        entries = logger.filter_by_action_type(ActionType.REBALANCE_REPORT_GENERATED)
        assert len(entries) == 1
        details = entries[0].details
        assert details["as_of"] == "2024-06-30"
        assert details["sell_tickers"] == ["VTI"]
        assert details["buy_tickers"] == ["VXUS"]
        assert details["total_value"] == "39200"
        assert logger.filter_by_action_type(ActionType.PERFORMANCE_REPORT_GENERATED) == []
