"""
Configuration loading and management for the portfolio engine.

This module handles loading the engine configuration (tax rates, default
drift thresholds, IRR solver settings and benchmark tickers) from YAML files
and validating each parameter.
"""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from folio_pilot.models import EngineConfig


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def load_engine_config(config_path: str | Path) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        EngineConfig object with validated settings

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    return _parse_engine_config(raw_config)


def _parse_engine_config(raw: dict[str, Any]) -> EngineConfig:
    """
    Parse and validate raw configuration dictionary into EngineConfig.

    Every field is optional; missing fields take the EngineConfig defaults.

    Args:
        raw: Dictionary loaded from YAML

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If a field is present but invalid
    """
    defaults = EngineConfig()

    short_term_rate = _parse_decimal(
        raw.get("short_term_rate", defaults.short_term_rate),
        "short_term_rate",
        min_val=Decimal("0"),
        max_val=Decimal("1"),
    )

    long_term_rate = _parse_decimal(
        raw.get("long_term_rate", defaults.long_term_rate),
        "long_term_rate",
        min_val=Decimal("0"),
        max_val=Decimal("1"),
    )

    long_term_days = _parse_int(
        raw.get("long_term_days", defaults.long_term_days),
        "long_term_days",
        min_val=1,
    )

    default_upside_threshold = _parse_decimal(
        raw.get("default_upside_threshold", defaults.default_upside_threshold),
        "default_upside_threshold",
        min_val=Decimal("0"),
    )

    default_downside_threshold = _parse_decimal(
        raw.get("default_downside_threshold", defaults.default_downside_threshold),
        "default_downside_threshold",
        min_val=Decimal("0"),
    )

    irr_initial_guess = float(_parse_decimal(
        raw.get("irr_initial_guess", defaults.irr_initial_guess),
        "irr_initial_guess",
        min_val=Decimal("-0.99"),
    ))

    irr_max_iterations = _parse_int(
        raw.get("irr_max_iterations", defaults.irr_max_iterations),
        "irr_max_iterations",
        min_val=1,
    )

    irr_tolerance = float(_parse_decimal(
        raw.get("irr_tolerance", defaults.irr_tolerance),
        "irr_tolerance",
        min_val=Decimal("0"),
    ))
    if irr_tolerance == 0:
        raise ConfigurationError("irr_tolerance must be > 0")

    day_count = float(_parse_decimal(
        raw.get("day_count", defaults.day_count),
        "day_count",
        min_val=Decimal("1"),
    ))

    twr_adjust_for_flows = raw.get("twr_adjust_for_flows", defaults.twr_adjust_for_flows)
    if not isinstance(twr_adjust_for_flows, bool):
        raise ConfigurationError(
            f"twr_adjust_for_flows must be true or false, got {twr_adjust_for_flows!r}"
        )

    benchmarks = raw.get("benchmarks", defaults.benchmarks)
    if not isinstance(benchmarks, dict):
        raise ConfigurationError("benchmarks must be a mapping of key to ticker")
    benchmarks = {str(k): str(v).upper().strip() for k, v in benchmarks.items()}

    output_dir = str(raw.get("output_dir", defaults.output_dir))

    return EngineConfig(
        short_term_rate=short_term_rate,
        long_term_rate=long_term_rate,
        long_term_days=long_term_days,
        default_upside_threshold=default_upside_threshold,
        default_downside_threshold=default_downside_threshold,
        irr_initial_guess=irr_initial_guess,
        irr_max_iterations=irr_max_iterations,
        irr_tolerance=irr_tolerance,
        day_count=day_count,
        twr_adjust_for_flows=twr_adjust_for_flows,
        benchmarks=benchmarks,
        output_dir=output_dir,
    )


def parse_date(value: Any, field_name: str) -> date:
    """
    Parse a date value from various formats.

    Args:
        value: The value to parse (string, date or datetime object)
        field_name: Name of the field for error messages

    Returns:
        Parsed date object

    Raises:
        ConfigurationError: If the date cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            pass

        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            pass

    raise ConfigurationError(
        f"Invalid date format for {field_name}: {value}. Expected YYYY-MM-DD"
    )


def _parse_decimal(
    value: Any,
    field_name: str,
    min_val: Decimal | None = None,
    max_val: Decimal | None = None,
) -> Decimal:
    """
    Parse a decimal value with optional range validation.

    Args:
        value: The value to parse
        field_name: Name of the field for error messages
        min_val: Minimum allowed value (inclusive)
        max_val: Maximum allowed value (inclusive)

    Returns:
        Parsed Decimal

    Raises:
        ConfigurationError: If the value is invalid or out of range
    """
    try:
        decimal_value = Decimal(str(value))
    except Exception:
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if not decimal_value.is_finite():
        raise ConfigurationError(f"Invalid decimal value for {field_name}: {value}")

    if min_val is not None and decimal_value < min_val:
        raise ConfigurationError(
            f"{field_name} must be >= {min_val}, got {decimal_value}"
        )

    if max_val is not None and decimal_value > max_val:
        raise ConfigurationError(
            f"{field_name} must be <= {max_val}, got {decimal_value}"
        )

    return decimal_value


def _parse_int(value: Any, field_name: str, min_val: int | None = None) -> int:
    """Parse an integer value with an optional lower bound."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")
    try:
        int_value = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")

    if min_val is not None and int_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {int_value}")

    return int_value


def write_config(config: EngineConfig, output_path: str | Path) -> None:
    """
    Write an EngineConfig to a YAML file.

    Args:
        config: The configuration to write
        output_path: Path to write the YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = {
        "short_term_rate": str(config.short_term_rate),
        "long_term_rate": str(config.long_term_rate),
        "long_term_days": config.long_term_days,
        "default_upside_threshold": str(config.default_upside_threshold),
        "default_downside_threshold": str(config.default_downside_threshold),
        "irr_initial_guess": config.irr_initial_guess,
        "irr_max_iterations": config.irr_max_iterations,
        "irr_tolerance": config.irr_tolerance,
        "day_count": config.day_count,
        "twr_adjust_for_flows": config.twr_adjust_for_flows,
        "benchmarks": dict(config.benchmarks),
        "output_dir": config.output_dir,
    }

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
