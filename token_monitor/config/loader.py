"""
Configuration management and loading.

Handles monitor settings, usage limits, cost rates and environment variables.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from token_monitor.core.limits import AlertThresholds, LimitConfig, LimitThreshold
from token_monitor.core.pricing import CostRates, CostRateTable

DATA_DIR_ENV = "TOKEN_MONITOR_DIR"
DEFAULT_DATA_DIR = "~/.token-monitor"


@dataclass(frozen=True)
class MonitorConfig:
    """Complete token monitor configuration."""
    enabled: bool = True
    data_dir: Optional[Path] = None
    limits: Optional[LimitConfig] = None
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    cost_rates: CostRateTable = field(default_factory=CostRateTable)


def resolve_data_dir(configured: Optional[Path] = None) -> Path:
    """Resolve the directory holding the event log and summary cache.

    Precedence: explicit configuration, then the ``TOKEN_MONITOR_DIR``
    environment variable, then ``~/.token-monitor``.
    """
    if configured is not None:
        return Path(configured).expanduser()
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path(DEFAULT_DATA_DIR).expanduser()


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could
    leave limits unenforced.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'enabled', 'data_dir', 'limits', 'alert_thresholds', 'cost_rates'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    enabled = raw_config.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' must be a boolean")

    data_dir = raw_config.get('data_dir')
    if data_dir is not None and not isinstance(data_dir, str):
        raise ValueError("'data_dir' must be a string")

    limits = None
    if raw_config.get('limits') is not None:
        limits = _parse_limits(raw_config['limits'])

    alert_thresholds = AlertThresholds()
    if raw_config.get('alert_thresholds') is not None:
        alert_thresholds = _parse_alert_thresholds(raw_config['alert_thresholds'])

    cost_rates = CostRateTable()
    if raw_config.get('cost_rates') is not None:
        cost_rates = _parse_cost_rates(raw_config['cost_rates'])

    return MonitorConfig(
        enabled=enabled,
        data_dir=Path(data_dir).expanduser() if data_dir else None,
        limits=limits,
        alert_thresholds=alert_thresholds,
        cost_rates=cost_rates
    )


def _parse_limits(data: Any) -> LimitConfig:
    """Parse and validate the limits section.

    Args:
        data: Limits configuration data

    Returns:
        Validated LimitConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'limits' must be a dictionary")

    allowed_keys = {'hourly', 'daily', 'monthly'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown limit periods: {unknown_keys}")

    periods = {}
    for period in allowed_keys:
        if data.get(period) is not None:
            periods[period] = _parse_threshold(data[period], f"limits.{period}")

    return LimitConfig(**periods)


def _parse_threshold(data: Any, path: str) -> LimitThreshold:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed_keys = {'max_tokens', 'max_cost'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    if not data:
        raise ValueError(f"'{path}' must set max_tokens or max_cost")

    max_tokens = data.get('max_tokens')
    if max_tokens is not None:
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
            raise ValueError(f"'max_tokens' in {path} must be a positive integer")

    max_cost = data.get('max_cost')
    if max_cost is not None:
        if isinstance(max_cost, bool) or not isinstance(max_cost, (int, float)) or max_cost <= 0:
            raise ValueError(f"'max_cost' in {path} must be > 0")
        max_cost = float(max_cost)

    return LimitThreshold(max_tokens=max_tokens, max_cost=max_cost)


def _parse_alert_thresholds(data: Any) -> AlertThresholds:
    if not isinstance(data, dict):
        raise ValueError("'alert_thresholds' must be a dictionary")

    allowed_keys = {'warning', 'critical'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown alert threshold keys: {unknown_keys}")

    values = {}
    for key in allowed_keys:
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'alert_thresholds.{key}' must be a number")
            values[key] = float(value)

    return AlertThresholds(**values)


def _parse_cost_rates(data: Any) -> CostRateTable:
    """Parse and validate cost rates keyed by ``provider/model`` or model.

    Args:
        data: Cost rate configuration data

    Returns:
        Validated CostRateTable

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'cost_rates' must be a dictionary")

    rates: Dict[str, CostRates] = {}
    for key, rate_data in data.items():
        path = f"cost_rates.{key}"
        if not isinstance(rate_data, dict):
            raise ValueError(f"'{path}' must be a dictionary")

        allowed_keys = {'input', 'output', 'cache_read', 'cache_write'}
        unknown_keys = set(rate_data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

        values = {}
        for rate_key, value in rate_data.items():
            if isinstance(value, bool):
                raise ValueError(f"'{rate_key}' in {path} must be a number")
            try:
                rate = Decimal(str(value))
            except InvalidOperation:
                raise ValueError(f"'{rate_key}' in {path} must be a number")
            if not rate.is_finite() or rate < 0:
                raise ValueError(f"'{rate_key}' in {path} must be >= 0")
            values[rate_key] = rate

        rates[str(key)] = CostRates(**values)

    return CostRateTable(rates)
