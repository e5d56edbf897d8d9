"""Engine configuration with defaults and optional YAML overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

CONFIG_FILENAME = "costtrace.yaml"

COLLISION_POLICIES = ("variable", "error")

DEFAULT_CONFIG: dict[str, Any] = {
    "cache_ttl_seconds": 30.0,
    "max_dependency_depth": 64,
    "collision_policy": "variable",
    "intermediate_decimals": 4,
    "currency_decimals": 2,
    "headline_volume_key": "registrationsPerDay",
    "headline_days_key": "workingDaysPerMonth",
    "headline_price_key": "credit_price_usd",
    "months_per_year": 12,
    # Used by the default pipeline when the snapshot lacks an input.
    "default_variables": {
        "base_credits": 40.0,
        "complexityMultiplier": 1.0,
        "agentMultiplier": 1.0,
        "scenarioMultiplier": 1.0,
        "registrationsPerDay": 100.0,
        "workingDaysPerMonth": 22.0,
        "credit_price_usd": 0.008,
    },
}


def _flatten_headline_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``headline:`` block into flat config keys.

    Supports::

        headline:
          volume_key: transactionsPerDay
          days_key: workingDaysPerMonth
          price_key: credit_price_usd

    Maps to ``headline_volume_key``, ``headline_days_key`` and
    ``headline_price_key``.
    """
    block = user_config.pop("headline", None)
    if not isinstance(block, dict):
        return user_config

    mapping = {
        "volume_key": "headline_volume_key",
        "days_key": "headline_days_key",
        "price_key": "headline_price_key",
        "months_per_year": "months_per_year",
    }
    for short_key, flat_key in mapping.items():
        if short_key in block:
            user_config[flat_key] = block[short_key]
    return user_config


def resolve_config(overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Merge *overrides* onto the defaults and validate the result.

    ``default_variables`` is merged key by key rather than replaced.

    Raises:
        ValueError: If a setting has an unusable value.
    """
    config = dict(DEFAULT_CONFIG)
    config["default_variables"] = dict(DEFAULT_CONFIG["default_variables"])
    if overrides:
        user = _flatten_headline_block(dict(overrides))
        defaults = user.pop("default_variables", None)
        config.update(user)
        if defaults:
            config["default_variables"].update(
                {k: float(v) for k, v in dict(defaults).items()}
            )
    validate_config(config)
    return config


def load_engine_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ``costtrace.yaml``, with defaults.

    Args:
        path: A YAML file, or a directory containing ``costtrace.yaml``.
            ``None`` returns the defaults.

    Returns:
        Merged configuration dict.
    """
    user_config: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.is_dir():
            config_path = config_path / CONFIG_FILENAME
        if config_path.exists():
            user_config = yaml.safe_load(config_path.read_text()) or {}
            if not isinstance(user_config, dict):
                raise ValueError(f"{config_path}: expected a mapping at top level")
    return resolve_config(user_config)


def validate_config(config: Mapping[str, Any]) -> None:
    policy = config.get("collision_policy")
    if policy not in COLLISION_POLICIES:
        raise ValueError(
            f"collision_policy must be one of {list(COLLISION_POLICIES)}, got {policy!r}"
        )
    depth = config.get("max_dependency_depth")
    if not isinstance(depth, int) or depth < 1:
        raise ValueError(f"max_dependency_depth must be a positive integer, got {depth!r}")
    ttl = config.get("cache_ttl_seconds")
    if ttl is not None and (not isinstance(ttl, (int, float)) or ttl < 0):
        raise ValueError(f"cache_ttl_seconds must be >= 0 or null, got {ttl!r}")
    for key in ("intermediate_decimals", "currency_decimals"):
        value = config.get(key)
        if not isinstance(value, int) or value < 0:
            raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
