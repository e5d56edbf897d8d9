"""Tests for engine configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from costtrace.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG,
    load_engine_config,
    resolve_config,
)


class TestLoadEngineConfig:
    def test_defaults_without_path(self) -> None:
        config = load_engine_config()
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert load_engine_config(tmp_path)["collision_policy"] == "variable"

    def test_directory_lookup(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "cache_ttl_seconds: 5\ncollision_policy: error\n"
        )
        config = load_engine_config(tmp_path)
        assert config["cache_ttl_seconds"] == 5
        assert config["collision_policy"] == "error"
        assert config["max_dependency_depth"] == 64

    def test_headline_block_flattened(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text(
            "headline:\n"
            "  volume_key: transactionsPerDay\n"
            "  months_per_year: 13\n"
        )
        config = load_engine_config(path)
        assert config["headline_volume_key"] == "transactionsPerDay"
        assert config["headline_days_key"] == "workingDaysPerMonth"
        assert config["months_per_year"] == 13
        assert "headline" not in config

    def test_default_variables_merged(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text("default_variables:\n  credit_price_usd: 0.01\n")
        config = load_engine_config(path)
        assert config["default_variables"]["credit_price_usd"] == 0.01
        assert config["default_variables"]["base_credits"] == 40.0
        assert DEFAULT_CONFIG["default_variables"]["credit_price_usd"] == 0.008

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text("")
        assert load_engine_config(path) == DEFAULT_CONFIG

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_engine_config(path)


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"collision_policy": "formula"},
            {"max_dependency_depth": 0},
            {"max_dependency_depth": "deep"},
            {"cache_ttl_seconds": -1},
            {"currency_decimals": -2},
            {"intermediate_decimals": 1.5},
        ],
    )
    def test_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            resolve_config(overrides)

    def test_ttl_may_be_null(self) -> None:
        assert resolve_config({"cache_ttl_seconds": None})["cache_ttl_seconds"] is None
