"""Tests for the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from config import DEFAULTS, ConfigError, load_config


def test_none_returns_defaults() -> None:
    assert load_config(None) == DEFAULTS


def test_dict_overlays_defaults() -> None:
    cfg = load_config({"cycles_per_frame": "10", "seed": 7})
    assert cfg["cycles_per_frame"] == 10
    assert cfg["seed"] == 7
    assert cfg["tick_limit"] == DEFAULTS["tick_limit"]


def test_yaml_file(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("tick_limit: 500\npause_tick: 20\nlenient_log: true\n", encoding="utf-8")
    cfg = load_config(str(p))
    assert cfg["tick_limit"] == 500
    assert cfg["pause_tick"] == 20
    assert cfg["lenient_log"] is True


def test_missing_file() -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/cfg.yaml")


def test_file_must_hold_mapping(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(p))


@pytest.mark.parametrize(
    "overlay",
    [
        {"cycles_per_frame": 0},
        {"tick_limit": -1},
        {"pause_tick": -5},
        {"lenient_log": "yes"},
        {"seed": "abc"},
        {"cycles_per_frame": None},
    ],
)
def test_invalid_values(overlay: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(overlay)


def test_unsupported_input() -> None:
    with pytest.raises(ConfigError):
        load_config(42)  # type: ignore[arg-type]
