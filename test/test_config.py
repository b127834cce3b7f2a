from __future__ import annotations

from pathlib import Path

import pytest
from config import DEFAULT_KEY_MAP, DEFAULTS, ConfigError, load_config


def test_defaults() -> None:
    cfg = load_config(None)
    assert cfg["initial_timer"] == 60
    assert cfg["seed"] is None
    assert cfg["cycle_limit"] == DEFAULTS["cycle_limit"]
    assert cfg["key_map"] == DEFAULT_KEY_MAP
    assert cfg["key_map"]["x"] == 0x0
    assert cfg["key_map"]["4"] == 0xC


def test_dict_overlay_normalizes_types() -> None:
    cfg = load_config({"initial_timer": "0", "seed": "7", "lenient_log": 1, "key_map": {"J": "0xA", 1: 1}})
    assert cfg["initial_timer"] == 0
    assert cfg["seed"] == 7
    assert cfg["lenient_log"] is True
    assert cfg["key_map"] == {"j": 0xA, "1": 1}


def test_yaml_file(tmp_path: Path) -> None:
    p = tmp_path / "cfg.yaml"
    p.write_text("initial_timer: 0\ncycle_limit: 42\nscreen_on: '@'\n", encoding="utf-8")
    cfg = load_config(str(p))
    assert cfg["initial_timer"] == 0
    assert cfg["cycle_limit"] == 42
    assert cfg["screen_on"] == "@"
    assert cfg["screen_off"] == "."


@pytest.mark.parametrize(
    "bad",
    [
        {"initial_timer": 256},
        {"initial_timer": "soon"},
        {"cycle_limit": -1},
        {"pause_tick": -5},
        {"key_map": {"a": 16}},
        {"key_map": {"ab": 1}},
        {"key_map": ["a"]},
        {"screen_on": "##"},
    ],
)
def test_invalid_values(bad: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(bad)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file(tmp_path: Path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(p))


def test_unsupported_input() -> None:
    with pytest.raises(ConfigError):
        load_config(42)  # type: ignore[arg-type]
