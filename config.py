from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""

# Host keyboard layout -> hex keypad:
#   1 2 3 4      1 2 3 C
#   Q W E R  ->  4 5 6 D
#   A S D F      7 8 9 E
#   Z X C V      A 0 B F
DEFAULT_KEY_MAP: dict[str, int] = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}  # fmt: skip

DEFAULTS: dict[str, Any] = {
    "initial_timer": 60,
    "seed": None,
    "cycle_limit": 1000,
    "pause_tick": None,
    "lenient_log": False,
    "key_map": DEFAULT_KEY_MAP,
    "screen_on": "#",
    "screen_off": ".",
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _optional_int(cfg: dict[str, Any], key: str) -> None:
    v = cfg.get(key)
    cfg[key] = None if v is None else int(v)


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        cfg["initial_timer"] = int(cfg.get("initial_timer", DEFAULTS["initial_timer"]))
        _optional_int(cfg, "seed")
        cfg["cycle_limit"] = int(cfg.get("cycle_limit", DEFAULTS["cycle_limit"]))
        _optional_int(cfg, "pause_tick")

        # lenient_log (bool coercion)
        cfg["lenient_log"] = bool(cfg.get("lenient_log", DEFAULTS["lenient_log"]))

        # key_map: keys are single host characters (lower-cased), values keypad indices;
        # YAML may give hex strings such as "0xC"
        km = cfg.get("key_map")
        if km is None:
            km = DEFAULTS["key_map"]
        cfg["key_map"] = {str(k).lower(): int(v, 0) if isinstance(v, str) else int(v) for k, v in km.items()}

        cfg["screen_on"] = str(cfg.get("screen_on", DEFAULTS["screen_on"]))
        cfg["screen_off"] = str(cfg.get("screen_off", DEFAULTS["screen_off"]))
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if not (0 <= cfg["initial_timer"] <= 0xFF):
        msg = f"initial_timer ({cfg['initial_timer']}) out of range (0..255)"
        raise ConfigError(msg)

    if cfg["cycle_limit"] < 0:
        msg = "cycle_limit must be non-negative"
        raise ConfigError(msg)

    if cfg["pause_tick"] is not None and cfg["pause_tick"] < 0:
        msg = "pause_tick must be non-negative or null"
        raise ConfigError(msg)

    for ch, key in cfg["key_map"].items():
        if len(ch) != 1:
            msg = f"key_map entry {ch!r} must be a single character"
            raise ConfigError(msg)
        if not (0 <= key <= 0xF):
            msg = f"key_map[{ch!r}] ({key}) out of keypad range (0..15)"
            raise ConfigError(msg)

    if len(cfg["screen_on"]) != 1 or len(cfg["screen_off"]) != 1:
        msg = "screen_on and screen_off must be single characters"
        raise ConfigError(msg)


def load_config(path_or_dict: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str (path) -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, str):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
