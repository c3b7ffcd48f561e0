"""YAML-backed engine configuration with environment overrides."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
from typing import Any, Mapping

import yaml

from depth_bot.config.constants import DEFAULT_SETTINGS_FILE, ENV_PREFIX

REQUIRED_SECTIONS = ("exchange", "book", "guard", "tracker", "risk", "engine")


class ConfigError(ValueError):
    """Raised when the settings file is missing keys or holds invalid values."""


def default_settings_path() -> Path:
    return Path(__file__).parent / DEFAULT_SETTINGS_FILE


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Override ``section.key`` values from ``DEPTH_BOT_<SECTION>_<KEY>`` variables.

    Values are parsed as YAML scalars so ``25`` becomes an int and ``null`` disables
    an optional setting.
    """
    prefix = f"{ENV_PREFIX}_"
    for section, values in data.items():
        if not isinstance(values, dict):
            continue
        for key in list(values):
            env_key = f"{prefix}{section}_{key}".upper()
            if env_key in environ:
                values[key] = yaml.safe_load(environ[env_key])
    return data


def _require_positive(cfg: dict[str, Any], section: str, key: str, allow_zero: bool = False) -> None:
    value = cfg[section].get(key)
    if value is None:
        raise ConfigError(f"{section}.{key} is required")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{section}.{key} must be numeric, got {value!r}") from exc
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigError(f"{section}.{key} must be {'>= 0' if allow_zero else '> 0'}, got {value!r}")


def validate(cfg: dict[str, Any]) -> None:
    """Fail fast on a malformed configuration."""
    for section in REQUIRED_SECTIONS:
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"missing config section: {section}")

    _require_positive(cfg, "book", "target_orders_per_side", allow_zero=True)
    _require_positive(cfg, "book", "base_spread")
    _require_positive(cfg, "book", "spread_step", allow_zero=True)
    _require_positive(cfg, "guard", "fee_buffer", allow_zero=True)
    _require_positive(cfg, "guard", "min_free", allow_zero=True)
    _require_positive(cfg, "guard", "order_size_percent")
    _require_positive(cfg, "guard", "max_order_notional")
    _require_positive(cfg, "tracker", "poll_batch_size")
    _require_positive(cfg, "engine", "placement_interval_seconds")
    _require_positive(cfg, "engine", "poll_interval_seconds")

    if float(cfg["guard"]["order_size_percent"]) > 1.0:
        raise ConfigError("guard.order_size_percent must be <= 1.0")
    if float(cfg["book"]["base_spread"]) >= 1.0:
        raise ConfigError("book.base_spread must be < 1.0")

    ceiling = cfg["book"].get("max_orders_per_side")
    if ceiling is not None and int(ceiling) < int(cfg["book"]["target_orders_per_side"]):
        raise ConfigError("book.max_orders_per_side must be >= book.target_orders_per_side")

    if cfg["engine"].get("price_source", "mid") not in {"mid", "last"}:
        raise ConfigError("engine.price_source must be 'mid' or 'last'")


@dataclass
class EngineConfig:
    raw: dict[str, Any]

    @classmethod
    def from_yaml(cls, path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        path = Path(path) if path is not None else default_settings_path()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as exc:
            raise ConfigError(f"settings file not found: {path}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"settings file must hold a mapping: {path}")
        return cls.from_dict(data, environ=os.environ if environ is None else environ)

    @classmethod
    def from_dict(cls, data: dict[str, Any], environ: Mapping[str, str] | None = None) -> "EngineConfig":
        if environ:
            data = apply_env_overrides(data, environ)
        validate(data)
        return cls(raw=data)

    def section(self, name: str) -> dict[str, Any]:
        return self.raw.get(name) or {}
