"""Built-in connector defaults and the deep merge that layers user YAML on them."""

from __future__ import annotations

import copy
import functools
from pathlib import Path
from typing import Any

import yaml

from cassandra_sink.config.models import ConnectorConfig

DEFAULTS_DIR = Path(__file__).parent / "defaults"


@functools.cache
def _read_defaults(name: str) -> dict[str, Any]:
    path = DEFAULTS_DIR / f"{name}.yaml"
    if not path.is_file():
        known = ", ".join(sorted(p.stem for p in DEFAULTS_DIR.glob("*.yaml")))
        msg = f"No defaults named '{name}' in {DEFAULTS_DIR} (available: {known})"
        raise FileNotFoundError(msg)
    data: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
    return data


def load_defaults(name: str = "connector") -> dict[str, Any]:
    """Return a private copy of the named defaults mapping."""
    return copy.deepcopy(_read_defaults(name))


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge *overrides* into a copy of *base*.

    Nested mappings merge key by key. Any other value, lists included,
    replaces the default. An explicit ``null`` (an empty YAML section)
    keeps the default.
    """
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if value is None and current is not None:
            continue
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def build_connector_config(
    overrides: dict[str, Any],
    *,
    defaults: str = "connector",
) -> ConnectorConfig:
    """Validate *overrides* layered on top of the named defaults."""
    return ConnectorConfig.model_validate(merge_configs(load_defaults(defaults), overrides))
