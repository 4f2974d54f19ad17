"""Connector YAML loading with ``${VAR}`` interpolation."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cassandra_sink.config.defaults import build_connector_config
from cassandra_sink.config.models import ConnectorConfig

# ${NAME}, ${NAME:-fallback} or ${NAME:?message}; "\}" escapes a brace.
_REFERENCE = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"(?:(?P<op>:-|:\?)(?P<arg>(?:[^}\\]|\\.)*))?\}"
)


def _interpolate(text: str, env: Mapping[str, str]) -> str:
    def _sub(match: re.Match[str]) -> str:
        name, op, arg = match.group("name", "op", "arg")
        if name in env:
            return env[name]
        if op == ":-":
            return arg.replace("\\}", "}")
        reason = arg.replace("\\}", "}") if op == ":?" and arg else "not set"
        msg = f"Environment variable '{name}': {reason}"
        raise ValueError(msg)

    return _REFERENCE.sub(_sub, text)


def resolve_env_vars(data: Any, env: Mapping[str, str] | None = None) -> Any:
    """Interpolate environment references in every string of *data*."""
    env = os.environ if env is None else env
    if isinstance(data, str):
        return _interpolate(data, env)
    if isinstance(data, list):
        return [resolve_env_vars(v, env) for v in data]
    if isinstance(data, dict):
        return {key: resolve_env_vars(v, env) for key, v in data.items()}
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a YAML mapping from *path* with env references resolved."""
    source = Path(path)
    if not source.is_file():
        msg = f"Config file not found: {source}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(source.read_text())
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark
        where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
        msg = f"{source}{where}: {exc.problem or exc}"
        raise ValueError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"{source}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"{source}: top-level YAML must be a mapping, not {type(data).__name__}"
        raise TypeError(msg)
    resolved: dict[str, Any] = resolve_env_vars(data)
    return resolved


def load_connector_config(
    path: str | Path,
    *,
    defaults: str = "connector",
) -> ConnectorConfig:
    """Read *path*, layer it over the named defaults and validate."""
    overrides = load_yaml(path)
    try:
        return build_connector_config(overrides, defaults=defaults)
    except ValidationError as exc:
        msg = f"Invalid connector config ({path}):\n{exc}"
        raise ValueError(msg) from exc
