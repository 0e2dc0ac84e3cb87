"""Configuration loading utilities for dbpitfalls scenarios."""

from __future__ import annotations

import json
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping, TypeVar

from dbpitfalls.core.errors import InvalidParameter

C = TypeVar("C")


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a scenario config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def apply_overrides(config: C, overrides: Mapping[str, Any] | None) -> C:
    """Return a copy of a frozen config dataclass with `overrides` applied.

    Keys are matched against the dataclass fields; unknown keys are rejected
    rather than ignored. JSON lists are converted to tuples for tuple fields.
    """
    if not overrides:
        return config
    known = {f.name for f in fields(config)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise InvalidParameter(
            f"Unknown config key(s) for {type(config).__name__}: {', '.join(unknown)}. "
            f"Allowed: {', '.join(sorted(known))}."
        )
    clean = {k: tuple(v) if isinstance(v, list) else v for k, v in overrides.items()}
    return replace(config, **clean)
