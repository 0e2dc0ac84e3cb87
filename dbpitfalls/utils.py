"""Shared filesystem helpers for dbpitfalls outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


def ensure_dir(path: str | Path) -> Path:
    """Create a directory if needed and return it as ``Path``."""
    out = Path(path)
    out.mkdir(parents=True, exist_ok=True)
    return out


def _json_default(obj: Any) -> Any:
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: str | Path, payload: dict[str, Any] | list[Any]) -> Path:
    """Write JSON payload to disk."""
    out = Path(path)
    ensure_dir(out.parent)
    out.write_text(
        json.dumps(payload, indent=2, sort_keys=True, default=_json_default), encoding="utf-8"
    )
    return out


def atomic_write_csv(path: str | Path, df: pd.DataFrame) -> Path:
    """Safely write a CSV by replacing a temporary file."""
    out = Path(path)
    ensure_dir(out.parent)
    tmp = out.with_suffix(out.suffix + ".tmp")
    df.to_csv(tmp, index=False)
    tmp.replace(out)
    return out
