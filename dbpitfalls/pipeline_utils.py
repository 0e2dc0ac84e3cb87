"""Shared helpers for dbpitfalls command-line runs."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from dbpitfalls.harness.contracts import ScenarioSummary
from dbpitfalls.utils import atomic_write_csv, ensure_dir, write_json


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def write_summary_tables(summary: ScenarioSummary, outdir: Path) -> dict[str, Path]:
    """Write every table of a scenario summary as CSV under `outdir/tables`."""
    table_dir = ensure_dir(outdir / "tables")
    written: dict[str, Path] = {}
    frames: dict[str, pd.DataFrame] = {
        "per_rep": summary.per_rep,
        "summary": summary.summary,
        "status": summary.status,
        "calibration": summary.calibration,
    }
    frames.update({f"extra_{k}": v for k, v in summary.tables.items()})
    for name, df in frames.items():
        if df is None or df.empty:
            continue
        written[name] = atomic_write_csv(table_dir / f"{summary.scenario}_{name}.csv", df)
    written["config"] = write_json(
        outdir / f"{summary.scenario}_config.json",
        {
            "scenario": summary.scenario,
            "n_reps": summary.n_reps,
            "n_failed": summary.n_failed,
            "config": summary.config,
        },
    )
    return written
