from __future__ import annotations

import json
import os
from pathlib import Path

os.environ.setdefault("MPLCONFIGDIR", "/tmp/mpl-test")

from dbpitfalls.cli import main


def _quick_config(tmp_path: Path) -> Path:
    cfg = tmp_path / "quick.json"
    cfg.write_text(json.dumps({"n_sites": 2000}), encoding="utf-8")
    return cfg


def test_list_prints_scenarios_and_filters(capsys):
    assert main(["list"]) == 0
    out = capsys.readouterr().out
    assert "peak_selection" in out
    assert "union -> maximum" in out
    assert "statsmodels (StatsmodelsQLTester)" in out


def test_run_writes_tables_and_log(tmp_path: Path, capsys):
    outdir = tmp_path / "out"
    rc = main(
        [
            "run",
            "peak_selection",
            "--config",
            str(_quick_config(tmp_path)),
            "--filter",
            "mean",
            "--n-reps",
            "2",
            "--seed",
            "3",
            "--outdir",
            str(outdir),
            "--no-plots",
        ]
    )
    assert rc == 0
    assert (outdir / "tables" / "peak_selection_per_rep.csv").exists()
    assert (outdir / "tables" / "peak_selection_summary.csv").exists()
    assert (outdir / "logs" / "dbpitfalls.log").exists()
    saved = json.loads((outdir / "peak_selection_config.json").read_text(encoding="utf-8"))
    assert saved["config"]["filter"] == "mean"
    assert saved["config"]["seed"] == 3
    assert not (outdir / "figures").exists()
    assert "n_failed=0" in capsys.readouterr().out


def test_run_with_plots(tmp_path: Path):
    outdir = tmp_path / "out"
    rc = main(
        [
            "run",
            "subtract_control",
            "--config",
            str(_quick_config(tmp_path)),
            "--n-reps",
            "2",
            "--outdir",
            str(outdir),
        ]
    )
    assert rc == 0
    assert (outdir / "figures" / "subtract_control_calibration.png").exists()
    assert (outdir / "figures" / "subtract_control_null_pvalues.png").exists()


def test_invalid_parameters_exit_with_code_two(tmp_path: Path, capsys):
    rc = main(["run", "lowcount_norm", "--filter", "mean", "--outdir", str(tmp_path)])
    assert rc == 2
    assert "Unknown config key" in capsys.readouterr().err
    assert main(["run", "no_such_scenario", "--outdir", str(tmp_path)]) == 2


def test_unreadable_config_files_exit_with_code_two(tmp_path: Path, capsys):
    missing = tmp_path / "missing.json"
    assert main(["run", "peak_selection", "--config", str(missing), "--outdir", str(tmp_path)]) == 2
    assert "Config file not found" in capsys.readouterr().err

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert main(["run", "peak_selection", "--config", str(broken), "--outdir", str(tmp_path)]) == 2
    assert "Invalid JSON" in capsys.readouterr().err

    wrong_suffix = tmp_path / "quick.yaml"
    wrong_suffix.write_text("n_sites: 10", encoding="utf-8")
    assert main(["run", "peak_selection", "--config", str(wrong_suffix), "--outdir", str(tmp_path)]) == 2
    assert "Unsupported config format" in capsys.readouterr().err
