from __future__ import annotations

import json
from pathlib import Path

import pytest

from dbpitfalls.config import apply_overrides, load_json_config
from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.scenarios import SCENARIOS, NonstandardFDRConfig, PeakSelectionConfig


def test_load_project_configs():
    root = Path(__file__).resolve().parents[1]
    for name, (config_cls, _) in SCENARIOS.items():
        data = load_json_config(root / "configs" / f"{name}_quick.json")
        cfg = apply_overrides(config_cls(), data)
        assert cfg.n_reps == data["n_reps"]


def test_invalid_json_reports_line_and_column(tmp_path: Path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"a": 1,}\n', encoding="utf-8")
    with pytest.raises(ValueError, match=r"line \d+, column \d+"):
        load_json_config(bad)


def test_non_object_json_config_rejected(tmp_path: Path):
    bad = tmp_path / "list.json"
    bad.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError, match="expected JSON object"):
        load_json_config(bad)


def test_non_json_extension_rejected(tmp_path: Path):
    bad = tmp_path / "cfg.yaml"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="Use a .json config file"):
        load_json_config(bad)


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_json_config(tmp_path / "absent.json")


def test_apply_overrides_rejects_unknown_keys():
    with pytest.raises(InvalidParameter, match="Unknown config key"):
        apply_overrides(PeakSelectionConfig(), {"n_site": 10})


def test_apply_overrides_revalidates_and_converts_lists():
    cfg = apply_overrides(NonstandardFDRConfig(), {"fdr_levels": [0.01, 0.2]})
    assert cfg.fdr_levels == (0.01, 0.2)
    with pytest.raises(InvalidParameter):
        apply_overrides(PeakSelectionConfig(), {"filter": "median"})
    assert apply_overrides(PeakSelectionConfig(), {}) == PeakSelectionConfig()
