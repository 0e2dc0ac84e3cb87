"""Named simulation scenarios, one per differential-binding pitfall."""

from __future__ import annotations

from typing import Any, Callable

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.scenarios.lowcount_norm import LowCountNormConfig, run_lowcount_norm
from dbpitfalls.scenarios.nonstandard_fdr import NonstandardFDRConfig, run_nonstandard_fdr
from dbpitfalls.scenarios.peak_selection import PeakSelectionConfig, run_peak_selection
from dbpitfalls.scenarios.subtract_control import SubtractControlConfig, run_subtract_control

SCENARIOS: dict[str, tuple[type, Callable[..., Any]]] = {
    "peak_selection": (PeakSelectionConfig, run_peak_selection),
    "nonstandard_fdr": (NonstandardFDRConfig, run_nonstandard_fdr),
    "lowcount_norm": (LowCountNormConfig, run_lowcount_norm),
    "subtract_control": (SubtractControlConfig, run_subtract_control),
}


def get_scenario(name: str) -> tuple[type, Callable[..., Any]]:
    key = str(name).strip().lower().replace("-", "_")
    if key not in SCENARIOS:
        raise InvalidParameter(
            f"Unknown scenario '{name}'. Choose from: {', '.join(sorted(SCENARIOS))}."
        )
    return SCENARIOS[key]


__all__ = [
    "SCENARIOS",
    "get_scenario",
    "LowCountNormConfig",
    "NonstandardFDRConfig",
    "PeakSelectionConfig",
    "SubtractControlConfig",
    "run_lowcount_norm",
    "run_nonstandard_fdr",
    "run_peak_selection",
    "run_subtract_control",
]
