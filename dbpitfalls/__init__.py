"""dbpitfalls public API."""

from dbpitfalls._version import __version__
from dbpitfalls.core.filters import get_filter
from dbpitfalls.core.simulate import simulate_counts
from dbpitfalls.core.types import Design
from dbpitfalls.stats.calibration import calibration_curve
from dbpitfalls.stats.fdr import empirical_sign_fdr
from dbpitfalls.stats.glm import QLFTester


def run_scenario(name: str, config=None, **kwargs):
    """Lazy wrapper so importing the package does not load every scenario."""
    from dbpitfalls.scenarios import get_scenario

    config_cls, runner = get_scenario(name)
    return runner(config or config_cls(), **kwargs)


__all__ = [
    "__version__",
    "Design",
    "QLFTester",
    "calibration_curve",
    "empirical_sign_fdr",
    "get_filter",
    "run_scenario",
    "simulate_counts",
]
