"""Core simulation and filtering subpackage."""

from dbpitfalls.core.errors import DegenerateInput, InvalidParameter, TestFailure
from dbpitfalls.core.filters import (
    FILTERS,
    MaximumFilter,
    MeanFilter,
    SecondHighestFilter,
    SiteFilter,
    get_filter,
)
from dbpitfalls.core.simulate import (
    matched_dispersion,
    rnbinom,
    simulate_counts,
    simulate_spiked,
    simulate_with_control,
    subtract_control,
)
from dbpitfalls.core.types import (
    CalibrationCurve,
    Design,
    RetainedSet,
    SimulatedCounts,
    TestResult,
)

__all__ = [
    "CalibrationCurve",
    "DegenerateInput",
    "Design",
    "FILTERS",
    "InvalidParameter",
    "MaximumFilter",
    "MeanFilter",
    "RetainedSet",
    "SecondHighestFilter",
    "SimulatedCounts",
    "SiteFilter",
    "TestFailure",
    "TestResult",
    "get_filter",
    "matched_dispersion",
    "rnbinom",
    "simulate_counts",
    "simulate_spiked",
    "simulate_with_control",
    "subtract_control",
]
