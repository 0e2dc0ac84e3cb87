"""Repetition harness: seeding, parallel execution and aggregation."""

from dbpitfalls.harness.contracts import RepetitionResult, RepetitionSpec, ScenarioSummary
from dbpitfalls.harness.runner import aggregate, make_specs, run_repetitions
from dbpitfalls.harness.seeding import rep_seeds, rng_from_seed, stable_seed

__all__ = [
    "RepetitionResult",
    "RepetitionSpec",
    "ScenarioSummary",
    "aggregate",
    "make_specs",
    "run_repetitions",
    "rep_seeds",
    "rng_from_seed",
    "stable_seed",
]
