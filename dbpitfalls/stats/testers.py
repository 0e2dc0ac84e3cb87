"""Named differential testers selectable from configs and the command line."""

from __future__ import annotations

from dbpitfalls.core.errors import InvalidParameter
from dbpitfalls.stats.glm import DifferentialTester, QLFTester
from dbpitfalls.stats.glm_statsmodels import StatsmodelsQLTester

TESTERS: dict[str, type] = {
    "qlf": QLFTester,
    "statsmodels": StatsmodelsQLTester,
}


def get_tester(name: str) -> DifferentialTester:
    key = str(name).strip().lower()
    if key not in TESTERS:
        raise InvalidParameter(
            f"Unknown tester '{name}'. Choose from: {', '.join(sorted(TESTERS))}."
        )
    return TESTERS[key]()
