"""Exception types shared by the simulation harness."""

from __future__ import annotations


class InvalidParameter(ValueError):
    """Malformed simulation or filter parameters; fatal to the current run."""


class DegenerateInput(ValueError):
    """Nothing left to evaluate (no retained sites, no null p-values, ...)."""


class TestFailure(RuntimeError):
    """The differential test could not produce p-values for a repetition."""

    __test__ = False
