"""Core enumerations for flexeval."""
from enum import StrEnum


class ProblemType(StrEnum):
    """Kind of evaluation selected from the data spec."""

    CLASSIFICATION = "classification"
    REGRESSION = "regression"
    FORECASTING = "forecasting"


class AggregationKind(StrEnum):
    """How per-class metrics are combined."""

    MICRO = "micro"
    MACRO = "macro"


class ExecutionMode(StrEnum):
    """Where the surrounding orchestration runs the evaluation.

    The engine itself always runs in-process; ``DATAFLOW`` is passed through
    for the external batch runner.
    """

    LOCAL = "local"
    DATAFLOW = "dataflow"
