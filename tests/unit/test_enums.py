"""Tests for core enumerations."""
from flexeval.core.enums import AggregationKind, ExecutionMode, ProblemType


def test_problem_type_values() -> None:
    assert {p.value for p in ProblemType} == {"classification", "regression", "forecasting"}


def test_aggregation_kind_from_config_type() -> None:
    assert AggregationKind("micro") is AggregationKind.MICRO
    assert AggregationKind("macro") is AggregationKind.MACRO


def test_execution_mode_is_str() -> None:
    assert ExecutionMode.LOCAL == "local"
    assert f"{ExecutionMode.DATAFLOW}" == "dataflow"
