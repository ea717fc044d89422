"""Tests for the result assembler."""
from __future__ import annotations

import pytest

from flexeval.core.enums import ProblemType
from flexeval.evaluation.assembler import SliceResult, assemble
from flexeval.evaluation.models import (
    OVERALL_SLICE,
    BytesValue,
    ClassificationEvaluationMetrics,
    RegressionEvaluationMetrics,
    SlicedMetrics,
    SliceFeature,
    SliceKey,
)

EAST = SliceKey(features=(SliceFeature(feature_name="region", value=BytesValue(value=b"east")),))


def _result(position: int, key: SliceKey, n_entries: int = 1) -> SliceResult:
    entries = tuple(
        SlicedMetrics(slice_key=key, spec_index=i, metrics=RegressionEvaluationMetrics())
        for i in range(n_entries)
    )
    return SliceResult(position=position, slice_key=key, entries=entries)


def test_orders_by_position() -> None:
    result = assemble(
        "run", [_result(1, EAST, 2), _result(0, OVERALL_SLICE)], ProblemType.REGRESSION
    )
    assert result.name == "run"
    assert [e.slice_key for e in result.sliced_metrics] == [OVERALL_SLICE, EAST, EAST]
    assert [e.spec_index for e in result.sliced_metrics] == [0, 0, 1]


def test_duplicate_slice_rejected() -> None:
    with pytest.raises(ValueError):
        assemble("run", [_result(0, EAST), _result(1, EAST)], ProblemType.REGRESSION)


def test_wrong_kind_rejected() -> None:
    entry = SlicedMetrics(metrics=ClassificationEvaluationMetrics())
    bad = SliceResult(position=0, slice_key=OVERALL_SLICE, entries=(entry,))
    with pytest.raises(ValueError):
        assemble("run", [bad], ProblemType.REGRESSION)


def test_entry_under_wrong_slice_rejected() -> None:
    entry = SlicedMetrics(slice_key=EAST, metrics=RegressionEvaluationMetrics())
    bad = SliceResult(position=0, slice_key=OVERALL_SLICE, entries=(entry,))
    with pytest.raises(ValueError):
        assemble("run", [bad], ProblemType.REGRESSION)
