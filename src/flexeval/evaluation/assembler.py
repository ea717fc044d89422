"""Collect per-slice results into the ordered output collection."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from flexeval.core.enums import ProblemType
from flexeval.evaluation.models import (
    ClassificationEvaluationMetrics,
    ForecastingEvaluationMetrics,
    RegressionEvaluationMetrics,
    SlicedMetrics,
    SlicedMetricsSet,
    SliceKey,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SliceResult:
    """Entries computed for one slice.

    Attributes:
        position: Index of the slice in slicer order.
        slice_key: Identity of the slice.
        entries: Entries in (spec, model, descriptor) order.
    """

    position: int
    slice_key: SliceKey
    entries: tuple[SlicedMetrics, ...]


def _kind_matches(entry: SlicedMetrics, problem_type: ProblemType) -> bool:
    match entry.metrics:
        case ClassificationEvaluationMetrics():
            return problem_type is ProblemType.CLASSIFICATION
        case RegressionEvaluationMetrics():
            return problem_type is ProblemType.REGRESSION
        case ForecastingEvaluationMetrics():
            return problem_type is ProblemType.FORECASTING
    return False


def assemble(
    name: str,
    results: Iterable[SliceResult],
    problem_type: ProblemType,
) -> SlicedMetricsSet:
    """Order slice results and flatten them into a SlicedMetricsSet.

    Args:
        name: Evaluation name.
        results: Per-slice results in any order (e.g. worker completion order).
        problem_type: Kind every entry's metrics must have.

    Returns:
        SlicedMetricsSet in slicer order.

    Raises:
        ValueError: If a slice appears twice or an entry carries metrics of
            the wrong kind.
    """
    ordered = sorted(results, key=lambda r: r.position)
    seen: set[SliceKey] = set()
    entries: list[SlicedMetrics] = []
    for result in ordered:
        if result.slice_key in seen:
            raise ValueError(f"Slice '{result.slice_key}' assembled twice")
        seen.add(result.slice_key)
        for entry in result.entries:
            if entry.slice_key != result.slice_key:
                raise ValueError(
                    f"Entry for slice '{entry.slice_key}' filed under "
                    f"'{result.slice_key}'"
                )
            if not _kind_matches(entry, problem_type):
                raise ValueError(
                    f"Slice '{entry.slice_key}' has {entry.metrics.kind} metrics "
                    f"in a {problem_type} evaluation"
                )
            entries.append(entry)
    logger.debug("results_assembled", n_slices=len(seen), n_entries=len(entries))
    return SlicedMetricsSet(name=name, sliced_metrics=entries)
