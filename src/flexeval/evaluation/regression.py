"""Closed-form regression and forecasting metrics.

Pure functions over (label, prediction, weight) arrays. Undefined values
are reported as ``None`` and division by a zero ground truth as ``+inf``;
neither aborts the evaluation.
"""
from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from flexeval.core.exceptions import MalformedColumnError
from flexeval.data.batch import ResolvedColumns
from flexeval.evaluation.models import (
    ForecastingEvaluationMetrics,
    QuantileMetricsEntry,
    RegressionEvaluationMetrics,
)

# Relative tolerance for "near-constant" ground truth in R².
_CONSTANT_TOL = 1e-12


@dataclass(frozen=True)
class RegressionRows:
    """Numeric inputs of one (slice, model) pair.

    Attributes:
        labels: Ground truth; NaN where missing.
        predictions: Point predictions ``(n,)`` or quantile predictions
            ``(n, n_quantiles)``; NaN where missing.
        weights: Example weights.
    """

    labels: NDArray[np.float64]
    predictions: NDArray[np.float64]
    weights: NDArray[np.float64]

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    def take(self, indices: Sequence[int] | NDArray[np.int64]) -> RegressionRows:
        idx = np.asarray(indices, dtype=np.int64)
        return RegressionRows(
            labels=self.labels[idx],
            predictions=self.predictions[idx],
            weights=self.weights[idx],
        )


def _to_float(value: Any, row: int, what: str) -> float:
    if value is None:
        return math.nan
    if isinstance(value, list | tuple) and len(value) == 1:
        value = value[0]
    if isinstance(value, bool) or not isinstance(value, int | float | np.number):
        raise MalformedColumnError(f"Row {row}: {what} must be numeric, got {value!r}")
    return float(value)


def prepare_regression(columns: ResolvedColumns) -> RegressionRows:
    """Numeric label and point-prediction arrays.

    Raises:
        MalformedColumnError: If a label or prediction is not numeric.
    """
    labels = [_to_float(v, i, "label") for i, v in enumerate(columns.labels)]
    predictions = [_to_float(v, i, "prediction") for i, v in enumerate(columns.scores)]
    return RegressionRows(
        labels=np.asarray(labels, dtype=np.float64),
        predictions=np.asarray(predictions, dtype=np.float64),
        weights=np.asarray(columns.weights, dtype=np.float64),
    )


def prepare_forecasting(columns: ResolvedColumns, n_quantiles: int) -> RegressionRows:
    """Numeric label array and an ``(n, n_quantiles)`` prediction matrix.

    Raises:
        MalformedColumnError: If a prediction vector has the wrong length
            or a value is not numeric.
    """
    labels = [_to_float(v, i, "label") for i, v in enumerate(columns.labels)]
    matrix = np.full((len(columns), n_quantiles), np.nan, dtype=np.float64)
    for i, value in enumerate(columns.scores):
        if value is None:
            continue
        if not isinstance(value, list | tuple) or len(value) != n_quantiles:
            raise MalformedColumnError(
                f"Row {i}: expected {n_quantiles} quantile predictions, got {value!r}"
            )
        matrix[i] = [_to_float(v, i, "quantile prediction") for v in value]
    return RegressionRows(
        labels=np.asarray(labels, dtype=np.float64),
        predictions=matrix,
        weights=np.asarray(columns.weights, dtype=np.float64),
    )


def point_metrics(
    labels: NDArray[np.float64],
    predictions: NDArray[np.float64],
    weights: NDArray[np.float64],
) -> dict[str, float | None]:
    """Weighted point-error statistics.

    Rows with a missing label or prediction are skipped. All values are
    ``None`` when no rows (or no weight) remain.

    Returns:
        Dict keyed by the RegressionEvaluationMetrics field names.
    """
    keep = np.isfinite(labels) & np.isfinite(predictions)
    y, y_hat, w = labels[keep], predictions[keep], weights[keep]
    total = float(np.sum(w))
    names = (
        "root_mean_squared_error",
        "mean_absolute_error",
        "mean_absolute_percentage_error",
        "r_squared",
        "root_mean_squared_log_error",
        "weighted_absolute_percentage_error",
        "root_mean_squared_percentage_error",
    )
    if y.size == 0 or total <= 0:
        return dict.fromkeys(names)

    error = y - y_hat
    abs_error = np.abs(error)
    squared = float(np.sum(w * error**2))
    has_zero_truth = bool(np.any(y == 0))

    if has_zero_truth:
        mape: float | None = math.inf
        rmspe: float | None = math.inf
    else:
        mape = float(np.sum(w * abs_error / np.abs(y)) / total)
        rmspe = math.sqrt(float(np.sum(w * (error / y) ** 2)) / total)

    mean = float(np.sum(w * y)) / total
    ss_tot = float(np.sum(w * (y - mean) ** 2))
    scale = max(float(np.sum(w * y**2)), 1.0)
    r_squared = None if ss_tot <= _CONSTANT_TOL * scale else 1.0 - squared / ss_tot

    if np.any(y < 0) or np.any(y_hat < 0):
        rmsle = None
    else:
        log_error = np.log1p(y_hat) - np.log1p(y)
        rmsle = math.sqrt(float(np.sum(w * log_error**2)) / total)

    abs_total = float(np.sum(w * abs_error))
    abs_truth = float(np.sum(w * np.abs(y)))
    if abs_truth > 0:
        wape: float | None = abs_total / abs_truth
    else:
        wape = math.inf if abs_total > 0 else None

    return {
        "root_mean_squared_error": math.sqrt(squared / total),
        "mean_absolute_error": abs_total / total,
        "mean_absolute_percentage_error": mape,
        "r_squared": r_squared,
        "root_mean_squared_log_error": rmsle,
        "weighted_absolute_percentage_error": wape,
        "root_mean_squared_percentage_error": rmspe,
    }


def evaluate_regression(rows: RegressionRows) -> RegressionEvaluationMetrics:
    """Regression metrics for one slice."""
    return RegressionEvaluationMetrics(
        **point_metrics(rows.labels, rows.predictions, rows.weights)
    )


def quantile_metrics(
    labels: NDArray[np.float64],
    predictions: NDArray[np.float64],
    weights: NDArray[np.float64],
    quantile: float,
) -> QuantileMetricsEntry:
    """Scaled pinball loss and observed quantile for one predicted quantile.

    The pinball loss is normalised by the weighted mean |y|; when that mean is
    0 the scaled loss is ``+inf`` (or ``None`` if the loss is 0 as well).
    """
    keep = np.isfinite(labels) & np.isfinite(predictions)
    y, y_q, w = labels[keep], predictions[keep], weights[keep]
    total = float(np.sum(w))
    if y.size == 0 or total <= 0:
        return QuantileMetricsEntry(quantile=quantile)

    diff = y - y_q
    pinball = np.maximum(quantile * diff, (quantile - 1.0) * diff)
    mean_loss = float(np.sum(w * pinball)) / total
    mean_abs = float(np.sum(w * np.abs(y))) / total
    if mean_abs > 0:
        scaled: float | None = mean_loss / mean_abs
    else:
        scaled = math.inf if mean_loss > 0 else None

    observed = float(np.sum(w * (y < y_q))) / total
    return QuantileMetricsEntry(
        quantile=quantile, scaled_pinball_loss=scaled, observed_quantile=observed
    )


def evaluate_forecasting(
    rows: RegressionRows,
    quantiles: Sequence[float],
    quantile_index: int,
) -> ForecastingEvaluationMetrics:
    """Forecasting metrics for one slice.

    Args:
        rows: Labels with an ``(n, len(quantiles))`` prediction matrix.
        quantiles: Quantile of each prediction column.
        quantile_index: Column used for point metrics; -1 disables them.

    Returns:
        ForecastingEvaluationMetrics with one quantile entry per quantile.
    """
    entries = [
        quantile_metrics(rows.labels, rows.predictions[:, j], rows.weights, float(q))
        for j, q in enumerate(quantiles)
    ]
    point: dict[str, float | None] = {}
    if quantile_index >= 0:
        point = point_metrics(
            rows.labels, rows.predictions[:, quantile_index], rows.weights
        )
    return ForecastingEvaluationMetrics(quantile_metrics=entries, **point)
