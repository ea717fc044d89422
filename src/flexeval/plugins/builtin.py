"""Built-in metric plugins registered under the ``flexeval.plugins`` path."""
from __future__ import annotations

from typing import Any, ClassVar, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict

from flexeval.data.batch import ResolvedColumns
from flexeval.evaluation.regression import prepare_regression
from flexeval.plugins.base import MetricPlugin
from flexeval.plugins.registry import register_metric

MODULE_PATH = "flexeval.plugins"

# sklearn.metrics function name -> accepts sample_weight
SKLEARN_REGRESSION_METRICS: dict[str, bool] = {
    "mean_squared_error": True,
    "root_mean_squared_error": True,
    "mean_absolute_error": True,
    "median_absolute_error": True,
    "mean_absolute_percentage_error": True,
    "mean_squared_log_error": True,
    "r2_score": True,
    "explained_variance_score": True,
    "max_error": False,
}


def _finite_rows(columns: ResolvedColumns) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    rows = prepare_regression(columns)
    keep = np.isfinite(rows.labels) & np.isfinite(rows.predictions)
    return rows.labels[keep], rows.predictions[keep], rows.weights[keep]


@register_metric(MODULE_PATH, "ExampleCount")
class ExampleCount(MetricPlugin):
    """Number of rows in the slice."""

    def compute(self, columns: ResolvedColumns) -> int:
        return len(columns)


@register_metric(MODULE_PATH, "WeightedExampleCount")
class WeightedExampleCount(MetricPlugin):
    """Sum of example weights in the slice."""

    def compute(self, columns: ResolvedColumns) -> float:
        return float(np.sum(columns.weights))


@register_metric(MODULE_PATH, "MeanLabel")
class MeanLabel(MetricPlugin):
    """Weighted mean of numeric labels; ``None`` when no label is set."""

    def compute(self, columns: ResolvedColumns) -> float | None:
        values = []
        weights = []
        for label, weight in zip(columns.labels, columns.weights, strict=True):
            if label is None:
                continue
            if isinstance(label, bool):
                label = int(label)
            values.append(float(label))
            weights.append(weight)
        if not values or sum(weights) <= 0:
            return None
        return float(np.average(values, weights=weights))


class _MeanPredictionParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Position within vector-valued scores; ignored for scalar scores.
    index: int = 0


@register_metric(MODULE_PATH, "MeanPrediction")
class MeanPrediction(MetricPlugin):
    """Weighted mean of predicted scores.

    Vector scores (per-class scores, quantile predictions) are read at the
    configured ``index``.
    """

    params_model: ClassVar[type[BaseModel]] = _MeanPredictionParams

    def compute(self, columns: ResolvedColumns) -> float | None:
        index = self.params.index  # type: ignore[attr-defined]
        values = []
        weights = []
        for score, weight in zip(columns.scores, columns.weights, strict=True):
            if score is None:
                continue
            if isinstance(score, list | tuple):
                score = score[index]
            values.append(float(score))
            weights.append(weight)
        if not values or sum(weights) <= 0:
            return None
        return float(np.average(values, weights=weights))


class _SklearnParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal[
        "mean_squared_error",
        "root_mean_squared_error",
        "mean_absolute_error",
        "median_absolute_error",
        "mean_absolute_percentage_error",
        "mean_squared_log_error",
        "r2_score",
        "explained_variance_score",
        "max_error",
    ]
    use_weights: bool = True


@register_metric(MODULE_PATH, "SklearnMetric")
class SklearnMetric(MetricPlugin):
    """A scikit-learn regression metric over labels and point predictions.

    Example config: ``{"function": "median_absolute_error"}``.
    """

    params_model: ClassVar[type[BaseModel]] = _SklearnParams

    def compute(self, columns: ResolvedColumns) -> Any:
        from sklearn import metrics as sk_metrics  # noqa: PLC0415

        name = self.params.function  # type: ignore[attr-defined]
        y_true, y_pred, weights = _finite_rows(columns)
        if y_true.size == 0:
            return None
        func = getattr(sk_metrics, name)
        if self.params.use_weights and SKLEARN_REGRESSION_METRICS[name]:  # type: ignore[attr-defined]
            return float(func(y_true, y_pred, sample_weight=weights))
        return float(func(y_true, y_pred))
