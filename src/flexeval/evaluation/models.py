"""Evaluation output data models for flexeval.

Pydantic models for slice identities, per-threshold confidence metrics,
confusion matrices, the three mutually exclusive result kinds
(classification, regression, forecasting) and the sliced-metrics
collection returned by the engine. Every "exactly one of" choice is a
discriminated union so that consumers match on ``kind`` exhaustively.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from flexeval.core.enums import AggregationKind


class _OutputModel(BaseModel):
    # +inf is a meaningful sentinel (MAPE, RMSPE), keep it in JSON.
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")


# ── Slice identity ──────────────────────────────────────────────────


class BytesValue(_OutputModel):
    """Slice value typed as bytes (strings are UTF-8 encoded)."""

    kind: Literal["bytes"] = "bytes"
    value: bytes


class FloatValue(_OutputModel):
    """Slice value typed as a float."""

    kind: Literal["float"] = "float"
    value: float


class Int64Value(_OutputModel):
    """Slice value typed as a 64-bit integer."""

    kind: Literal["int64"] = "int64"
    value: int


SliceValue = Annotated[
    BytesValue | FloatValue | Int64Value, Field(discriminator="kind")
]


class SliceFeature(_OutputModel):
    """One (feature name, value) constraint of a slice."""

    feature_name: str
    value: SliceValue


class SliceKey(_OutputModel):
    """Identity of a slice. No features means the overall slice.

    Attributes:
        features: Constraints in the order their feature specs were given.
    """

    features: tuple[SliceFeature, ...] = ()

    @property
    def is_overall(self) -> bool:
        return not self.features

    @property
    def single_feature(self) -> SliceFeature | None:
        """The only constraint of a single-feature slice, else None."""
        if len(self.features) == 1:
            return self.features[0]
        return None

    def __str__(self) -> str:
        if self.is_overall:
            return "Overall"
        parts = []
        for feature in self.features:
            value: Any = feature.value.value
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            parts.append(f"{feature.feature_name}={value}")
        return ", ".join(parts)


OVERALL_SLICE = SliceKey()


# ── Binarized sub-problems ──────────────────────────────────────────


class ClassIdDescriptor(_OutputModel):
    """One-vs-rest problem for a single class."""

    kind: Literal["class_id"] = "class_id"
    class_id: str


class TopKDescriptor(_OutputModel):
    """Problem "ground truth is within the k highest-scored classes"."""

    kind: Literal["top_k"] = "top_k"
    k: int


ClassDescriptor = Annotated[
    ClassIdDescriptor | TopKDescriptor, Field(discriminator="kind")
]


# ── Classification ─────────────────────────────────────────────────


class ConfidenceMetrics(_OutputModel):
    """Counts and rates at one operating point of the threshold sweep.

    Attributes:
        confidence_threshold: Predictions scoring below this are dropped.
        max_predictions: Cap on predictions per item (uncapped sweep uses
            the largest int32).
        recall: True positive rate.
        precision: Positive predictive value.
        false_positive_rate: fp / (fp + tn).
        f1_score: Harmonic mean of precision and recall.
        recall_at1: Recall using only each item's top prediction.
        precision_at1: Precision using only each item's top prediction.
        false_positive_rate_at1: FPR using only each item's top prediction.
        f1_score_at1: Harmonic mean of precision_at1 and recall_at1.
        true_positive_count: Predicted labels matching ground truth.
        false_positive_count: Predicted labels not matching ground truth.
        false_negative_count: Ground truth labels left unmatched.
        true_negative_count: Labels not predicted that are not ground truth.
        true_positive_count_at1: ``true_positive_count`` for top predictions.
        false_positive_count_at1: ``false_positive_count`` for top predictions.
        false_negative_count_at1: ``false_negative_count`` for top predictions.
        true_negative_count_at1: ``true_negative_count`` for top predictions.
    """

    confidence_threshold: float
    max_predictions: int
    recall: float = 0.0
    precision: float = 0.0
    false_positive_rate: float = 0.0
    f1_score: float = 0.0
    recall_at1: float = 0.0
    precision_at1: float = 0.0
    false_positive_rate_at1: float = 0.0
    f1_score_at1: float = 0.0
    true_positive_count: int = 0
    false_positive_count: int = 0
    false_negative_count: int = 0
    true_negative_count: int = 0
    true_positive_count_at1: int = 0
    false_positive_count_at1: int = 0
    false_negative_count_at1: int = 0
    true_negative_count_at1: int = 0


class AnnotationSpecRef(_OutputModel):
    """A class used as a confusion-matrix row and column."""

    id: str
    display_name: str


class ConfusionMatrixRow(_OutputModel):
    """Counts for one ground-truth class, one entry per predicted class."""

    data_item_counts: list[int]


class ConfusionMatrix(_OutputModel):
    """Square matrix; ``rows[i].data_item_counts[j]`` counts items of true
    class ``annotation_specs[i]`` predicted as ``annotation_specs[j]``.
    """

    annotation_specs: list[AnnotationSpecRef] = Field(default_factory=list)
    rows: list[ConfusionMatrixRow] = Field(default_factory=list)

    @property
    def class_names(self) -> list[str]:
        return [spec.display_name for spec in self.annotation_specs]

    def count(self, true_class: str, predicted_class: str) -> int:
        """Look up one cell by class name."""
        names = self.class_names
        return self.rows[names.index(true_class)].data_item_counts[
            names.index(predicted_class)
        ]


class ClassificationEvaluationMetrics(_OutputModel):
    """Metrics for classification evaluation results.

    Attributes:
        au_prc: Area under the precision-recall curve.
        au_roc: Area under the ROC curve.
        log_loss: Weighted mean negative log-likelihood of the ground truth.
        confidence_metrics: One entry per sweep threshold, ascending.
        confusion_matrix: Counts at the top-1 operating point.
    """

    kind: Literal["classification"] = "classification"
    au_prc: float = 0.0
    au_roc: float = 0.0
    log_loss: float = 0.0
    confidence_metrics: list[ConfidenceMetrics] = Field(default_factory=list)
    confusion_matrix: ConfusionMatrix = Field(default_factory=ConfusionMatrix)

    def at_threshold(self, threshold: float) -> ConfidenceMetrics:
        """Return the confidence metrics entry for ``threshold``.

        Raises:
            KeyError: If the threshold is not on the sweep grid.
        """
        for entry in self.confidence_metrics:
            if abs(entry.confidence_threshold - threshold) < 1e-9:
                return entry
        raise KeyError(threshold)


# ── Regression / forecasting ───────────────────────────────────────


class RegressionEvaluationMetrics(_OutputModel):
    """Metrics for regression evaluation results. ``None`` means undefined."""

    kind: Literal["regression"] = "regression"
    root_mean_squared_error: float | None = None
    mean_absolute_error: float | None = None
    mean_absolute_percentage_error: float | None = None
    r_squared: float | None = None
    root_mean_squared_log_error: float | None = None
    weighted_absolute_percentage_error: float | None = None
    root_mean_squared_percentage_error: float | None = None


class QuantileMetricsEntry(_OutputModel):
    """Accuracy of one predicted quantile.

    Attributes:
        quantile: The quantile for this entry.
        scaled_pinball_loss: Pinball loss normalised by mean |y|.
        observed_quantile: Share of rows whose truth is below the
            prediction; compare with ``quantile``.
    """

    quantile: float
    scaled_pinball_loss: float | None = None
    observed_quantile: float | None = None


class ForecastingEvaluationMetrics(_OutputModel):
    """Metrics for forecasting evaluation results."""

    kind: Literal["forecasting"] = "forecasting"
    root_mean_squared_error: float | None = None
    mean_absolute_error: float | None = None
    mean_absolute_percentage_error: float | None = None
    r_squared: float | None = None
    root_mean_squared_log_error: float | None = None
    weighted_absolute_percentage_error: float | None = None
    root_mean_squared_percentage_error: float | None = None
    quantile_metrics: list[QuantileMetricsEntry] = Field(default_factory=list)


ModelEvaluationMetrics = Annotated[
    ClassificationEvaluationMetrics
    | RegressionEvaluationMetrics
    | ForecastingEvaluationMetrics,
    Field(discriminator="kind"),
]


# ── Plugins and assembled output ───────────────────────────────────


class PluginFailure(_OutputModel):
    """Why a plugin produced no value.

    Attributes:
        error_type: ``UnknownMetric`` or ``InvalidMetricConfig``.
        message: Error detail raised by the plugin.
    """

    error_type: Literal["UnknownMetric", "InvalidMetricConfig"]
    message: str


class PluginMetricResult(_OutputModel):
    """Output slot of one named plugin metric; exactly one field is set."""

    value: Any = None
    error: PluginFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SlicedMetrics(_OutputModel):
    """Metrics for one slice, model and binarized sub-problem.

    Attributes:
        slice_key: Identity of the slice.
        model_name: Model the predictions came from, if named.
        spec_index: Position of the producing metrics spec in the config.
        class_descriptor: Binarized sub-problem, if any.
        aggregation: Averaging applied across classes, if any.
        metrics: Exactly one of classification, regression or forecasting.
        custom_metrics: Plugin results keyed by metric name.
    """

    slice_key: SliceKey = OVERALL_SLICE
    model_name: str | None = None
    spec_index: int = 0
    class_descriptor: ClassDescriptor | None = None
    aggregation: AggregationKind | None = None
    metrics: ModelEvaluationMetrics
    custom_metrics: dict[str, PluginMetricResult] = Field(default_factory=dict)


class SlicedMetricsSet(_OutputModel):
    """All results of one evaluation run, in slice order."""

    name: str = ""
    sliced_metrics: list[SlicedMetrics] = Field(default_factory=list)

    def for_slice(self, slice_key: SliceKey) -> list[SlicedMetrics]:
        """Entries computed for ``slice_key``."""
        return [m for m in self.sliced_metrics if m.slice_key == slice_key]

    @property
    def slice_keys(self) -> list[SliceKey]:
        """Distinct slice keys in output order."""
        seen: dict[SliceKey, None] = {}
        for entry in self.sliced_metrics:
            seen.setdefault(entry.slice_key, None)
        return list(seen)
