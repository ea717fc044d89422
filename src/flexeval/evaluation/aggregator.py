"""Micro / macro aggregation of per-class classification metrics."""
from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
import structlog

from flexeval.config import Aggregation, MacroAverage, MicroAverage
from flexeval.core.exceptions import InvalidWeight
from flexeval.evaluation.models import (
    AnnotationSpecRef,
    ClassDescriptor,
    ClassIdDescriptor,
    ClassificationEvaluationMetrics,
    ConfidenceMetrics,
    ConfusionMatrix,
    ConfusionMatrixRow,
    TopKDescriptor,
)
from flexeval.evaluation.threshold_sweep import (
    area_under_prc,
    area_under_roc,
    confidence_metrics_from_counts,
)

logger = structlog.get_logger(__name__)

PerClassMetrics = Sequence[tuple[ClassDescriptor, ClassificationEvaluationMetrics]]

_RATE_FIELDS = (
    "recall",
    "precision",
    "false_positive_rate",
    "recall_at1",
    "precision_at1",
    "false_positive_rate_at1",
)
_COUNT_FIELDS = (
    "true_positive_count",
    "false_positive_count",
    "false_negative_count",
    "true_negative_count",
    "true_positive_count_at1",
    "false_positive_count_at1",
    "false_negative_count_at1",
    "true_negative_count_at1",
)


def validate_class_weights(
    aggregation: Aggregation,
    labels: Sequence[str],
    class_ids: Sequence[str],
) -> None:
    """Check that every weight key indexes a configured class id.

    Raises:
        InvalidWeight: On an unknown key or a negative / non-finite weight.
    """
    if not isinstance(aggregation, MacroAverage):
        return
    for key, weight in aggregation.class_weights.items():
        if not 0 <= key < len(labels) or labels[key] not in class_ids:
            raise InvalidWeight(
                f"Class weight key {key} does not correspond to a configured "
                "class id",
                key=key,
            )
        if not math.isfinite(weight) or weight < 0:
            raise InvalidWeight(
                f"Class weight for key {key} must be finite and non-negative, "
                f"got {weight}",
                key=key,
            )


def class_weight(
    descriptor: ClassDescriptor,
    aggregation: Aggregation,
    labels: Sequence[str],
) -> float:
    """Weight of one binarized problem; top-k problems weigh 1."""
    if not isinstance(aggregation, MacroAverage):
        return 1.0
    match descriptor:
        case ClassIdDescriptor(class_id=class_id):
            return aggregation.class_weights.get(labels.index(class_id), 1.0)
        case TopKDescriptor():
            return 1.0


def sum_confusion_matrices(matrices: Sequence[ConfusionMatrix]) -> ConfusionMatrix:
    """Cell-wise sum, aligning classes by display name."""
    vocab: dict[str, None] = {}
    for matrix in matrices:
        for name in matrix.class_names:
            vocab.setdefault(name, None)
    names = list(vocab)
    index = {name: i for i, name in enumerate(names)}
    total = np.zeros((len(names), len(names)), dtype=np.int64)
    for matrix in matrices:
        positions = [index[name] for name in matrix.class_names]
        for i, row in enumerate(matrix.rows):
            for j, count in enumerate(row.data_item_counts):
                total[positions[i], positions[j]] += count
    return ConfusionMatrix(
        annotation_specs=[
            AnnotationSpecRef(id=str(i), display_name=name)
            for i, name in enumerate(names)
        ],
        rows=[ConfusionMatrixRow(data_item_counts=row.tolist()) for row in total],
    )


def _n_items(metrics: ClassificationEvaluationMetrics) -> int:
    if not metrics.confidence_metrics:
        return 0
    first = metrics.confidence_metrics[0]
    return sum(getattr(first, name) for name in _COUNT_FIELDS[:4])


def _summed_counts(entries: Sequence[ConfidenceMetrics]) -> dict[str, int]:
    return {name: sum(getattr(e, name) for e in entries) for name in _COUNT_FIELDS}


def _micro(per_class: PerClassMetrics) -> ClassificationEvaluationMetrics:
    metrics = [m for _, m in per_class]
    curve: list[ConfidenceMetrics] = []
    for entries in zip(*(m.confidence_metrics for m in metrics), strict=True):
        counts = _summed_counts(entries)
        curve.append(
            confidence_metrics_from_counts(
                entries[0].confidence_threshold,
                [counts[name] for name in _COUNT_FIELDS[:4]],
                [counts[name] for name in _COUNT_FIELDS[4:]],
                max_predictions=entries[0].max_predictions,
            )
        )
    sizes = [_n_items(m) for m in metrics]
    pooled = sum(sizes)
    loss = (
        sum(n * m.log_loss for n, m in zip(sizes, metrics, strict=True)) / pooled
        if pooled
        else 0.0
    )
    return ClassificationEvaluationMetrics(
        au_prc=area_under_prc(curve),
        au_roc=area_under_roc(curve),
        log_loss=loss,
        confidence_metrics=curve,
        confusion_matrix=sum_confusion_matrices([m.confusion_matrix for m in metrics]),
    )


def _weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    total = float(sum(weights))
    if total <= 0:
        return 0.0
    return float(sum(v * w for v, w in zip(values, weights, strict=True)) / total)


def _macro(
    per_class: PerClassMetrics,
    weights: Sequence[float],
) -> ClassificationEvaluationMetrics:
    metrics = [m for _, m in per_class]
    curve: list[ConfidenceMetrics] = []
    for entries in zip(*(m.confidence_metrics for m in metrics), strict=True):
        rates = {
            name: _weighted_mean([getattr(e, name) for e in entries], weights)
            for name in _RATE_FIELDS
        }
        curve.append(
            ConfidenceMetrics(
                confidence_threshold=entries[0].confidence_threshold,
                max_predictions=entries[0].max_predictions,
                f1_score=_weighted_mean([e.f1_score for e in entries], weights),
                f1_score_at1=_weighted_mean([e.f1_score_at1 for e in entries], weights),
                **rates,
                **_summed_counts(entries),
            )
        )
    return ClassificationEvaluationMetrics(
        au_prc=_weighted_mean([m.au_prc for m in metrics], weights),
        au_roc=_weighted_mean([m.au_roc for m in metrics], weights),
        log_loss=_weighted_mean([m.log_loss for m in metrics], weights),
        confidence_metrics=curve,
        confusion_matrix=sum_confusion_matrices([m.confusion_matrix for m in metrics]),
    )


def aggregate(
    per_class: PerClassMetrics,
    aggregation: Aggregation,
    labels: Sequence[str] = (),
) -> ClassificationEvaluationMetrics:
    """Combine per-class metrics into one summary.

    Micro averaging pools the raw counts of every class before computing
    rates (every example counts equally). Macro averaging computes each
    class's rates independently and takes their weighted mean (every class
    counts equally before weighting).

    Args:
        per_class: (descriptor, metrics) for each binarized problem, all
            swept over the same threshold grid.
        aggregation: Micro or macro selector.
        labels: Label vocabulary that macro weight keys index into.

    Returns:
        Aggregated ClassificationEvaluationMetrics.
    """
    if not per_class:
        return ClassificationEvaluationMetrics()
    match aggregation:
        case MicroAverage():
            result = _micro(per_class)
        case MacroAverage():
            weights = [class_weight(d, aggregation, labels) for d, _ in per_class]
            result = _macro(per_class, weights)
    logger.debug("aggregated", kind=aggregation.type, n_classes=len(per_class))
    return result


