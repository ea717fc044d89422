"""Confidence-threshold sweep for classification metrics.

Candidates are sorted by descending score once; cumulative true/false
positive counts along that order give every threshold's counts without
rescanning. A second pass over each item's single best candidate yields the
``@1`` variants. The confusion matrix is computed independently at the
top-1 operating point.
"""
from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import structlog
from numpy.typing import NDArray

from flexeval.evaluation.binarizer import ScoredItems
from flexeval.evaluation.models import (
    AnnotationSpecRef,
    ClassificationEvaluationMetrics,
    ConfidenceMetrics,
    ConfusionMatrix,
    ConfusionMatrixRow,
)

logger = structlog.get_logger(__name__)

CONFIDENCE_THRESHOLDS: tuple[float, ...] = tuple(
    round(0.05 * i, 2) for i in range(20)
) + (0.96, 0.97, 0.98, 0.99)
MAX_PREDICTIONS = 2**31 - 1
_PROB_EPS = 1e-15
NO_PREDICTION = "<no prediction>"


def safe_divide(numerator: float, denominator: float) -> float:
    """Ratio, or 0.0 when the denominator is not positive."""
    return float(numerator) / float(denominator) if denominator > 0 else 0.0


def f1(precision: float, recall: float) -> float:
    """Harmonic mean of precision and recall (0.0 when both are 0)."""
    total = precision + recall
    return 2.0 * precision * recall / total if total > 0 else 0.0


def confidence_metrics_from_counts(
    threshold: float,
    counts: Sequence[int],
    counts_at1: Sequence[int],
    max_predictions: int = MAX_PREDICTIONS,
) -> ConfidenceMetrics:
    """Build one sweep entry from (tp, fp, fn, tn) and their ``@1`` variants."""
    tp, fp, fn, tn = (int(c) for c in counts)
    tp1, fp1, fn1, tn1 = (int(c) for c in counts_at1)
    precision = safe_divide(tp, tp + fp)
    recall = safe_divide(tp, tp + fn)
    precision_at1 = safe_divide(tp1, tp1 + fp1)
    recall_at1 = safe_divide(tp1, tp1 + fn1)
    return ConfidenceMetrics(
        confidence_threshold=threshold,
        max_predictions=max_predictions,
        recall=recall,
        precision=precision,
        false_positive_rate=safe_divide(fp, fp + tn),
        f1_score=f1(precision, recall),
        recall_at1=recall_at1,
        precision_at1=precision_at1,
        false_positive_rate_at1=safe_divide(fp1, fp1 + tn1),
        f1_score_at1=f1(precision_at1, recall_at1),
        true_positive_count=tp,
        false_positive_count=fp,
        false_negative_count=fn,
        true_negative_count=tn,
        true_positive_count_at1=tp1,
        false_positive_count_at1=fp1,
        false_negative_count_at1=fn1,
        true_negative_count_at1=tn1,
    )


def _cumulative_counts(
    scores: NDArray[np.float64],
    positive: NDArray[np.bool_],
    thresholds: NDArray[np.float64],
) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    """(tp, fp) at each threshold for candidates already sorted descending."""
    cum_tp = np.concatenate(([0], np.cumsum(positive, dtype=np.int64)))
    cum_fp = np.concatenate(([0], np.cumsum(~positive, dtype=np.int64)))
    # Number of candidates with score >= t; -scores is ascending.
    cleared = np.searchsorted(-scores, -thresholds, side="right")
    return cum_tp[cleared], cum_fp[cleared]


def _top_candidates(items: ScoredItems) -> NDArray[np.int64]:
    """Index of each item's best candidate (ties by ascending class rank)."""
    if items.item_ids.size == 0:
        return np.empty(0, dtype=np.int64)
    order = np.lexsort((items.rank, -items.scores, items.item_ids))
    grouped = items.item_ids[order]
    first = np.ones(grouped.size, dtype=np.bool_)
    first[1:] = grouped[1:] != grouped[:-1]
    return order[first]


def area_under_roc(curve: Sequence[ConfidenceMetrics]) -> float:
    """Trapezoidal area under the (FPR, recall) points of a sweep."""
    points = sorted(
        {(0.0, 0.0)} | {(m.false_positive_rate, m.recall) for m in curve}
    )
    fpr = np.array([p[0] for p in points])
    tpr = np.array([p[1] for p in points])
    return float(np.trapezoid(tpr, fpr))


def area_under_prc(curve: Sequence[ConfidenceMetrics]) -> float:
    """Trapezoidal area under the (recall, precision) points of a sweep.

    Points are taken from the highest threshold down, so recall never
    decreases. Thresholds with no predictions carry no precision and are
    skipped.
    """
    ordered = sorted(curve, key=lambda m: m.confidence_threshold, reverse=True)
    points = [
        (m.recall, m.precision)
        for m in ordered
        if m.true_positive_count + m.false_positive_count > 0
    ]
    if not points:
        return 0.0
    recall = np.array([0.0] + [p[0] for p in points])
    precision = np.array([points[0][1]] + [p[1] for p in points])
    return float(np.trapezoid(precision, recall))


def log_loss(
    observed_probs: NDArray[np.float64],
    weights: NDArray[np.float64],
) -> float:
    """Weighted mean negative log-likelihood of the observed outcomes.

    Items whose probability is undefined (NaN) are skipped; 0.0 when none
    remain.
    """
    defined = ~np.isnan(observed_probs)
    if not defined.any():
        return 0.0
    probs = np.clip(observed_probs[defined], _PROB_EPS, 1.0 - _PROB_EPS)
    w = weights[defined]
    total = float(np.sum(w))
    if total <= 0:
        return 0.0
    return float(-np.sum(w * np.log(probs)) / total)


def confusion_matrix(items: ScoredItems) -> ConfusionMatrix:
    """Counts of (true class, top-1 predicted class) over the vocabulary.

    Items without any prediction are counted in an extra
    ``NO_PREDICTION`` column, added only when such items have a ground
    truth, so each class row sums to its ground-truth count. An item with
    several ground-truth classes adds one count per class.
    """
    vocab = items.vocabulary
    if any(
        predicted is None and truth
        for truth, predicted in zip(items.truths, items.predicted, strict=True)
    ):
        vocab = (*vocab, NO_PREDICTION)
    index = {name: i for i, name in enumerate(vocab)}
    counts = np.zeros((len(vocab), len(vocab)), dtype=np.int64)
    for truth, predicted in zip(items.truths, items.predicted, strict=True):
        if not truth:
            continue
        column = index[NO_PREDICTION if predicted is None else predicted]
        for name in truth:
            counts[index[name], column] += 1
    return ConfusionMatrix(
        annotation_specs=[
            AnnotationSpecRef(id=str(i), display_name=name)
            for i, name in enumerate(vocab)
        ],
        rows=[ConfusionMatrixRow(data_item_counts=row.tolist()) for row in counts],
    )


class ThresholdSweepEvaluator:
    """Evaluate classification candidates over a fixed threshold grid.

    Args:
        thresholds: Ascending confidence thresholds to sweep.
    """

    def __init__(self, thresholds: Sequence[float] = CONFIDENCE_THRESHOLDS) -> None:
        grid = np.asarray(thresholds, dtype=np.float64)
        if grid.size == 0 or np.any(np.diff(grid) <= 0):
            raise ValueError("Thresholds must be non-empty and strictly ascending.")
        self._thresholds = grid

    @property
    def thresholds(self) -> tuple[float, ...]:
        return tuple(float(t) for t in self._thresholds)

    def sweep(self, items: ScoredItems) -> list[ConfidenceMetrics]:
        """Confidence metrics at every threshold, in ascending order."""
        order = np.argsort(-items.scores, kind="stable")
        tp, fp = _cumulative_counts(
            items.scores[order], items.positive[order], self._thresholds
        )
        fn = items.n_positive_labels - tp
        tn = items.n_negative_candidates - fp

        tops = _top_candidates(items)
        top_order = tops[np.argsort(-items.scores[tops], kind="stable")]
        tp1, fp1 = _cumulative_counts(
            items.scores[top_order], items.positive[top_order], self._thresholds
        )
        fn1 = items.n_positive_labels - tp1
        tn1 = items.n_negative_candidates - fp1

        return [
            confidence_metrics_from_counts(
                float(t), (tp[i], fp[i], fn[i], tn[i]), (tp1[i], fp1[i], fn1[i], tn1[i])
            )
            for i, t in enumerate(self._thresholds)
        ]

    def evaluate(self, items: ScoredItems) -> ClassificationEvaluationMetrics:
        """Full classification metrics for one problem.

        Args:
            items: Candidates of one slice (or one binarized sub-problem).

        Returns:
            ClassificationEvaluationMetrics with the sweep, areas, log loss
            and confusion matrix.
        """
        curve = self.sweep(items)
        metrics = ClassificationEvaluationMetrics(
            au_prc=area_under_prc(curve),
            au_roc=area_under_roc(curve),
            log_loss=log_loss(items.observed_probs, items.weights),
            confidence_metrics=curve,
            confusion_matrix=confusion_matrix(items),
        )
        logger.debug(
            "threshold_sweep_complete",
            n_items=items.n_items,
            n_candidates=int(items.scores.size),
        )
        return metrics
