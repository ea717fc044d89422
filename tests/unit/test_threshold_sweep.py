"""Tests for the confidence-threshold sweep evaluator."""
from __future__ import annotations

import math

import numpy as np
import pytest
from sklearn.metrics import log_loss as sk_log_loss
from sklearn.metrics import precision_score, recall_score

from flexeval.config import Binarization, DataSpec
from flexeval.data.batch import RecordBatch, resolve_columns
from flexeval.evaluation.binarizer import (
    BinaryProblem,
    binarize,
    prepare_classification,
    score_items,
)
from flexeval.evaluation.models import ClassIdDescriptor
from flexeval.evaluation.threshold_sweep import (
    CONFIDENCE_THRESHOLDS,
    MAX_PREDICTIONS,
    NO_PREDICTION,
    ThresholdSweepEvaluator,
    f1,
    safe_divide,
)


def _binary(labels: list[int], scores: list[float]) -> BinaryProblem:
    return BinaryProblem(
        descriptor=ClassIdDescriptor(class_id="x"),
        labels=np.asarray(labels, dtype=np.int64),
        scores=np.asarray(scores, dtype=np.float64),
        weights=np.ones(len(labels)),
    )


@pytest.fixture
def evaluator() -> ThresholdSweepEvaluator:
    return ThresholdSweepEvaluator()


class TestGrid:
    """Tests for the threshold grid and helpers."""

    def test_grid(self) -> None:
        assert len(CONFIDENCE_THRESHOLDS) == 24
        assert CONFIDENCE_THRESHOLDS[0] == 0.0
        assert CONFIDENCE_THRESHOLDS[10] == 0.5
        assert CONFIDENCE_THRESHOLDS[-5:] == (0.95, 0.96, 0.97, 0.98, 0.99)

    def test_rejects_unsorted_grid(self) -> None:
        with pytest.raises(ValueError):
            ThresholdSweepEvaluator(thresholds=[0.5, 0.1])

    def test_safe_divide_and_f1(self) -> None:
        assert safe_divide(1, 0) == 0.0
        assert safe_divide(1, 4) == 0.25
        assert f1(0.0, 0.0) == 0.0
        assert f1(1.0, 0.5) == pytest.approx(2 / 3)


class TestSweep:
    """Tests for per-threshold counts and rates."""

    def test_dog_cat_scenario(
        self, evaluator: ThresholdSweepEvaluator, dog_cat_batch: RecordBatch,
        classification_data_spec: DataSpec,
    ) -> None:
        """One-vs-rest 'dog' is perfectly separated at 0.5."""
        rows = prepare_classification(
            resolve_columns(dog_cat_batch, classification_data_spec), ["dog", "cat"]
        )
        (problem,) = binarize(rows, Binarization(class_ids=["dog"]))
        metrics = evaluator.evaluate(problem.to_items())
        at_half = metrics.at_threshold(0.5)
        assert (
            at_half.true_positive_count,
            at_half.false_positive_count,
            at_half.false_negative_count,
            at_half.true_negative_count,
        ) == (1, 0, 0, 1)
        assert at_half.precision == 1.0
        assert at_half.recall == 1.0
        assert at_half.max_predictions == MAX_PREDICTIONS

    def test_true_positives_non_increasing(self, evaluator: ThresholdSweepEvaluator) -> None:
        rng = np.random.default_rng(0)
        problem = _binary(
            rng.integers(0, 2, size=200).tolist(), rng.random(200).tolist()
        )
        curve = evaluator.sweep(problem.to_items())
        tp = [m.true_positive_count for m in curve]
        fp = [m.false_positive_count for m in curve]
        assert tp == sorted(tp, reverse=True)
        assert fp == sorted(fp, reverse=True)
        assert [m.confidence_threshold for m in curve] == list(CONFIDENCE_THRESHOLDS)

    @pytest.mark.parametrize("threshold", [0.0, 0.3, 0.5, 0.75, 0.95])
    def test_matches_sklearn(
        self, evaluator: ThresholdSweepEvaluator, threshold: float
    ) -> None:
        rng = np.random.default_rng(42)
        labels = rng.integers(0, 2, size=100)
        scores = rng.random(100)
        metrics = evaluator.evaluate(_binary(labels.tolist(), scores.tolist()).to_items())
        entry = metrics.at_threshold(threshold)
        y_pred = (scores >= threshold).astype(int)
        assert entry.precision == pytest.approx(
            precision_score(labels, y_pred, zero_division=0)
        )
        assert entry.recall == pytest.approx(recall_score(labels, y_pred))

    def test_counts_sum_to_items(self, evaluator: ThresholdSweepEvaluator) -> None:
        curve = evaluator.sweep(_binary([1, 0, 1, 0], [0.9, 0.8, 0.3, 0.1]).to_items())
        for m in curve:
            total = (
                m.true_positive_count + m.false_positive_count
                + m.false_negative_count + m.true_negative_count
            )
            assert total == 4

    def test_at1_uses_top_candidate(self, evaluator: ThresholdSweepEvaluator) -> None:
        batch = RecordBatch.from_rows(
            [
                {"label": "a", "s": [0.6, 0.4]},
                {"label": "b", "s": [0.7, 0.3]},
            ]
        )
        spec = DataSpec(label_key_spec="label", predicted_score_key_spec="s", labels=["a", "b"])
        rows = prepare_classification(resolve_columns(batch, spec), ["a", "b"])
        entry = evaluator.evaluate(score_items(rows)).at_threshold(0.0)
        # Every candidate clears 0.0, only one per item counts @1.
        assert entry.true_positive_count == 2
        assert entry.false_positive_count == 2
        assert entry.true_positive_count_at1 == 1
        assert entry.false_positive_count_at1 == 1
        assert entry.precision_at1 == 0.5

    def test_at_threshold_off_grid(self, evaluator: ThresholdSweepEvaluator) -> None:
        metrics = evaluator.evaluate(_binary([1], [0.5]).to_items())
        with pytest.raises(KeyError):
            metrics.at_threshold(0.42)


class TestSummaryMetrics:
    """Tests for areas, log loss and the confusion matrix."""

    def test_perfect_separation(self, evaluator: ThresholdSweepEvaluator) -> None:
        metrics = evaluator.evaluate(_binary([1, 1, 0, 0], [0.9, 0.8, 0.2, 0.1]).to_items())
        assert metrics.au_roc == pytest.approx(1.0)
        assert metrics.au_prc == pytest.approx(1.0)

    def test_log_loss_matches_sklearn(self, evaluator: ThresholdSweepEvaluator) -> None:
        labels = [1, 0, 1, 0, 1]
        scores = [0.9, 0.4, 0.35, 0.2, 0.7]
        metrics = evaluator.evaluate(_binary(labels, scores).to_items())
        assert metrics.log_loss == pytest.approx(sk_log_loss(labels, scores))

    def test_empty_problem(self, evaluator: ThresholdSweepEvaluator) -> None:
        metrics = evaluator.evaluate(_binary([], []).to_items())
        assert len(metrics.confidence_metrics) == len(CONFIDENCE_THRESHOLDS)
        assert metrics.au_prc == 0.0
        assert metrics.log_loss == 0.0
        assert all(m.true_positive_count == 0 for m in metrics.confidence_metrics)

    def test_confusion_matrix_row_sums(self, evaluator: ThresholdSweepEvaluator) -> None:
        batch = RecordBatch.from_rows(
            [
                {"label": "a", "s": [0.6, 0.3, 0.1]},
                {"label": "a", "s": [0.2, 0.7, 0.1]},
                {"label": "b", "s": [0.2, 0.7, 0.1]},
                {"label": "c", "s": [0.1, 0.1, 0.8]},
            ]
        )
        labels = ["a", "b", "c"]
        spec = DataSpec(label_key_spec="label", predicted_score_key_spec="s", labels=labels)
        rows = prepare_classification(resolve_columns(batch, spec), labels)
        matrix = evaluator.evaluate(score_items(rows)).confusion_matrix
        assert matrix.class_names == labels
        row_sums = [sum(r.data_item_counts) for r in matrix.rows]
        assert row_sums == [2, 1, 1]
        assert matrix.count("a", "b") == 1
        assert matrix.count("c", "c") == 1

    def test_confusion_matrix_counts_missing_predictions(
        self, evaluator: ThresholdSweepEvaluator
    ) -> None:
        batch = RecordBatch.from_rows(
            [{"label": "dog", "s": None}, {"label": "cat", "s": [0.1, 0.9]}]
        )
        labels = ["dog", "cat"]
        spec = DataSpec(label_key_spec="label", predicted_score_key_spec="s", labels=labels)
        rows = prepare_classification(resolve_columns(batch, spec), labels)
        matrix = evaluator.evaluate(score_items(rows)).confusion_matrix
        assert matrix.class_names == ["dog", "cat", NO_PREDICTION]
        row_sums = [sum(r.data_item_counts) for r in matrix.rows]
        assert row_sums == [1, 1, 0]
        assert matrix.count("dog", NO_PREDICTION) == 1
        assert matrix.count("cat", "cat") == 1

    def test_log_loss_skips_undefined(self, evaluator: ThresholdSweepEvaluator) -> None:
        batch = RecordBatch.from_rows(
            [{"label": "a", "p": "a"}, {"label": None, "p": "a"}]
        )
        spec = DataSpec(label_key_spec="label", predicted_label_key_spec="p", labels=["a"])
        rows = prepare_classification(resolve_columns(batch, spec), ["a"])
        metrics = evaluator.evaluate(score_items(rows))
        assert math.isfinite(metrics.log_loss)
        assert metrics.log_loss == pytest.approx(-math.log(1 - 1e-15))
