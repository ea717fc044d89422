"""Classification row preparation and binarization.

Turns resolved prediction columns into per-row (class, score) predictions,
then into the candidate lists consumed by the threshold sweep: either the
whole multi-class problem at once, or one binary problem per configured
class id (one-vs-rest) and per top-k cutoff.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import structlog
from numpy.typing import NDArray

from flexeval.config import Binarization
from flexeval.core.exceptions import InvalidClassId, MalformedColumnError
from flexeval.data.batch import ResolvedColumns
from flexeval.evaluation.models import (
    ClassDescriptor,
    ClassIdDescriptor,
    TopKDescriptor,
)

logger = structlog.get_logger(__name__)

BINARY_NEGATIVE = "0"
BINARY_POSITIVE = "1"
_TRUTHY = {"1", "true"}


def class_name(value: Any) -> str:
    """Canonical string form of a class identifier."""
    if isinstance(value, bool):
        return BINARY_POSITIVE if value else BINARY_NEGATIVE
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _truth_classes(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, list | tuple):
        return tuple(dict.fromkeys(class_name(v) for v in value))
    return (class_name(value),)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float | np.number) and not isinstance(value, bool)


def _id_to_class(label_id: Any, labels: Sequence[str]) -> str:
    if isinstance(label_id, int) and not isinstance(label_id, bool) and labels:
        if 0 <= label_id < len(labels):
            return labels[label_id]
    return class_name(label_id)


@dataclass(frozen=True)
class RowPrediction:
    """Scored classes of one data item, in the row's own class order."""

    classes: tuple[str, ...]
    scores: tuple[float, ...]
    binary: bool = False


@dataclass(frozen=True)
class ClassificationRows:
    """Classification inputs of one (slice, model) pair.

    Attributes:
        predictions: Parsed predictions per row (``None`` if the row has none).
        truths: Ground-truth class names per row.
        weights: Example weights per row.
        labels: Configured label vocabulary.
    """

    predictions: tuple[RowPrediction | None, ...]
    truths: tuple[tuple[str, ...], ...]
    weights: NDArray[np.float64]
    labels: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.truths)

    def take(self, indices: Sequence[int] | NDArray[np.int64]) -> ClassificationRows:
        idx = [int(i) for i in indices]
        weights = self.weights[np.asarray(idx, dtype=np.int64)].copy()
        weights.setflags(write=False)
        return ClassificationRows(
            predictions=tuple(self.predictions[i] for i in idx),
            truths=tuple(self.truths[i] for i in idx),
            weights=weights,
            labels=self.labels,
        )


def binary_classes(labels: Sequence[str]) -> tuple[str, str]:
    """(negative, positive) class names for scalar-score binary problems."""
    if len(labels) >= 2:
        return labels[0], labels[1]
    return BINARY_NEGATIVE, BINARY_POSITIVE


def _parse_row(
    row: int,
    score: Any,
    predicted_label: Any,
    predicted_label_id: Any,
    labels: Sequence[str],
) -> RowPrediction | None:
    if isinstance(score, list | tuple):
        if isinstance(predicted_label, list | tuple):
            classes = tuple(class_name(c) for c in predicted_label)
        elif isinstance(predicted_label_id, list | tuple):
            classes = tuple(_id_to_class(c, labels) for c in predicted_label_id)
        else:
            classes = tuple(labels)
        if len(classes) != len(score):
            raise MalformedColumnError(
                f"Row {row}: {len(score)} scores for {len(classes)} classes"
            )
        if not all(_is_number(s) for s in score):
            raise MalformedColumnError(f"Row {row}: scores must be numeric")
        return RowPrediction(classes=classes, scores=tuple(float(s) for s in score))

    if _is_number(score):
        if predicted_label is not None:
            return RowPrediction((class_name(predicted_label),), (float(score),))
        if predicted_label_id is not None:
            return RowPrediction(
                (_id_to_class(predicted_label_id, labels),), (float(score),)
            )
        _, positive = binary_classes(labels)
        return RowPrediction((positive,), (float(score),), binary=True)

    if score is None:
        # Hard predictions without scores count as fully confident.
        hard = predicted_label if predicted_label is not None else predicted_label_id
        if hard is None:
            return None
        values = hard if isinstance(hard, list | tuple) else [hard]
        if predicted_label is not None:
            classes = tuple(class_name(v) for v in values)
        else:
            classes = tuple(_id_to_class(v, labels) for v in values)
        return RowPrediction(classes=classes, scores=(1.0,) * len(classes))

    raise MalformedColumnError(f"Row {row}: unsupported score value {score!r}")


def prepare_classification(
    columns: ResolvedColumns,
    labels: Sequence[str],
) -> ClassificationRows:
    """Parse resolved columns into classification rows.

    Raises:
        MalformedColumnError: If a row's scores do not line up with its classes.
    """
    n_rows = len(columns)
    predicted_labels = columns.predicted_labels or (None,) * n_rows
    predicted_label_ids = columns.predicted_label_ids or (None,) * n_rows
    negative, positive = binary_classes(labels)

    predictions: list[RowPrediction | None] = []
    truths: list[tuple[str, ...]] = []
    for i in range(n_rows):
        prediction = _parse_row(
            i, columns.scores[i], predicted_labels[i], predicted_label_ids[i], labels
        )
        truth = _truth_classes(columns.labels[i])
        if prediction is not None and prediction.binary and truth:
            is_pos = truth[0] == positive or truth[0].lower() in _TRUTHY
            truth = (positive,) if is_pos else (negative,)
        predictions.append(prediction)
        truths.append(truth)

    return ClassificationRows(
        predictions=tuple(predictions),
        truths=tuple(truths),
        weights=columns.weights,
        labels=tuple(labels),
    )


@dataclass(frozen=True)
class ScoredItems:
    """Sweep-ready candidates of one classification problem.

    Each (item, class) pair an item scored is one candidate. Items keep
    their ground truth and top-1 prediction for the confusion matrix.

    Attributes:
        item_ids: Owning item of each candidate.
        scores: Candidate scores.
        positive: Whether the candidate's class is in the item's ground truth.
        rank: Position of the class within its item (tie-break order).
        n_positive_labels: Ground-truth labels a true positive can match.
        truths: Ground-truth class names per item.
        predicted: Top-1 predicted class per item.
        vocabulary: Ordered class set for the confusion matrix.
        observed_probs: Probability given to the observed outcome per item
            (NaN where undefined).
        weights: Example weight per item.
    """

    item_ids: NDArray[np.int64]
    scores: NDArray[np.float64]
    positive: NDArray[np.bool_]
    rank: NDArray[np.int64]
    n_positive_labels: int
    truths: tuple[tuple[str, ...], ...]
    predicted: tuple[str | None, ...]
    vocabulary: tuple[str, ...]
    observed_probs: NDArray[np.float64]
    weights: NDArray[np.float64]

    @property
    def n_items(self) -> int:
        return len(self.truths)

    @property
    def n_negative_candidates(self) -> int:
        return int(np.count_nonzero(~self.positive))


def _vocabulary(
    base: Sequence[str],
    truths: Sequence[tuple[str, ...]],
    predicted: Sequence[str | None],
) -> tuple[str, ...]:
    vocab = dict.fromkeys(base)
    for truth, pred in zip(truths, predicted, strict=True):
        for name in truth:
            vocab.setdefault(name, None)
        if pred is not None:
            vocab.setdefault(pred, None)
    return tuple(vocab)


def score_items(rows: ClassificationRows) -> ScoredItems:
    """Candidates for the unbinarized problem over a whole slice.

    Vector scores make every scored class a candidate (multi-class);
    a single predicted label id makes one candidate per item; a scalar score
    without label columns is a binary problem on the positive class.
    """
    item_ids: list[int] = []
    scores: list[float] = []
    positive: list[bool] = []
    rank: list[int] = []
    predicted: list[str | None] = []
    observed = np.full(len(rows), np.nan, dtype=np.float64)
    n_positive_labels = 0
    has_binary = False

    for item, (prediction, truth) in enumerate(
        zip(rows.predictions, rows.truths, strict=True)
    ):
        truth_set = set(truth)
        if prediction is None or not prediction.classes:
            predicted.append(None)
            n_positive_labels += len(truth_set)
            continue

        if prediction.binary:
            has_binary = True
            negative, pos_class = binary_classes(rows.labels)
            score = prediction.scores[0]
            is_pos = pos_class in truth_set
            item_ids.append(item)
            scores.append(score)
            positive.append(is_pos)
            rank.append(0)
            n_positive_labels += int(is_pos)
            predicted.append(pos_class if score >= 0.5 else negative)
            if truth:
                observed[item] = score if is_pos else 1.0 - score
            continue

        for j, (cls, score) in enumerate(
            zip(prediction.classes, prediction.scores, strict=True)
        ):
            item_ids.append(item)
            scores.append(score)
            positive.append(cls in truth_set)
            rank.append(j)
        n_positive_labels += len(truth_set)
        top = int(np.argmax(prediction.scores))
        predicted.append(prediction.classes[top])
        if truth:
            if truth[0] in prediction.classes:
                observed[item] = prediction.scores[prediction.classes.index(truth[0])]
            elif len(prediction.classes) > 1:
                observed[item] = 0.0

    base = binary_classes(rows.labels) if has_binary else rows.labels
    return ScoredItems(
        item_ids=np.asarray(item_ids, dtype=np.int64),
        scores=np.asarray(scores, dtype=np.float64),
        positive=np.asarray(positive, dtype=np.bool_),
        rank=np.asarray(rank, dtype=np.int64),
        n_positive_labels=n_positive_labels,
        truths=rows.truths,
        predicted=tuple(predicted),
        vocabulary=_vocabulary(base, rows.truths, predicted),
        observed_probs=observed,
        weights=rows.weights,
    )


@dataclass(frozen=True)
class BinaryProblem:
    """One binarized sub-problem: a 0/1 label and a score per row."""

    descriptor: ClassDescriptor
    labels: NDArray[np.int64]
    scores: NDArray[np.float64]
    weights: NDArray[np.float64]

    def to_items(self) -> ScoredItems:
        """One candidate per row; top-1 operating point at score >= 0.5."""
        n = len(self.labels)
        positive = self.labels.astype(np.bool_)
        truths = tuple(
            (BINARY_POSITIVE,) if p else (BINARY_NEGATIVE,) for p in positive
        )
        predicted = tuple(
            BINARY_POSITIVE if s >= 0.5 else BINARY_NEGATIVE for s in self.scores
        )
        observed = np.where(positive, self.scores, 1.0 - self.scores)
        return ScoredItems(
            item_ids=np.arange(n, dtype=np.int64),
            scores=self.scores,
            positive=positive,
            rank=np.zeros(n, dtype=np.int64),
            n_positive_labels=int(np.count_nonzero(positive)),
            truths=truths,
            predicted=predicted,
            vocabulary=(BINARY_NEGATIVE, BINARY_POSITIVE),
            observed_probs=observed.astype(np.float64),
            weights=self.weights,
        )


def validate_binarization(binarization: Binarization, labels: Sequence[str]) -> None:
    """Reject class ids outside ``labels`` and non-positive k values.

    Raises:
        InvalidClassId: On the first unusable class id or k.
    """
    for class_id in binarization.class_ids:
        if class_id not in labels:
            raise InvalidClassId(
                f"Class id '{class_id}' is not one of the configured labels "
                f"({', '.join(labels) or 'none'})",
                class_id=class_id,
            )
    for k in binarization.top_k_list:
        if k <= 0:
            raise InvalidClassId(f"top_k must be positive, got {k}", class_id=k)
        if not labels:
            raise InvalidClassId(
                "top_k binarization requires configured labels", class_id=k
            )


def _score_matrix(
    rows: ClassificationRows,
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """Scores aligned to ``rows.labels`` and a mask of the cells a row scored.

    A scalar binary score also scores the negative class as ``1 - score``.
    Unscored cells hold 0.
    """
    index = {name: j for j, name in enumerate(rows.labels)}
    matrix = np.zeros((len(rows), len(rows.labels)), dtype=np.float64)
    scored = np.zeros(matrix.shape, dtype=np.bool_)
    negative, _ = binary_classes(rows.labels)
    for i, prediction in enumerate(rows.predictions):
        if prediction is None:
            continue
        cells = list(zip(prediction.classes, prediction.scores, strict=True))
        if prediction.binary:
            cells.append((negative, 1.0 - prediction.scores[0]))
        for cls, score in cells:
            j = index.get(cls)
            if j is not None:
                matrix[i, j] = score
                scored[i, j] = True
    return matrix, scored


def _truth_matrix(rows: ClassificationRows) -> NDArray[np.bool_]:
    """Whether each label is among a row's ground-truth classes."""
    index = {name: j for j, name in enumerate(rows.labels)}
    truth = np.zeros((len(rows), len(rows.labels)), dtype=np.bool_)
    for i, classes in enumerate(rows.truths):
        for name in classes:
            j = index.get(name)
            if j is not None:
                truth[i, j] = True
    return truth


def binarize(
    rows: ClassificationRows,
    binarization: Binarization,
) -> list[BinaryProblem]:
    """Expand a multi-class slice into binary problems.

    Class-id problems come first in configured order, then top-k problems.
    A row is positive for a class id when the class is any of its ground
    truths, and positive for k when any ground truth it scored ranks within
    its top k.

    Args:
        rows: Classification rows of one slice.
        binarization: Class ids and top-k cutoffs to evaluate.

    Returns:
        One BinaryProblem per distinct class id and k.

    Raises:
        InvalidClassId: If a class id is not in ``rows.labels``.
    """
    validate_binarization(binarization, rows.labels)
    matrix, scored = _score_matrix(rows)
    truth = _truth_matrix(rows)
    n_rows, n_classes = matrix.shape
    problems: list[BinaryProblem] = []

    for class_id in dict.fromkeys(binarization.class_ids):
        j = rows.labels.index(class_id)
        problems.append(
            BinaryProblem(
                descriptor=ClassIdDescriptor(class_id=class_id),
                labels=truth[:, j].astype(np.int64),
                scores=matrix[:, j].copy(),
                weights=rows.weights,
            )
        )

    if binarization.top_k_list and n_classes:
        # Descending score, unscored classes last, ties by ascending class index.
        ranked = np.where(scored, matrix, -np.inf)
        class_index = np.broadcast_to(np.arange(n_classes), matrix.shape)
        order = np.lexsort((class_index, -ranked), axis=1)
        rank_of = np.empty_like(order)
        np.put_along_axis(rank_of, order, class_index, axis=1)
        candidates = truth & scored
        for k in dict.fromkeys(binarization.top_k_list):
            hits = candidates & (rank_of < k)
            in_top_k = hits.any(axis=1)
            best = np.where(hits, matrix, -np.inf).max(axis=1)
            problems.append(
                BinaryProblem(
                    descriptor=TopKDescriptor(k=k),
                    labels=in_top_k.astype(np.int64),
                    scores=np.where(in_top_k, best, 0.0),
                    weights=rows.weights,
                )
            )

    logger.debug("binarized", n_rows=n_rows, n_problems=len(problems))
    return problems
