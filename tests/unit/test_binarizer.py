"""Tests for classification row preparation and binarization."""
from __future__ import annotations

import numpy as np
import pytest

from flexeval.config import Binarization, DataSpec
from flexeval.core.exceptions import InvalidClassId, MalformedColumnError
from flexeval.data.batch import RecordBatch, resolve_columns
from flexeval.evaluation.binarizer import (
    ClassificationRows,
    binarize,
    class_name,
    prepare_classification,
    score_items,
    validate_binarization,
)
from flexeval.evaluation.models import ClassIdDescriptor, TopKDescriptor


def _rows(rows: list[dict], labels: list[str], **columns: str) -> ClassificationRows:
    spec = DataSpec(label_key_spec="label", labels=labels, **columns)
    batch = RecordBatch.from_rows(rows)
    return prepare_classification(resolve_columns(batch, spec), labels)


class TestClassName:
    """Tests for canonical class names."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(True, "1"), (False, "0"), (2.0, "2"), (b"dog", "dog"), ("cat", "cat"), (3, "3")],
    )
    def test_class_name(self, value: object, expected: str) -> None:
        assert class_name(value) == expected


class TestPrepareClassification:
    """Tests for prepare_classification."""

    def test_vector_scores_use_labels(self, dog_cat_rows: list[dict]) -> None:
        rows = _rows(dog_cat_rows, ["dog", "cat"], predicted_score_key_spec="scores")
        assert rows.predictions[0] is not None
        assert rows.predictions[0].classes == ("dog", "cat")
        assert rows.truths == (("dog",), ("cat",))

    def test_vector_scores_with_row_classes(self) -> None:
        rows = _rows(
            [{"label": "b", "classes": ["b", "a"], "scores": [0.7, 0.3]}],
            [],
            predicted_score_key_spec="scores",
            predicted_label_key_spec="classes",
        )
        assert rows.predictions[0] is not None
        assert rows.predictions[0].classes == ("b", "a")

    def test_label_ids_map_to_labels(self) -> None:
        rows = _rows(
            [{"label": "cat", "ids": [1, 0], "scores": [0.8, 0.2]}],
            ["dog", "cat"],
            predicted_score_key_spec="scores",
            predicted_label_id_key_spec="ids",
        )
        assert rows.predictions[0] is not None
        assert rows.predictions[0].classes == ("cat", "dog")

    def test_length_mismatch(self) -> None:
        with pytest.raises(MalformedColumnError):
            _rows(
                [{"label": "dog", "scores": [0.9]}],
                ["dog", "cat"],
                predicted_score_key_spec="scores",
            )

    def test_scalar_score_is_binary(self) -> None:
        rows = _rows(
            [{"label": True, "p": 0.8}, {"label": 0, "p": 0.3}],
            [],
            predicted_score_key_spec="p",
        )
        assert all(p is not None and p.binary for p in rows.predictions)
        assert rows.truths == (("1",), ("0",))

    def test_hard_prediction_scores_one(self) -> None:
        rows = _rows(
            [{"label": "cat", "pred": "cat"}],
            ["dog", "cat"],
            predicted_label_key_spec="pred",
        )
        assert rows.predictions[0] is not None
        assert rows.predictions[0].scores == (1.0,)

    def test_unsupported_score(self) -> None:
        with pytest.raises(MalformedColumnError):
            _rows([{"label": "a", "p": "high"}], ["a"], predicted_score_key_spec="p")


class TestScoreItems:
    """Tests for score_items."""

    def test_multiclass_candidates(self, dog_cat_rows: list[dict]) -> None:
        rows = _rows(dog_cat_rows, ["dog", "cat"], predicted_score_key_spec="scores")
        items = score_items(rows)
        assert items.n_items == 2
        assert items.scores.tolist() == [0.9, 0.1, 0.4, 0.6]
        assert items.positive.tolist() == [True, False, False, True]
        assert items.n_positive_labels == 2
        assert items.predicted == ("dog", "cat")
        assert items.vocabulary == ("dog", "cat")
        np.testing.assert_allclose(items.observed_probs, [0.9, 0.6])

    def test_binary_top1_at_half(self) -> None:
        rows = _rows(
            [{"label": 1, "p": 0.5}, {"label": 0, "p": 0.49}],
            [],
            predicted_score_key_spec="p",
        )
        items = score_items(rows)
        assert items.predicted == ("1", "0")
        assert items.vocabulary == ("0", "1")
        np.testing.assert_allclose(items.observed_probs, [0.5, 0.51])

    def test_row_without_prediction(self) -> None:
        rows = _rows(
            [{"label": "a", "p": [0.2, 0.8]}, {"label": "b"}],
            ["a", "b"],
            predicted_score_key_spec="p",
        )
        items = score_items(rows)
        assert items.predicted == ("b", None)
        assert items.n_positive_labels == 2
        assert items.item_ids.tolist() == [0, 0]


class TestValidateBinarization:
    """Tests for validate_binarization."""

    def test_unknown_class_id(self) -> None:
        with pytest.raises(InvalidClassId) as exc_info:
            validate_binarization(Binarization(class_ids=["bird"]), ["dog", "cat"])
        assert exc_info.value.class_id == "bird"

    def test_non_positive_k(self) -> None:
        with pytest.raises(InvalidClassId):
            validate_binarization(Binarization(top_k_list=[0]), ["dog", "cat"])

    def test_top_k_needs_labels(self) -> None:
        with pytest.raises(InvalidClassId):
            validate_binarization(Binarization(top_k_list=[1]), [])

    def test_valid(self) -> None:
        validate_binarization(
            Binarization(class_ids=["cat"], top_k_list=[1, 2]), ["dog", "cat"]
        )


class TestBinarize:
    """Tests for binarize."""

    def test_one_vs_rest(self, dog_cat_rows: list[dict]) -> None:
        rows = _rows(dog_cat_rows, ["dog", "cat"], predicted_score_key_spec="scores")
        problems = binarize(rows, Binarization(class_ids=["dog", "cat", "dog"]))
        assert [p.descriptor for p in problems] == [
            ClassIdDescriptor(class_id="dog"),
            ClassIdDescriptor(class_id="cat"),
        ]
        assert problems[0].labels.tolist() == [1, 0]
        assert problems[0].scores.tolist() == [0.9, 0.4]
        assert problems[1].scores.tolist() == [0.1, 0.6]

    def test_top_k(self) -> None:
        rows = _rows(
            [
                {"label": "c", "s": [0.5, 0.3, 0.2]},
                {"label": "b", "s": [0.5, 0.3, 0.2]},
                {"label": "a", "s": [0.5, 0.3, 0.2]},
            ],
            ["a", "b", "c"],
            predicted_score_key_spec="s",
        )
        problems = binarize(rows, Binarization(top_k_list=[1, 2]))
        assert [p.descriptor for p in problems] == [TopKDescriptor(k=1), TopKDescriptor(k=2)]
        assert problems[0].labels.tolist() == [0, 0, 1]
        assert problems[1].labels.tolist() == [0, 1, 1]
        assert problems[1].scores.tolist() == [0.0, 0.3, 0.5]

    def test_top_k_ties_by_class_order(self) -> None:
        rows = _rows(
            [{"label": "b", "s": [0.5, 0.5]}],
            ["a", "b"],
            predicted_score_key_spec="s",
        )
        (problem,) = binarize(rows, Binarization(top_k_list=[1]))
        assert problem.labels.tolist() == [0]

    def test_class_ids_before_top_k(self, dog_cat_rows: list[dict]) -> None:
        rows = _rows(dog_cat_rows, ["dog", "cat"], predicted_score_key_spec="scores")
        problems = binarize(rows, Binarization(class_ids=["cat"], top_k_list=[1]))
        assert [p.descriptor.kind for p in problems] == ["class_id", "top_k"]

    def test_binary_problem_items(self, dog_cat_rows: list[dict]) -> None:
        rows = _rows(dog_cat_rows, ["dog", "cat"], predicted_score_key_spec="scores")
        items = binarize(rows, Binarization(class_ids=["dog"]))[0].to_items()
        assert items.vocabulary == ("0", "1")
        assert items.predicted == ("1", "0")
        assert items.n_positive_labels == 1

    def test_top_k_ignores_unscored_truth(self) -> None:
        rows = _rows(
            [{"label": "dog", "s": None}, {"label": "cat", "s": [0.9, 0.1]}],
            ["dog", "cat"],
            predicted_score_key_spec="s",
        )
        (problem,) = binarize(rows, Binarization(top_k_list=[1]))
        assert problem.labels.tolist() == [0, 0]
        assert problem.scores.tolist() == [0.0, 0.0]

    def test_top_k_with_partial_class_list(self) -> None:
        rows = _rows(
            [{"label": "a", "s": [0.0], "pl": ["b"]}],
            ["a", "b", "c"],
            predicted_score_key_spec="s",
            predicted_label_key_spec="pl",
        )
        (problem,) = binarize(rows, Binarization(top_k_list=[2]))
        assert problem.labels.tolist() == [0]

    def test_multilabel_truths(self) -> None:
        rows = _rows(
            [{"label": ["dog", "cat"], "s": [0.9, 0.8]}, {"label": "dog", "s": [0.3, 0.7]}],
            ["dog", "cat"],
            predicted_score_key_spec="s",
        )
        cat, top1 = binarize(rows, Binarization(class_ids=["cat"], top_k_list=[1]))
        assert cat.labels.tolist() == [1, 0]
        assert cat.labels.sum() == score_items(rows).positive[[1, 3]].sum()
        assert top1.labels.tolist() == [1, 0]
        assert top1.scores.tolist() == [0.9, 0.0]

    def test_scalar_score_negative_class(self) -> None:
        rows = _rows(
            [{"label": "yes", "s": 0.8}, {"label": "no", "s": 0.3}],
            ["no", "yes"],
            predicted_score_key_spec="s",
        )
        no, yes = binarize(rows, Binarization(class_ids=["no", "yes"]))
        assert no.labels.tolist() == [0, 1]
        np.testing.assert_allclose(no.scores, [0.2, 0.7])
        assert yes.scores.tolist() == [0.8, 0.3]
