"""Shared pytest fixtures for flexeval tests."""
from __future__ import annotations

import os

# Prevent Rich/Typer from emitting ANSI escape codes in CLI output.
os.environ["NO_COLOR"] = "1"

import json
from pathlib import Path
from typing import Any

import pytest

from flexeval.config import DataSpec, EvaluationConfig
from flexeval.data.batch import RecordBatch


@pytest.fixture
def dog_cat_rows() -> list[dict[str, Any]]:
    """Two items scored over the labels ["dog", "cat"]."""
    return [
        {"label": "dog", "scores": [0.9, 0.1]},
        {"label": "cat", "scores": [0.4, 0.6]},
    ]


@pytest.fixture
def dog_cat_batch(dog_cat_rows: list[dict[str, Any]]) -> RecordBatch:
    return RecordBatch.from_rows(dog_cat_rows)


@pytest.fixture
def classification_data_spec() -> DataSpec:
    return DataSpec(
        label_key_spec="label",
        predicted_score_key_spec="scores",
        labels=["dog", "cat"],
    )


@pytest.fixture
def regression_rows() -> list[dict[str, Any]]:
    """Regression rows with a region feature."""
    return [
        {"y": 1.0, "y_hat": 1.0, "region": "east"},
        {"y": 2.0, "y_hat": 4.0, "region": "west"},
        {"y": 3.0, "y_hat": 2.5, "region": "east"},
    ]


@pytest.fixture
def regression_batch(regression_rows: list[dict[str, Any]]) -> RecordBatch:
    return RecordBatch.from_rows(regression_rows)


@pytest.fixture
def regression_config() -> EvaluationConfig:
    return EvaluationConfig.model_validate(
        {
            "name": "regression-test",
            "data_spec": {"label_key_spec": "y", "predicted_score_key_spec": "y_hat"},
            "slicing_specs": [{}, {"feature_key_specs": ["region"]}],
        }
    )


@pytest.fixture
def write_jsonl(tmp_path: Path):  # type: ignore[no-untyped-def]
    """Factory writing rows to a JSON-lines file under tmp_path."""

    def _write(name: str, rows: list[dict[str, Any]]) -> Path:
        path = tmp_path / name
        path.write_text("".join(json.dumps(r) + "\n" for r in rows), encoding="utf-8")
        return path

    return _write
