"""In-memory record batch and the column resolver.

A ``RecordBatch`` is the resolved dataset handed to the engine: an ordered,
read-only sequence of row mappings. ``resolve_columns`` maps the columns
configured in a ``DataSpec`` onto the batch and returns them as
``ResolvedColumns``, which every evaluator and plugin reads from.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import numpy as np
import structlog
from numpy.typing import NDArray

from flexeval.config import ColumnSpec, DataSpec
from flexeval.core.exceptions import ColumnNotFound, MalformedColumnError

logger = structlog.get_logger(__name__)

MISSING: Any = object()


def get_path(row: Mapping[str, Any], names: Sequence[str]) -> Any:
    """Walk ``names`` into a nested row; return ``MISSING`` if absent."""
    value: Any = row
    for name in names:
        if not isinstance(value, Mapping) or name not in value:
            return MISSING
        value = value[name]
    return value


@dataclass(frozen=True)
class RecordBatch:
    """Ordered, immutable collection of rows.

    Attributes:
        rows: Read-only row mappings in input order.
        schema: Top-level field names declared by the producer. When empty,
            the schema is inferred from the rows themselves.
    """

    rows: tuple[Mapping[str, Any], ...] = ()
    schema: frozenset[str] = frozenset()

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Mapping[str, Any]],
        schema: Iterable[str] | None = None,
    ) -> RecordBatch:
        """Build a batch, copying each row into a read-only mapping."""
        frozen_rows = tuple(MappingProxyType(dict(row)) for row in rows)
        return cls(rows=frozen_rows, schema=frozenset(schema or ()))

    def __len__(self) -> int:
        return len(self.rows)

    def has_column(self, names: Sequence[str]) -> bool:
        """Whether ``names`` exists in the declared schema or any row."""
        if names and names[0] in self.schema and len(names) == 1:
            return True
        return any(get_path(row, names) is not MISSING for row in self.rows)

    def column(self, names: Sequence[str]) -> list[Any]:
        """Values at ``names`` for every row; ``None`` where missing."""
        values = []
        for row in self.rows:
            value = get_path(row, names)
            values.append(None if value is MISSING else value)
        return values


def _read_only(array: NDArray[Any]) -> NDArray[Any]:
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class ResolvedColumns:
    """Typed columns for one (slice, model) evaluation.

    Attributes:
        labels: Ground truth per row (``None`` where missing).
        weights: Example weights, 1.0 where unset.
        scores: Raw predicted score values (scalar or vector) per row.
        predicted_labels: Labels being scored per row, if configured.
        predicted_label_ids: Ids of labels being scored per row, if configured.
        model_name: Model the prediction columns belong to, if named.
    """

    labels: tuple[Any, ...]
    weights: NDArray[np.float64]
    scores: tuple[Any, ...]
    predicted_labels: tuple[Any, ...] | None = None
    predicted_label_ids: tuple[Any, ...] | None = None
    model_name: str | None = None

    def __len__(self) -> int:
        return len(self.labels)

    def take(self, indices: Sequence[int] | NDArray[np.int64]) -> ResolvedColumns:
        """Columns restricted to ``indices`` (in the given order)."""
        idx = [int(i) for i in indices]

        def _pick(values: tuple[Any, ...] | None) -> tuple[Any, ...] | None:
            if values is None:
                return None
            return tuple(values[i] for i in idx)

        return ResolvedColumns(
            labels=tuple(self.labels[i] for i in idx),
            weights=_read_only(self.weights[np.asarray(idx, dtype=np.int64)].copy()),
            scores=tuple(self.scores[i] for i in idx),
            predicted_labels=_pick(self.predicted_labels),
            predicted_label_ids=_pick(self.predicted_label_ids),
            model_name=self.model_name,
        )


def _column_path(spec: ColumnSpec, model_name: str | None) -> list[str]:
    if model_name:
        return [model_name, *spec.names]
    return list(spec.names)


def _require(batch: RecordBatch, names: list[str]) -> None:
    if not batch.has_column(names):
        column = ".".join(names)
        raise ColumnNotFound(
            f"Column '{column}' not found in record batch", column=column
        )


def _to_weight(value: Any, column: str) -> float:
    if value is None:
        return 1.0
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise MalformedColumnError(
            f"Example weight must be numeric, got {value!r}", column=column
        )
    weight = float(value)
    if not math.isfinite(weight) or weight < 0:
        raise MalformedColumnError(
            f"Example weight must be finite and non-negative, got {value!r}",
            column=column,
        )
    return weight


def check_columns(
    batch: RecordBatch,
    data_spec: DataSpec,
    model_name: str | None = None,
) -> None:
    """Raise ``ColumnNotFound`` for any configured column absent from ``batch``."""
    if data_spec.label_key_spec is not None:
        _require(batch, list(data_spec.label_key_spec.names))
    if data_spec.example_weight_key_spec is not None:
        _require(batch, list(data_spec.example_weight_key_spec.names))
    for spec in (
        data_spec.predicted_score_key_spec,
        data_spec.predicted_label_key_spec,
        data_spec.predicted_label_id_key_spec,
    ):
        if spec is not None:
            _require(batch, _column_path(spec, model_name))


def resolve_columns(
    batch: RecordBatch,
    data_spec: DataSpec,
    model_name: str | None = None,
) -> ResolvedColumns:
    """Map the configured columns onto ``batch``.

    Prediction columns are looked up inside ``row[model_name]`` when a model
    name is given; label and weight columns always come from the row root.

    Args:
        batch: The record batch.
        data_spec: Column configuration.
        model_name: Optional model whose predictions are evaluated.

    Returns:
        ResolvedColumns aligned with ``batch.rows``.

    Raises:
        ColumnNotFound: If a configured column is absent from the batch.
        MalformedColumnError: If example weights are not non-negative numbers.
    """
    check_columns(batch, data_spec, model_name)
    n_rows = len(batch)

    if data_spec.label_key_spec is not None:
        labels = tuple(batch.column(data_spec.label_key_spec.names))
    else:
        labels = (None,) * n_rows

    if data_spec.example_weight_key_spec is not None:
        column = data_spec.example_weight_key_spec.display_name
        weights = np.asarray(
            [
                _to_weight(v, column)
                for v in batch.column(data_spec.example_weight_key_spec.names)
            ],
            dtype=np.float64,
        )
    else:
        weights = np.ones(n_rows, dtype=np.float64)

    def _optional(spec: ColumnSpec | None) -> tuple[Any, ...] | None:
        if spec is None:
            return None
        return tuple(batch.column(_column_path(spec, model_name)))

    scores = _optional(data_spec.predicted_score_key_spec)

    columns = ResolvedColumns(
        labels=labels,
        weights=_read_only(weights),
        scores=scores if scores is not None else (None,) * n_rows,
        predicted_labels=_optional(data_spec.predicted_label_key_spec),
        predicted_label_ids=_optional(data_spec.predicted_label_id_key_spec),
        model_name=model_name,
    )
    logger.debug("columns_resolved", n_rows=n_rows, model_name=model_name)
    return columns
