"""Partition a record batch into slices by feature values.

Each ``SlicingSpec`` contributes slices independently: feature key specs
open-partition the rows by every observed value combination, feature value
entries select the rows holding one listed value, and a spec with both
crosses the two. The overall slice always comes first and every slice key is
emitted once.
"""
from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

import numpy as np
import structlog
from numpy.typing import NDArray

from flexeval.config import ColumnSpec, FeatureValueSpec, SlicingSpec
from flexeval.core.exceptions import InvalidSliceSpec
from flexeval.data.batch import MISSING, RecordBatch, get_path
from flexeval.evaluation.models import (
    OVERALL_SLICE,
    BytesValue,
    FloatValue,
    Int64Value,
    SliceFeature,
    SliceKey,
)

logger = structlog.get_logger(__name__)

Slice = tuple[SliceKey, NDArray[np.int64]]

_TRUE_STRINGS = {"true", "1"}
_FALSE_STRINGS = {"false", "0"}


def slice_value(value: Any, feature: str) -> BytesValue | FloatValue | Int64Value:
    """Typed slice value for a raw feature value.

    Strings and bytes become bytes, booleans and integers int64, floats float.

    Raises:
        InvalidSliceSpec: If the value is not a scalar.
    """
    if isinstance(value, bool):
        return Int64Value(value=int(value))
    if isinstance(value, int | np.integer):
        return Int64Value(value=int(value))
    if isinstance(value, float | np.floating):
        return FloatValue(value=float(value))
    if isinstance(value, str):
        return BytesValue(value=value.encode("utf-8"))
    if isinstance(value, bytes):
        return BytesValue(value=value)
    raise InvalidSliceSpec(
        f"Slicing feature '{feature}' holds a non-scalar value {value!r}",
        feature=feature,
    )


def _matches(value: Any, wanted: str) -> bool:
    """Whether a row value equals a configured (textual) slice value."""
    if isinstance(value, bool):
        options = _TRUE_STRINGS if value else _FALSE_STRINGS
        return wanted.strip().lower() in options
    if isinstance(value, int | float | np.number):
        try:
            return float(value) == float(wanted)
        except ValueError:
            return False
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace") == wanted
    if isinstance(value, str):
        return value == wanted
    return False


def _check_column(batch: RecordBatch, spec: ColumnSpec) -> None:
    if not batch.has_column(spec.names):
        raise InvalidSliceSpec(
            f"Slicing feature '{spec.display_name}' not found in record batch",
            feature=spec.display_name,
        )


def _scalar_at(row: Any, spec: ColumnSpec) -> Any:
    value = get_path(row, spec.names)
    if value is MISSING or value is None:
        return MISSING
    if isinstance(value, list | tuple | dict):
        raise InvalidSliceSpec(
            f"Slicing feature '{spec.display_name}' holds a non-scalar value "
            f"{value!r}",
            feature=spec.display_name,
        )
    return value


def _open_partition(
    batch: RecordBatch,
    rows: Sequence[int],
    key_specs: Sequence[ColumnSpec],
    prefix: tuple[SliceFeature, ...] = (),
) -> list[Slice]:
    groups: dict[SliceKey, list[int]] = {}
    for i in rows:
        features = list(prefix)
        for spec in key_specs:
            value = _scalar_at(batch.rows[i], spec)
            if value is MISSING or (isinstance(value, float) and math.isnan(value)):
                break
            features.append(
                SliceFeature(
                    feature_name=spec.display_name,
                    value=slice_value(value, spec.display_name),
                )
            )
        else:
            groups.setdefault(SliceKey(features=tuple(features)), []).append(i)
    return [(key, np.asarray(idx, dtype=np.int64)) for key, idx in groups.items()]


def _closed_slice(
    batch: RecordBatch,
    rows: Sequence[int],
    entry: FeatureValueSpec,
) -> tuple[SliceFeature, list[int]]:
    name = entry.name_spec.display_name
    matched: list[int] = []
    typed: BytesValue | FloatValue | Int64Value | None = None
    for i in rows:
        value = _scalar_at(batch.rows[i], entry.name_spec)
        if value is MISSING or not _matches(value, entry.value):
            continue
        if typed is None:
            typed = slice_value(value, name)
        matched.append(i)
    if typed is None:
        typed = BytesValue(value=entry.value.encode("utf-8"))
    return SliceFeature(feature_name=name, value=typed), matched


def validate_slicing_specs(batch: RecordBatch, slicing_specs: Sequence[SlicingSpec]) -> None:
    """Raise ``InvalidSliceSpec`` for any feature absent from ``batch``."""
    for spec in slicing_specs:
        for key_spec in spec.feature_key_specs:
            _check_column(batch, key_spec)
        for entry in spec.feature_values:
            _check_column(batch, entry.name_spec)


def slice_batch(batch: RecordBatch, slicing_specs: Sequence[SlicingSpec]) -> list[Slice]:
    """Compute the slices requested by ``slicing_specs``.

    Args:
        batch: The record batch to partition.
        slicing_specs: Independent slicing specs; their slices are unioned.

    Returns:
        (slice key, row indices) pairs, overall slice first, each key once
        and in first-occurrence order.

    Raises:
        InvalidSliceSpec: If a feature is absent from the batch or holds a
            non-scalar value.
    """
    validate_slicing_specs(batch, slicing_specs)
    all_rows = list(range(len(batch)))
    slices: dict[SliceKey, NDArray[np.int64]] = {
        OVERALL_SLICE: np.arange(len(batch), dtype=np.int64)
    }

    for spec in slicing_specs:
        produced: list[Slice] = []
        if spec.feature_values:
            for entry in spec.feature_values:
                feature, matched = _closed_slice(batch, all_rows, entry)
                if spec.feature_key_specs:
                    produced.extend(
                        _open_partition(
                            batch, matched, spec.feature_key_specs, prefix=(feature,)
                        )
                    )
                else:
                    key = SliceKey(features=(feature,))
                    produced.append((key, np.asarray(matched, dtype=np.int64)))
        elif spec.feature_key_specs:
            produced = _open_partition(batch, all_rows, spec.feature_key_specs)
        for key, indices in produced:
            slices.setdefault(key, indices)

    for indices in slices.values():
        indices.setflags(write=False)
    logger.debug("slices_built", n_slices=len(slices), n_rows=len(batch))
    return list(slices.items())
