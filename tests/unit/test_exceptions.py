"""Tests for the custom exception hierarchy."""
from flexeval.core.exceptions import (
    ColumnNotFound,
    ColumnResolutionError,
    ConfigurationError,
    FlexEvalError,
    InvalidClassId,
    InvalidMetricConfig,
    InvalidQuantileIndex,
    InvalidSliceSpec,
    InvalidWeight,
    IOError as FEIOError,
    MalformedColumnError,
    PluginError,
    RecordParseError,
    UnknownMetric,
    UnsupportedFormatError,
    UnsupportedSourceError,
)


def test_base_exception() -> None:
    err = FlexEvalError("base error")
    assert str(err) == "base error"


def test_configuration_errors_share_base() -> None:
    for err in (
        InvalidSliceSpec("x"),
        InvalidClassId("x"),
        InvalidWeight("x"),
        UnknownMetric("x"),
        InvalidMetricConfig("x"),
        InvalidQuantileIndex(3, 2),
    ):
        assert isinstance(err, ConfigurationError)
        assert isinstance(err, FlexEvalError)


def test_invalid_slice_spec_stores_feature() -> None:
    err = InvalidSliceSpec("missing", feature="region")
    assert err.feature == "region"


def test_invalid_class_id_stores_class_id() -> None:
    err = InvalidClassId("bad", class_id="bird")
    assert err.class_id == "bird"


def test_invalid_weight_stores_key() -> None:
    assert InvalidWeight("bad", key=7).key == 7


def test_plugin_errors_store_paths() -> None:
    err = UnknownMetric("nope", module_path="my.module", class_path="Metric")
    assert isinstance(err, PluginError)
    assert err.module_path == "my.module"
    assert err.class_path == "Metric"


def test_invalid_quantile_index_message() -> None:
    err = InvalidQuantileIndex(5, 3)
    assert err.index == 5
    assert err.n_quantiles == 3
    assert "-1" in str(err)


def test_column_errors_store_column() -> None:
    err = ColumnNotFound("missing", column="pred.scores")
    assert isinstance(err, ColumnResolutionError)
    assert err.column == "pred.scores"
    assert isinstance(MalformedColumnError("bad"), ColumnResolutionError)


def test_io_errors() -> None:
    err = UnsupportedFormatError(".csv", supported=[".json", ".jsonl"])
    assert isinstance(err, FEIOError)
    assert ".csv" in str(err)
    assert err.supported == [".json", ".jsonl"]

    src = UnsupportedSourceError("gs://bucket/file")
    assert src.source == "gs://bucket/file"

    parse = RecordParseError("data.jsonl", 4, "invalid JSON")
    assert parse.line == 4
    assert str(parse).startswith("data.jsonl:4")
