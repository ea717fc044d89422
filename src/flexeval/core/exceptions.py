"""Custom exception hierarchy for flexeval.

Never use bare except clauses. Always catch specific exceptions.
"""
from __future__ import annotations


class FlexEvalError(Exception):
    """Base exception for all flexeval errors."""


# Configuration exceptions (raised before any per-row computation)
class ConfigurationError(FlexEvalError):
    """Base for malformed evaluation configuration."""


class InvalidSliceSpec(ConfigurationError):
    """A slicing spec names a missing column or an unsliceable value."""

    def __init__(self, message: str, feature: str | None = None) -> None:
        super().__init__(message)
        self.feature = feature


class InvalidClassId(ConfigurationError):
    """A binarization class id (or top-k value) is not usable."""

    def __init__(self, message: str, class_id: str | int | None = None) -> None:
        super().__init__(message)
        self.class_id = class_id


class InvalidWeight(ConfigurationError):
    """An aggregation class weight does not map to a configured class."""

    def __init__(self, message: str, key: int | None = None) -> None:
        super().__init__(message)
        self.key = key


class InvalidQuantileIndex(ConfigurationError):
    """``quantile_index`` points outside the configured quantiles."""

    def __init__(self, index: int, n_quantiles: int) -> None:
        super().__init__(
            f"quantile_index {index} is out of range for {n_quantiles} "
            "quantiles (use -1 to disable point evaluation)"
        )
        self.index = index
        self.n_quantiles = n_quantiles


class PluginError(ConfigurationError):
    """Base for metric plugin lookup and configuration failures."""

    def __init__(
        self,
        message: str,
        module_path: str | None = None,
        class_path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.module_path = module_path
        self.class_path = class_path


class UnknownMetric(PluginError):
    """No plugin is registered for a (module_path, class_path) pair."""


class InvalidMetricConfig(PluginError):
    """Plugin JSON config does not parse or does not fit the plugin."""


# Column resolution exceptions
class ColumnResolutionError(FlexEvalError):
    """Base for failures mapping configured columns onto a record batch."""

    def __init__(self, message: str, column: str | None = None) -> None:
        super().__init__(message)
        self.column = column


class ColumnNotFound(ColumnResolutionError):
    """A configured column is absent from the record batch schema."""


class MalformedColumnError(ColumnResolutionError):
    """A column holds values of the wrong shape for the evaluation."""


# I/O exceptions
class IOError(FlexEvalError):  # noqa: A001
    """Base for file I/O failures."""


class UnsupportedSourceError(IOError):
    """Input location cannot be read by the local reader."""

    def __init__(self, source: str) -> None:
        super().__init__(f"Unsupported input source '{source}'. Only local paths are read.")
        self.source = source


class UnsupportedFormatError(IOError):
    """Unsupported file format."""

    def __init__(self, format: str, supported: list[str] | None = None) -> None:  # noqa: A002
        supported_str = ", ".join(supported) if supported else "unknown"
        super().__init__(f"Unsupported format '{format}'. Supported: {supported_str}")
        self.format = format
        self.supported = supported or []


class RecordParseError(IOError):
    """A line of a JSON-lines input is not a JSON object."""

    def __init__(self, path: str, line: int, detail: str) -> None:
        super().__init__(f"{path}:{line}: {detail}")
        self.path = path
        self.line = line
