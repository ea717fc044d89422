"""Evaluation configuration models and loader.

Describes which columns hold ground truth and predictions, how the data is
sliced, which metrics are computed (with optional binarization and
aggregation), and how the evaluation is executed. Configurations are loaded
from YAML or JSON files for reproducible runs.
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from flexeval.core.enums import ExecutionMode, ProblemType


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ColumnSpec(_ConfigModel):
    """Path to a (possibly nested) field of a record.

    Accepts a bare string (``"label"``), a mapping with ``name``
    (``{"name": "label"}``) or the full form ``{"names": ["pred", "scores"]}``.

    Attributes:
        names: Keys walked from the record root to the field.
    """

    names: list[str] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"names": [data]}
        if isinstance(data, list):
            return {"names": data}
        if isinstance(data, dict) and "name" in data and "names" not in data:
            return {"names": [data["name"]]}
        return data

    @property
    def display_name(self) -> str:
        """Dotted form of the path, used in output and messages."""
        return ".".join(self.names)


class JsonlFileSpec(_ConfigModel):
    """JSON-lines files holding the dataset.

    Attributes:
        file_names: File paths or glob patterns (e.g. ``results-*-of-*``).
    """

    file_names: list[str] = Field(default_factory=list)


class InputSourceSpec(_ConfigModel):
    """Where the input data is stored."""

    jsonl_file_spec: JsonlFileSpec | None = None


class DataSpec(_ConfigModel):
    """Mapping of dataset columns onto evaluation roles.

    Attributes:
        input_source_spec: Storage location of the dataset.
        label_key_spec: Column containing ground truth.
        example_weight_key_spec: Column containing per-example weights.
        predicted_label_key_spec: Column with the labels being scored, per row.
        predicted_label_id_key_spec: Column with ids of the labels being scored.
        predicted_score_key_spec: Column with model scores (or quantile
            predictions for forecasting).
        labels: Labels in the order scores appear in the score column.
        quantiles: Quantiles in the order they appear in the score column.
        quantile_index: Index into ``quantiles`` used for point metrics;
            -1 disables point evaluation.
    """

    input_source_spec: InputSourceSpec | None = None
    label_key_spec: ColumnSpec | None = None
    example_weight_key_spec: ColumnSpec | None = None
    predicted_label_key_spec: ColumnSpec | None = None
    predicted_label_id_key_spec: ColumnSpec | None = None
    predicted_score_key_spec: ColumnSpec | None = None
    labels: list[str] = Field(default_factory=list)
    quantiles: list[float] = Field(default_factory=list)
    quantile_index: int = 0

    @property
    def problem_type(self) -> ProblemType:
        """Evaluation kind implied by which fields are populated."""
        if self.quantiles:
            return ProblemType.FORECASTING
        if (
            self.labels
            or self.predicted_label_key_spec is not None
            or self.predicted_label_id_key_spec is not None
        ):
            return ProblemType.CLASSIFICATION
        return ProblemType.REGRESSION


class FeatureValueSpec(_ConfigModel):
    """A slice restricted to one value of one feature."""

    name_spec: ColumnSpec
    value: str


class SlicingSpec(_ConfigModel):
    """How the data is sliced. An empty spec denotes overall metrics.

    Attributes:
        feature_key_specs: Features partitioned by every observed value.
        feature_values: Explicit (feature, value) slices.
    """

    feature_key_specs: list[ColumnSpec] = Field(default_factory=list)
    feature_values: list[FeatureValueSpec] = Field(default_factory=list)


class PluginMetricConfig(_ConfigModel):
    """Reference to a registered metric implementation.

    Attributes:
        module_name: Module path the metric is registered under.
        class_name: Class path within that module.
        config: JSON-encoded construction parameters.
    """

    module_name: str
    class_name: str
    config: str = ""


class MetricConfig(_ConfigModel):
    """A named metric computed by a plugin."""

    name: str = Field(min_length=1)
    plugin: PluginMetricConfig


class Binarization(_ConfigModel):
    """Turn a multi-class problem into binary ones.

    Attributes:
        class_ids: Classes evaluated one-vs-rest.
        top_k_list: Values of k for "ground truth within top-k" problems.
    """

    class_ids: list[str] = Field(default_factory=list)
    top_k_list: list[int] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.class_ids and not self.top_k_list


class MicroAverage(_ConfigModel):
    """Aggregate by treating every example equally."""

    type: Literal["micro"] = "micro"


class MacroAverage(_ConfigModel):
    """Aggregate by treating every class equally.

    Attributes:
        class_weights: Weight per class, keyed by index into
            ``DataSpec.labels``. Unlisted classes weigh 1.
    """

    type: Literal["macro"] = "macro"
    class_weights: dict[int, float] = Field(default_factory=dict)


Aggregation = Annotated[MicroAverage | MacroAverage, Field(discriminator="type")]


class MetricsSpec(_ConfigModel):
    """A set of metrics computed with shared binarization and aggregation."""

    metrics: list[MetricConfig] = Field(default_factory=list)
    binarize: Binarization = Field(default_factory=Binarization)
    aggregate: Aggregation | None = None
    model_names: list[str] = Field(default_factory=list)


class ExecutionSpec(_ConfigModel):
    """Execution settings.

    Attributes:
        mode: Execution environment, consumed by external orchestration.
        max_workers: Worker threads used for per-slice evaluation.
    """

    mode: ExecutionMode = ExecutionMode.LOCAL
    max_workers: int = Field(default=1, ge=1)


class OutputSpec(_ConfigModel):
    """Where computed metrics are written (``.json`` or ``.jsonl``)."""

    output_path: str | None = None


class EvaluationConfig(_ConfigModel):
    """Root configuration of one evaluation run."""

    name: str = ""
    data_spec: DataSpec = Field(default_factory=DataSpec)
    slicing_specs: list[SlicingSpec] = Field(default_factory=list)
    metrics_specs: list[MetricsSpec] = Field(default_factory=list)
    execution_spec: ExecutionSpec = Field(default_factory=ExecutionSpec)
    output_spec: OutputSpec = Field(default_factory=OutputSpec)


def load_evaluation_config(path: Path) -> EvaluationConfig:
    """Load an evaluation configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        Validated EvaluationConfig.

    Raises:
        FileNotFoundError: If the config file does not exist.
        pydantic.ValidationError: If the file does not match the schema.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return EvaluationConfig.model_validate(data or {})
