"""Evaluation orchestrator: validate, slice, evaluate and assemble.

The engine validates the whole configuration against the batch before any
per-row work, then evaluates every slice independently (optionally on a
thread pool) and assembles the results in slicer order.
"""
from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import structlog
from numpy.typing import NDArray

from flexeval.config import EvaluationConfig, MetricsSpec
from flexeval.core.enums import AggregationKind, ProblemType
from flexeval.core.exceptions import InvalidMetricConfig, InvalidQuantileIndex
from flexeval.data.batch import RecordBatch, ResolvedColumns, check_columns, resolve_columns
from flexeval.evaluation.aggregator import aggregate, validate_class_weights
from flexeval.evaluation.assembler import SliceResult, assemble
from flexeval.evaluation.binarizer import (
    ClassificationRows,
    binarize,
    prepare_classification,
    score_items,
    validate_binarization,
)
from flexeval.evaluation.models import (
    ClassDescriptor,
    ModelEvaluationMetrics,
    SlicedMetrics,
    SlicedMetricsSet,
    SliceKey,
)
from flexeval.evaluation.regression import (
    RegressionRows,
    evaluate_forecasting,
    evaluate_regression,
    prepare_forecasting,
    prepare_regression,
)
from flexeval.evaluation.slicer import slice_batch, validate_slicing_specs
from flexeval.evaluation.threshold_sweep import ThresholdSweepEvaluator
from flexeval.plugins.registry import MetricRegistry
from flexeval.plugins.runner import PluginRunner, PreparedMetric

logger = structlog.get_logger(__name__)

_Entry = tuple[ClassDescriptor | None, AggregationKind | None, ModelEvaluationMetrics]


@dataclass(frozen=True)
class _ModelInputs:
    """Whole-batch inputs of one model, restricted per slice with ``take``."""

    columns: ResolvedColumns
    rows: ClassificationRows | RegressionRows


@dataclass(frozen=True)
class EvaluationPlan:
    """Validated work for one run.

    Attributes:
        problem_type: Evaluation kind for every entry.
        metrics_specs: Specs to evaluate (a default spec if none configured).
        prepared_metrics: Plugin instances per spec, in config order.
    """

    problem_type: ProblemType
    metrics_specs: tuple[MetricsSpec, ...]
    prepared_metrics: tuple[tuple[PreparedMetric, ...], ...]

    def model_names(self, spec: MetricsSpec) -> list[str | None]:
        return list(spec.model_names) or [None]

    @property
    def all_models(self) -> list[str | None]:
        seen: dict[str | None, None] = {}
        for spec in self.metrics_specs:
            for model in self.model_names(spec):
                seen.setdefault(model, None)
        return list(seen)


class EvaluationEngine:
    """Compute sliced metrics for a record batch.

    Args:
        config: Evaluation configuration.
        registry: Plugin registry (default registry if None).
        max_workers: Worker threads; defaults to
            ``config.execution_spec.max_workers``.
    """

    def __init__(
        self,
        config: EvaluationConfig,
        registry: MetricRegistry | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.config = config
        self._runner = PluginRunner(registry)
        self._max_workers = max_workers or config.execution_spec.max_workers
        self._evaluator = ThresholdSweepEvaluator()

    def plan(self) -> EvaluationPlan:
        """Validate the parts of the configuration that need no data.

        Returns:
            The validated EvaluationPlan.

        Raises:
            InvalidClassId: If a binarization class id or k is unusable.
            InvalidWeight: If an aggregation weight is invalid.
            InvalidQuantileIndex: If ``quantile_index`` is out of range.
            UnknownMetric: If a plugin is not registered.
            InvalidMetricConfig: If a plugin config is invalid or a metric
                name repeats within a spec.
        """
        data_spec = self.config.data_spec
        problem_type = data_spec.problem_type
        specs = tuple(self.config.metrics_specs) or (MetricsSpec(),)

        if problem_type is ProblemType.FORECASTING:
            n_quantiles = len(data_spec.quantiles)
            if not -1 <= data_spec.quantile_index < n_quantiles:
                raise InvalidQuantileIndex(data_spec.quantile_index, n_quantiles)

        prepared: list[tuple[PreparedMetric, ...]] = []
        for index, spec in enumerate(specs):
            self._validate_binarization(index, spec, problem_type)
            prepared.append(self._prepare_metrics(spec))

        return EvaluationPlan(
            problem_type=problem_type,
            metrics_specs=specs,
            prepared_metrics=tuple(prepared),
        )

    def validate(self, batch: RecordBatch) -> EvaluationPlan:
        """Check the configuration against ``batch`` without evaluating.

        Raises:
            ColumnNotFound: If a configured column is absent.
            InvalidSliceSpec: If a slicing feature is absent.
            ConfigurationError: On any failure raised by ``plan``.
        """
        plan = self.plan()
        validate_slicing_specs(batch, self.config.slicing_specs)
        for spec in plan.metrics_specs:
            for model in plan.model_names(spec):
                check_columns(batch, self.config.data_spec, model)
        return plan

    def _validate_binarization(
        self, index: int, spec: MetricsSpec, problem_type: ProblemType
    ) -> None:
        labels = self.config.data_spec.labels
        if problem_type is not ProblemType.CLASSIFICATION:
            if not spec.binarize.is_empty or spec.aggregate is not None:
                logger.warning(
                    "binarization_ignored", spec_index=index, problem_type=problem_type
                )
            return
        validate_binarization(spec.binarize, labels)
        if spec.aggregate is None:
            return
        if spec.binarize.is_empty:
            logger.warning("aggregation_without_binarization", spec_index=index)
            return
        validate_class_weights(spec.aggregate, labels, spec.binarize.class_ids)

    def _prepare_metrics(self, spec: MetricsSpec) -> tuple[PreparedMetric, ...]:
        names: set[str] = set()
        prepared = []
        for metric in spec.metrics:
            if metric.name in names:
                raise InvalidMetricConfig(
                    f"Metric name '{metric.name}' is used twice in one metrics spec",
                    module_path=metric.plugin.module_name,
                    class_path=metric.plugin.class_name,
                )
            names.add(metric.name)
            prepared.append(self._runner.prepare(metric))
        return tuple(prepared)

    def _model_inputs(
        self, batch: RecordBatch, plan: EvaluationPlan
    ) -> dict[str | None, _ModelInputs]:
        data_spec = self.config.data_spec
        inputs: dict[str | None, _ModelInputs] = {}
        for model in plan.all_models:
            columns = resolve_columns(batch, data_spec, model)
            rows: ClassificationRows | RegressionRows
            match plan.problem_type:
                case ProblemType.CLASSIFICATION:
                    rows = prepare_classification(columns, data_spec.labels)
                case ProblemType.REGRESSION:
                    rows = prepare_regression(columns)
                case ProblemType.FORECASTING:
                    rows = prepare_forecasting(columns, len(data_spec.quantiles))
            inputs[model] = _ModelInputs(columns=columns, rows=rows)
        return inputs

    def _metrics_entries(self, spec: MetricsSpec, rows: Any) -> list[_Entry]:
        data_spec = self.config.data_spec
        if isinstance(rows, RegressionRows):
            if data_spec.problem_type is ProblemType.FORECASTING:
                metrics: ModelEvaluationMetrics = evaluate_forecasting(
                    rows, data_spec.quantiles, data_spec.quantile_index
                )
            else:
                metrics = evaluate_regression(rows)
            return [(None, None, metrics)]

        if spec.binarize.is_empty:
            return [(None, None, self._evaluator.evaluate(score_items(rows)))]

        per_class = [
            (problem.descriptor, self._evaluator.evaluate(problem.to_items()))
            for problem in binarize(rows, spec.binarize)
        ]
        if spec.aggregate is None:
            return [(descriptor, None, m) for descriptor, m in per_class]
        summary = aggregate(per_class, spec.aggregate, data_spec.labels)
        return [(None, AggregationKind(spec.aggregate.type), summary)]

    def _evaluate_slice(
        self,
        plan: EvaluationPlan,
        inputs: dict[str | None, _ModelInputs],
        position: int,
        slice_key: SliceKey,
        indices: NDArray[Any],
    ) -> SliceResult:
        entries: list[SlicedMetrics] = []
        for spec_index, spec in enumerate(plan.metrics_specs):
            for model in plan.model_names(spec):
                model_inputs = inputs[model]
                columns = model_inputs.columns.take(indices)
                custom = {
                    prepared.name: self._runner.compute(prepared, columns)
                    for prepared in plan.prepared_metrics[spec_index]
                }
                for descriptor, aggregation, metrics in self._metrics_entries(
                    spec, model_inputs.rows.take(indices)
                ):
                    entries.append(
                        SlicedMetrics(
                            slice_key=slice_key,
                            model_name=model,
                            spec_index=spec_index,
                            class_descriptor=descriptor,
                            aggregation=aggregation,
                            metrics=metrics,
                            custom_metrics=custom,
                        )
                    )
        return SliceResult(position=position, slice_key=slice_key, entries=tuple(entries))

    def run(self, batch: RecordBatch) -> SlicedMetricsSet:
        """Evaluate ``batch`` and return its sliced metrics.

        Raises:
            ConfigurationError: If validation fails (no metrics are computed).
            ColumnResolutionError: If a column is missing or malformed.
        """
        plan = self.validate(batch)
        logger.info(
            "evaluation_started",
            name=self.config.name,
            n_rows=len(batch),
            problem_type=plan.problem_type,
            n_specs=len(plan.metrics_specs),
        )
        inputs = self._model_inputs(batch, plan)
        slices = slice_batch(batch, self.config.slicing_specs)

        def _work(item: tuple[int, tuple[SliceKey, NDArray[Any]]]) -> SliceResult:
            position, (slice_key, indices) = item
            return self._evaluate_slice(plan, inputs, position, slice_key, indices)

        work = list(enumerate(slices))
        if self._max_workers > 1 and len(work) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                results: Sequence[SliceResult] = list(pool.map(_work, work))
        else:
            results = [_work(item) for item in work]

        result = assemble(self.config.name, results, plan.problem_type)
        logger.info(
            "evaluation_complete",
            name=self.config.name,
            n_slices=len(slices),
            n_entries=len(result.sliced_metrics),
        )
        return result


def evaluate(
    batch: RecordBatch,
    config: EvaluationConfig,
    registry: MetricRegistry | None = None,
) -> SlicedMetricsSet:
    """Run one evaluation with a fresh engine."""
    return EvaluationEngine(config, registry=registry).run(batch)
