"""Evaluation module: slicing, metric computation and result assembly."""
from __future__ import annotations

from flexeval.evaluation.aggregator import aggregate
from flexeval.evaluation.assembler import SliceResult, assemble
from flexeval.evaluation.binarizer import binarize, prepare_classification, score_items
from flexeval.evaluation.engine import EvaluationEngine, EvaluationPlan, evaluate
from flexeval.evaluation.models import (
    OVERALL_SLICE,
    ClassificationEvaluationMetrics,
    ClassIdDescriptor,
    ConfidenceMetrics,
    ConfusionMatrix,
    ForecastingEvaluationMetrics,
    PluginMetricResult,
    RegressionEvaluationMetrics,
    SlicedMetrics,
    SlicedMetricsSet,
    SliceKey,
    TopKDescriptor,
)
from flexeval.evaluation.regression import evaluate_forecasting, evaluate_regression
from flexeval.evaluation.slicer import slice_batch
from flexeval.evaluation.threshold_sweep import (
    CONFIDENCE_THRESHOLDS,
    ThresholdSweepEvaluator,
)

__all__ = [
    "CONFIDENCE_THRESHOLDS",
    "OVERALL_SLICE",
    "ClassIdDescriptor",
    "ClassificationEvaluationMetrics",
    "ConfidenceMetrics",
    "ConfusionMatrix",
    "EvaluationEngine",
    "EvaluationPlan",
    "ForecastingEvaluationMetrics",
    "PluginMetricResult",
    "RegressionEvaluationMetrics",
    "SliceKey",
    "SliceResult",
    "SlicedMetrics",
    "SlicedMetricsSet",
    "ThresholdSweepEvaluator",
    "TopKDescriptor",
    "aggregate",
    "assemble",
    "binarize",
    "evaluate",
    "evaluate_forecasting",
    "evaluate_regression",
    "prepare_classification",
    "score_items",
    "slice_batch",
]
