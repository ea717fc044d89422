"""Prepare and run plugin metrics with per-invocation error isolation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import structlog

from flexeval.config import MetricConfig
from flexeval.core.exceptions import InvalidMetricConfig, UnknownMetric
from flexeval.data.batch import ResolvedColumns
from flexeval.evaluation.models import PluginFailure, PluginMetricResult
from flexeval.plugins.base import MetricPlugin
from flexeval.plugins.registry import MetricRegistry, default_registry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PreparedMetric:
    """A named, configured plugin ready to compute.

    ``plugin`` is the instance validated at preparation time. Each
    computation runs on a fresh instance built from its (frozen) params,
    so plugins never share state across slices or threads.
    """

    name: str
    plugin: MetricPlugin

    def instantiate(self) -> MetricPlugin:
        return type(self.plugin)(self.plugin.params)


def to_builtin(value: Any) -> Any:
    """Convert numpy scalars and arrays (recursively) to JSON-friendly types."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {str(k): to_builtin(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_builtin(v) for v in value]
    return value


class PluginRunner:
    """Resolve plugin metrics through a registry and compute them safely.

    Args:
        registry: Registry to resolve metrics from (default registry if None).
    """

    def __init__(self, registry: MetricRegistry | None = None) -> None:
        self._registry = registry or default_registry

    def prepare(self, metric_config: MetricConfig) -> PreparedMetric:
        """Instantiate the plugin behind ``metric_config``.

        Raises:
            UnknownMetric: If the plugin is not registered.
            InvalidMetricConfig: If its JSON configuration is invalid.
        """
        plugin = self._registry.create(
            metric_config.plugin.module_name,
            metric_config.plugin.class_name,
            metric_config.plugin.config,
        )
        return PreparedMetric(name=metric_config.name, plugin=plugin)

    def compute(self, prepared: PreparedMetric, columns: ResolvedColumns) -> PluginMetricResult:
        """Compute one prepared metric; failures are returned, not raised."""
        try:
            value = prepared.instantiate().compute(columns)
        except UnknownMetric as exc:
            return self._failure(prepared.name, "UnknownMetric", exc)
        except Exception as exc:  # noqa: BLE001
            return self._failure(prepared.name, "InvalidMetricConfig", exc)
        return PluginMetricResult(value=to_builtin(value))

    def run(
        self,
        name: str,
        module_path: str,
        class_path: str,
        json_config: str,
        columns: ResolvedColumns,
    ) -> PluginMetricResult:
        """Resolve, configure and compute a metric in one call.

        Unlike ``prepare``, lookup and configuration errors are reported in
        the returned result rather than raised.
        """
        try:
            plugin = self._registry.create(module_path, class_path, json_config)
        except UnknownMetric as exc:
            return self._failure(name, "UnknownMetric", exc)
        except InvalidMetricConfig as exc:
            return self._failure(name, "InvalidMetricConfig", exc)
        return self.compute(PreparedMetric(name=name, plugin=plugin), columns)

    @staticmethod
    def _failure(name: str, error_type: str, exc: Exception) -> PluginMetricResult:
        logger.warning("plugin_failed", metric=name, error_type=error_type, error=str(exc))
        return PluginMetricResult(
            error=PluginFailure(error_type=error_type, message=str(exc))
        )
