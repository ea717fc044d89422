"""Metric plugin registry, runner and built-in plugins."""
from flexeval.plugins import builtin  # noqa: F401  registers built-ins
from flexeval.plugins.base import MetricPlugin, NoParams
from flexeval.plugins.registry import MetricRegistry, default_registry, register_metric
from flexeval.plugins.runner import PluginRunner, PreparedMetric

__all__ = [
    "MetricPlugin",
    "MetricRegistry",
    "NoParams",
    "PluginRunner",
    "PreparedMetric",
    "default_registry",
    "register_metric",
]
