"""Registry mapping (module path, class path) keys to metric plugins."""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from flexeval.core.exceptions import InvalidMetricConfig, UnknownMetric
from flexeval.plugins.base import MetricPlugin

logger = structlog.get_logger(__name__)

PluginKey = tuple[str, str]


class MetricRegistry:
    """Load-time registry of metric plugin classes."""

    def __init__(self) -> None:
        self._plugins: dict[PluginKey, type[MetricPlugin]] = {}

    def register(
        self,
        module_path: str,
        class_path: str,
        plugin_cls: type[MetricPlugin],
        replace: bool = False,
    ) -> None:
        """Register ``plugin_cls`` under ``(module_path, class_path)``.

        Raises:
            ValueError: If the key is taken and ``replace`` is False.
        """
        key = (module_path, class_path)
        if key in self._plugins and not replace:
            raise ValueError(f"Metric already registered: {module_path}.{class_path}")
        self._plugins[key] = plugin_cls
        logger.debug("metric_registered", module_path=module_path, class_path=class_path)

    def get(self, module_path: str, class_path: str) -> type[MetricPlugin]:
        """Look up a plugin class.

        Raises:
            UnknownMetric: If nothing is registered for the pair.
        """
        plugin_cls = self._plugins.get((module_path, class_path))
        if plugin_cls is None:
            raise UnknownMetric(
                f"No metric registered for '{module_path}.{class_path}'. "
                f"Available: {', '.join(f'{m}.{c}' for m, c in self._plugins) or 'none'}",
                module_path=module_path,
                class_path=class_path,
            )
        return plugin_cls

    def create(self, module_path: str, class_path: str, json_config: str) -> MetricPlugin:
        """Instantiate a plugin from its JSON configuration.

        Args:
            module_path: Registered module path.
            class_path: Registered class path.
            json_config: JSON object with construction parameters ("" = none).

        Returns:
            Configured plugin instance.

        Raises:
            UnknownMetric: If nothing is registered for the pair.
            InvalidMetricConfig: If the JSON does not parse or does not
                satisfy the plugin's parameter model.
        """
        plugin_cls = self.get(module_path, class_path)
        try:
            raw: Any = json.loads(json_config) if json_config.strip() else {}
        except json.JSONDecodeError as exc:
            raise InvalidMetricConfig(
                f"Config for '{module_path}.{class_path}' is not valid JSON: {exc}",
                module_path=module_path,
                class_path=class_path,
            ) from exc
        if not isinstance(raw, dict):
            raise InvalidMetricConfig(
                f"Config for '{module_path}.{class_path}' must be a JSON object",
                module_path=module_path,
                class_path=class_path,
            )
        try:
            params = plugin_cls.params_model.model_validate(raw)
        except ValidationError as exc:
            raise InvalidMetricConfig(
                f"Config for '{module_path}.{class_path}' is invalid: {exc}",
                module_path=module_path,
                class_path=class_path,
            ) from exc
        return plugin_cls(params)

    def __contains__(self, key: object) -> bool:
        return key in self._plugins

    def keys(self) -> list[PluginKey]:
        return list(self._plugins)


default_registry = MetricRegistry()


def register_metric(
    module_path: str,
    class_path: str,
    registry: MetricRegistry | None = None,
) -> Callable[[type[MetricPlugin]], type[MetricPlugin]]:
    """Class decorator registering a plugin (in the default registry by default)."""

    def _decorator(plugin_cls: type[MetricPlugin]) -> type[MetricPlugin]:
        (registry or default_registry).register(module_path, class_path, plugin_cls)
        return plugin_cls

    return _decorator
