"""Abstract base class for metric plugins."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from flexeval.data.batch import ResolvedColumns


class NoParams(BaseModel):
    """Parameters of a plugin that takes none."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class MetricPlugin(ABC):
    """A metric computed outside the core evaluators.

    Subclasses declare the shape of their JSON configuration as a pydantic
    model in ``params_model``; the validated instance is passed to the
    constructor. ``compute`` receives the resolved columns of one slice and
    returns a scalar or a JSON-compatible structure.
    """

    params_model: ClassVar[type[BaseModel]] = NoParams

    def __init__(self, params: BaseModel) -> None:
        self.params = params

    @abstractmethod
    def compute(self, columns: ResolvedColumns) -> Any:
        """Compute the metric over one slice.

        Args:
            columns: Resolved columns restricted to the slice.

        Returns:
            Scalar, list or dict result.
        """
