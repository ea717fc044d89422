"""flexeval: sliced metrics engine for model evaluation.

Computes classification, regression and forecasting metrics over a dataset
of predictions and ground truth, optionally sliced by feature values and
binarized / aggregated across classes.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flexeval")
except PackageNotFoundError:
    # Fallback for source-only usage before installation.
    __version__ = "0.3.0"
__license__ = "Apache-2.0"
