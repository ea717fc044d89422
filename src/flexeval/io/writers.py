"""Write sliced metrics to JSON or JSON-lines files."""
from __future__ import annotations

from pathlib import Path

import structlog

from flexeval.core.exceptions import UnsupportedFormatError
from flexeval.evaluation.models import SlicedMetricsSet

logger = structlog.get_logger(__name__)

SUPPORTED_WRITE_FORMATS = {".json", ".jsonl"}


def write_sliced_metrics(result: SlicedMetricsSet, path: Path) -> Path:
    """Serialize ``result`` to ``path``.

    ``.json`` writes the whole collection as one document; ``.jsonl`` writes
    one SlicedMetrics object per line. Output is deterministic for identical
    results.

    Args:
        result: Metrics returned by the engine.
        path: Output file path.

    Returns:
        Path to the written file.

    Raises:
        UnsupportedFormatError: If the extension is not .json or .jsonl.
    """
    path = Path(path)
    ext = path.suffix.lower()
    if ext not in SUPPORTED_WRITE_FORMATS:
        raise UnsupportedFormatError(ext, sorted(SUPPORTED_WRITE_FORMATS))

    path.parent.mkdir(parents=True, exist_ok=True)
    if ext == ".json":
        path.write_text(result.model_dump_json(indent=2) + "\n", encoding="utf-8")
    else:
        lines = [entry.model_dump_json() for entry in result.sliced_metrics]
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")

    logger.info(
        "write_sliced_metrics",
        path=str(path),
        format=ext.lstrip("."),
        n_entries=len(result.sliced_metrics),
    )
    return path
