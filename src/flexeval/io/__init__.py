"""flexeval I/O module: JSON-lines ingestion and result writing."""
from flexeval.io.readers import read_jsonl
from flexeval.io.writers import write_sliced_metrics

__all__ = [
    "read_jsonl",
    "write_sliced_metrics",
]
