"""JSON-lines reader: resolve local file patterns into a RecordBatch."""
from __future__ import annotations

import glob
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from flexeval.core.exceptions import RecordParseError, UnsupportedSourceError
from flexeval.data.batch import RecordBatch

logger = structlog.get_logger(__name__)


def expand_patterns(patterns: Sequence[str]) -> list[Path]:
    """Expand file names and glob patterns into existing local files.

    Each pattern expands in sorted order; patterns keep their given order and
    a file matched twice is read once.

    Raises:
        UnsupportedSourceError: If a pattern is a remote URI.
        FileNotFoundError: If a pattern matches no file.
    """
    paths: dict[Path, None] = {}
    for pattern in patterns:
        if "://" in pattern:
            raise UnsupportedSourceError(pattern)
        matches = sorted(glob.glob(pattern))
        if not matches:
            raise FileNotFoundError(f"No input files match: {pattern}")
        for match in matches:
            paths.setdefault(Path(match), None)
    return list(paths)


def _read_file(path: Path) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                raise RecordParseError(str(path), line_no, f"invalid JSON: {exc.msg}") from exc
            if not isinstance(row, dict):
                raise RecordParseError(str(path), line_no, "expected a JSON object")
            rows.append(row)
    return rows


def read_jsonl(patterns: Sequence[str] | str) -> RecordBatch:
    """Read JSON-lines files into one RecordBatch.

    Args:
        patterns: File names or glob patterns (e.g. ``data/part-*.jsonl``).

    Returns:
        RecordBatch with rows in file order, then line order.

    Raises:
        UnsupportedSourceError: If a pattern is a remote URI.
        FileNotFoundError: If a pattern matches no file.
        RecordParseError: If a line is not a JSON object.
    """
    if isinstance(patterns, str):
        patterns = [patterns]
    rows: list[dict[str, Any]] = []
    paths = expand_patterns(patterns)
    for path in paths:
        rows.extend(_read_file(path))
    logger.info("read_jsonl", n_files=len(paths), n_rows=len(rows))
    return RecordBatch.from_rows(rows)
