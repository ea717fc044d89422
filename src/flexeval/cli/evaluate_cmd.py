"""flexeval evaluate: compute sliced metrics for a JSON-lines dataset."""
from __future__ import annotations

from pathlib import Path

import structlog
import typer
from pydantic import ValidationError

from flexeval.config import EvaluationConfig, load_evaluation_config
from flexeval.core.exceptions import FlexEvalError
from flexeval.evaluation.engine import EvaluationEngine
from flexeval.evaluation.models import (
    ClassificationEvaluationMetrics,
    ClassIdDescriptor,
    ForecastingEvaluationMetrics,
    RegressionEvaluationMetrics,
    SlicedMetrics,
    TopKDescriptor,
)
from flexeval.io.readers import read_jsonl
from flexeval.io.writers import write_sliced_metrics

logger = structlog.get_logger(__name__)

evaluate_app = typer.Typer(help="Compute sliced evaluation metrics.")


def load_config_or_exit(path: Path) -> EvaluationConfig:
    """Load a config file, turning load errors into CLI errors.

    Raises:
        typer.BadParameter: If the file does not exist.
        typer.Exit: If the file does not match the config schema.
    """
    try:
        return load_evaluation_config(path)
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except ValidationError as exc:
        typer.echo(f"Error: invalid config {path}:\n{exc}", err=True)
        raise typer.Exit(code=1) from exc


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.4f}"


def summarize(entry: SlicedMetrics) -> str:
    """One-line summary of an entry for terminal output."""
    label = str(entry.slice_key)
    if entry.model_name:
        label += f" [{entry.model_name}]"
    match entry.class_descriptor:
        case ClassIdDescriptor(class_id=class_id):
            label += f" (class={class_id})"
        case TopKDescriptor(k=k):
            label += f" (top-{k})"
    if entry.aggregation is not None:
        label += f" ({entry.aggregation}-avg)"

    match entry.metrics:
        case ClassificationEvaluationMetrics(au_prc=au_prc, au_roc=au_roc, log_loss=loss):
            detail = f"AUPRC={au_prc:.4f} AUROC={au_roc:.4f} LogLoss={loss:.4f}"
        case RegressionEvaluationMetrics() | ForecastingEvaluationMetrics():
            m = entry.metrics
            detail = (
                f"RMSE={_fmt(m.root_mean_squared_error)} "
                f"MAE={_fmt(m.mean_absolute_error)} R2={_fmt(m.r_squared)}"
            )
    return f"  {label}: {detail}"


@evaluate_app.callback(invoke_without_command=True)
def evaluate(
    ctx: typer.Context,  # noqa: ARG001
    config: Path = typer.Option(  # noqa: B008
        ..., "--config", "-c", help="Evaluation config (YAML or JSON)"
    ),
    inputs: list[str] | None = typer.Option(  # noqa: B008
        None, "--input", "-i", help="JSON-lines file or glob (overrides config)"
    ),
    output: Path | None = typer.Option(  # noqa: B008
        None, "--output", "-o", help="Output file (.json or .jsonl)"
    ),
    workers: int | None = typer.Option(  # noqa: B008
        None, "--workers", "-w", min=1, help="Worker threads for slice evaluation"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate inputs only"),  # noqa: B008
) -> None:
    """Evaluate predictions against ground truth and write sliced metrics."""
    cfg = load_config_or_exit(config)

    patterns = list(inputs or [])
    source = cfg.data_spec.input_source_spec
    if not patterns and source is not None and source.jsonl_file_spec is not None:
        patterns = list(source.jsonl_file_spec.file_names)
    if not patterns:
        raise typer.BadParameter(
            "No input files: pass --input or set data_spec.input_source_spec"
        )

    try:
        batch = read_jsonl(patterns)
    except (FlexEvalError, FileNotFoundError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Loaded {len(batch)} rows from {len(patterns)} input pattern(s)")

    engine = EvaluationEngine(cfg, max_workers=workers)
    try:
        if dry_run:
            plan = engine.validate(batch)
            typer.echo(
                f"Dry run: {plan.problem_type} config validated against "
                f"{len(batch)} rows."
            )
            return
        result = engine.run(batch)
    except FlexEvalError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    out_path = output or (
        Path(cfg.output_spec.output_path) if cfg.output_spec.output_path else None
    )
    if out_path is not None:
        try:
            write_sliced_metrics(result, out_path)
        except FlexEvalError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        typer.echo(f"Metrics saved to {out_path}")
        logger.info(
            "cli_metrics_saved",
            path=str(out_path),
            entries=len(result.sliced_metrics),
        )

    typer.echo(f"\n--- {cfg.name or 'Evaluation'}: {len(result.sliced_metrics)} entries ---")
    for entry in result.sliced_metrics:
        typer.echo(summarize(entry))
