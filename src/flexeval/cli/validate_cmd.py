"""flexeval validate: check a config file without reading data."""
from __future__ import annotations

from pathlib import Path

import typer

from flexeval.cli.evaluate_cmd import load_config_or_exit
from flexeval.core.exceptions import FlexEvalError
from flexeval.evaluation.engine import EvaluationEngine


def validate(
    config: Path = typer.Argument(..., help="Evaluation config (YAML or JSON)"),  # noqa: B008
) -> None:
    """Validate an evaluation config: schema, binarization, weights, plugins."""
    cfg = load_config_or_exit(config)
    try:
        plan = EvaluationEngine(cfg).plan()
    except FlexEvalError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    n_metrics = sum(len(p) for p in plan.prepared_metrics)
    typer.echo(f"Config OK: {cfg.name or config.name}")
    typer.echo(f"  Problem type:   {plan.problem_type}")
    typer.echo(f"  Slicing specs:  {len(cfg.slicing_specs)}")
    typer.echo(f"  Metrics specs:  {len(plan.metrics_specs)}")
    typer.echo(f"  Plugin metrics: {n_metrics}")
