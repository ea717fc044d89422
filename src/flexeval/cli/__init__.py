"""flexeval CLI: Typer application."""
from __future__ import annotations

import typer

from flexeval.cli.evaluate_cmd import evaluate_app
from flexeval.cli.validate_cmd import validate

app = typer.Typer(
    name="flexeval",
    help="flexeval: sliced model-evaluation metrics.",
    add_completion=False,
)


@app.callback()
def main() -> None:
    """flexeval: sliced model-evaluation metrics."""


app.add_typer(evaluate_app, name="evaluate")
app.command(name="validate")(validate)
