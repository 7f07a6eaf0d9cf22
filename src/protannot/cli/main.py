"""
Main CLI entry point for protannot.

Provides subcommands for the batch annotation pipeline:
- annotate: Run the pipeline or parse existing BLAST output
- store: Create the record store schema and import reference tables
"""

from __future__ import annotations

import typer
from rich import print as rprint

from protannot import __version__

app = typer.Typer(
    name="protannot",
    help="Batch BLAST homology annotation of protein records",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"protannot version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Protannot: batch BLAST homology annotation of protein records.

    Proteins without curated annotation are aligned against a reference
    database in batches; the consensus taxon of the selected hits and the
    best hit's description are written back to the record store.
    """


# Import subcommands
from protannot.cli import annotate, store

# Register subcommands
app.add_typer(annotate.app, name="annotate")
app.add_typer(store.app, name="store")


if __name__ == "__main__":
    app()
