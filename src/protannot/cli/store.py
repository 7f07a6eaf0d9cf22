"""
Store command: prepare the record store used by the annotation pipeline.

Creates the schema and bulk-loads the taxonomy and the accession to
taxon reference table from CSV, TSV or Parquet files.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import polars as pl
import typer
from rich.console import Console
from sqlalchemy.exc import IntegrityError

from protannot.cli.utils import QuietConsole, spinner_progress
from protannot.core.io_utils import read_dataframe, require_columns
from protannot.db.engine import create_engine, create_session_factory, init_schema, session_scope
from protannot.db.store import import_references, import_taxonomy

app = typer.Typer(
    name="store",
    help="Create and populate the record store",
    no_args_is_help=True,
)

console = Console()

DEFAULT_DB_URL = "sqlite:///protannot.db"

TAXONOMY_SCHEMA = {
    "taxon_id": pl.Int64,
    "parent_id": pl.Int64,
    "rank": pl.Utf8,
    "name": pl.Utf8,
}

REFERENCE_SCHEMA = {
    "accession": pl.Utf8,
    "taxon_id": pl.Int64,
    "description": pl.Utf8,
}


def _load_table(
    path: Path,
    schema: dict[str, pl.DataType],
    required: list[str],
) -> list[dict[str, Any]]:
    """Read a table, check required columns and return rows with every schema column.

    Rows with a missing required value are dropped; for duplicate keys the
    first row wins.
    """
    df = read_dataframe(path)
    require_columns(df, required, path)

    df = df.with_columns(
        pl.col(column).cast(dtype) if column in df.columns
        else pl.lit(None, dtype=dtype).alias(column)
        for column, dtype in schema.items()
    )
    return (
        df.select(list(schema))
        .filter(pl.all_horizontal(pl.col(column).is_not_null() for column in required))
        .unique(subset=[required[0]], keep="first", maintain_order=True)
        .to_dicts()
    )


def _import(
    kind: str,
    path: Path,
    db_url: str,
    replace: bool,
    quiet: bool,
    schema: dict[str, pl.DataType],
    required: list[str],
    loader: Callable[..., int],
) -> int:
    out = QuietConsole(console, quiet=quiet)

    try:
        rows = _load_table(path, schema, required)
    except (ValueError, pl.exceptions.PolarsError) as e:
        console.print(f"[red]Error: Cannot read {kind} table: {e}[/red]")
        raise typer.Exit(code=1) from None

    engine = create_engine(db_url)
    init_schema(engine)
    with session_scope(create_session_factory(engine)) as session:
        with spinner_progress(f"Importing {len(rows):,} {kind} rows...", console, quiet):
            try:
                count = loader(session, rows, replace=replace)
            except IntegrityError as e:
                session.rollback()
                console.print(f"[red]Error: {kind} rows conflict with existing data:[/red] {e.orig}")
                console.print("[dim]Use --replace to overwrite the existing table.[/dim]")
                raise typer.Exit(code=1) from None
    engine.dispose()

    out.print(f"[green]Imported {count:,} {kind} rows into {db_url}[/green]")
    return count


@app.command(name="init")
def init_store(
    db_url: str = typer.Option(
        DEFAULT_DB_URL,
        "--db-url",
        help="SQLAlchemy URL of the record store",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Create the record store tables (existing tables are left untouched).

    Example:

        protannot store init --db-url sqlite:///proteins.db
    """
    out = QuietConsole(console, quiet=quiet)
    engine = create_engine(db_url)
    init_schema(engine)
    engine.dispose()
    out.print(f"[green]Record store schema ready: {db_url}[/green]")


@app.command(name="import-taxonomy")
def import_taxonomy_table(
    table: Path = typer.Argument(
        ...,
        help="Taxonomy table with columns taxon_id, parent_id, rank, name (.tsv, .csv or .parquet)",
        exists=True,
        dir_okay=False,
    ),
    db_url: str = typer.Option(
        DEFAULT_DB_URL,
        "--db-url",
        help="SQLAlchemy URL of the record store",
    ),
    replace: bool = typer.Option(
        False,
        "--replace",
        help="Delete the existing taxonomy first",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Bulk-load taxonomy nodes into the record store.

    Only taxon_id is required; roots have an empty parent_id (or their own
    id, as in NCBI nodes.dmp).

    Example:

        protannot store import-taxonomy nodes.tsv --db-url sqlite:///proteins.db
    """
    _import(
        "taxonomy",
        table,
        db_url,
        replace,
        quiet,
        TAXONOMY_SCHEMA,
        ["taxon_id"],
        import_taxonomy,
    )


@app.command(name="import-references")
def import_reference_table(
    table: Path = typer.Argument(
        ...,
        help="Reference table with columns accession, taxon_id[, description]",
        exists=True,
        dir_okay=False,
    ),
    db_url: str = typer.Option(
        DEFAULT_DB_URL,
        "--db-url",
        help="SQLAlchemy URL of the record store",
    ),
    replace: bool = typer.Option(
        False,
        "--replace",
        help="Delete the existing reference entries first",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Bulk-load the accession to taxon table of the BLAST reference database.

    Example:

        protannot store import-references uniprot_taxa.tsv --replace
    """
    _import(
        "reference",
        table,
        db_url,
        replace,
        quiet,
        REFERENCE_SCHEMA,
        ["accession", "taxon_id"],
        import_references,
    )
