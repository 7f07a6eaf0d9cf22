"""
I/O utilities for tabular input and output.

Reads taxonomy and reference tables for import and writes hit and
failure reports, handling CSV, TSV and Parquet consistently.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Literal

import polars as pl

from protannot.models.blast import AlignmentHit
from protannot.models.records import PipelineFailure

OutputFormat = Literal["csv", "parquet"]

HIT_SCHEMA = {
    "query_id": pl.Utf8,
    "subject_accession": pl.Utf8,
    "bitscore": pl.Float64,
    "evalue": pl.Float64,
    "pident": pl.Float64,
    "subject_title": pl.Utf8,
}

FAILURE_SCHEMA = {
    "stage": pl.Utf8,
    "batch_index": pl.Int64,
    "record_id": pl.Utf8,
    "cause": pl.Utf8,
}


def write_dataframe(
    df: pl.DataFrame,
    path: Path,
    output_format: OutputFormat = "csv",
) -> None:
    """
    Write DataFrame to file in specified format.

    Parquet output uses zstd compression.

    Example:
        >>> df = pl.DataFrame({"a": [1, 2, 3]})
        >>> write_dataframe(df, Path("output.parquet"), "parquet")
    """
    if output_format == "parquet":
        df.write_parquet(path, compression="zstd")
    else:
        df.write_csv(path)


def read_dataframe(path: Path) -> pl.DataFrame:
    """
    Read DataFrame from file, auto-detecting format from extension.

    Supports: .csv, .tsv, .parquet, .csv.gz, .tsv.gz

    Raises:
        ValueError: If file extension is not recognized.
    """
    suffix = path.suffix.lower()
    name = path.name.lower()

    if suffix == ".parquet":
        return pl.read_parquet(path)
    if suffix == ".csv" or name.endswith(".csv.gz"):
        return pl.read_csv(path)
    if suffix == ".tsv" or name.endswith(".tsv.gz"):
        return pl.read_csv(path, separator="\t")
    msg = f"Unrecognized file format: {path}"
    raise ValueError(msg)


def output_format_for(path: Path) -> OutputFormat:
    """Pick the output format from a file extension (Parquet or CSV)."""
    return "parquet" if path.suffix.lower() == ".parquet" else "csv"


def hits_to_dataframe(hits: Iterable[AlignmentHit]) -> pl.DataFrame:
    """One row per hit, columns in BLAST output order (qacc sacc bitscore evalue pident stitle)."""
    rows = [hit.model_dump() for hit in hits]
    return pl.DataFrame(rows, schema=HIT_SCHEMA)


def failures_to_dataframe(failures: Sequence[PipelineFailure]) -> pl.DataFrame:
    """One row per pipeline failure, in occurrence order."""
    rows = [failure.model_dump() for failure in failures]
    return pl.DataFrame(rows, schema=FAILURE_SCHEMA)


def require_columns(df: pl.DataFrame, required: Sequence[str], path: Path) -> None:
    """
    Raise ValueError if the table lacks any of the required columns.

    Example:
        >>> require_columns(df, ["taxon_id", "parent_id"], Path("nodes.tsv"))
    """
    missing = [column for column in required if column not in df.columns]
    if missing:
        msg = f"{path} is missing required columns: {', '.join(missing)}"
        raise ValueError(msg)
