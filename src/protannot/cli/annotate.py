"""
Annotate command: run the batch BLAST annotation pipeline.

Aligns unannotated proteins from the record store against a BLAST
protein database, resolves a consensus taxon per protein and writes the
annotations back. The parse subcommand applies the same parsing and hit
selection to an existing BLAST output file.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from protannot.cli.utils import QuietConsole, configure_logging, pipeline_progress
from protannot.clients.uniprot import UniProtTaxonLookup
from protannot.core.constants import BLAST_OUTFMT_CSV
from protannot.core.exceptions import MalformedResultLineError
from protannot.core.io_utils import (
    failures_to_dataframe,
    hits_to_dataframe,
    output_format_for,
    write_dataframe,
)
from protannot.core.parsers import parse_blast_file
from protannot.core.partition import partition_records
from protannot.core.pipeline import PipelineCoordinator, PipelineReport, PipelineState
from protannot.core.selection import select_hits
from protannot.db.engine import create_engine, create_session_factory, session_scope
from protannot.db.store import SqlRecordStore
from protannot.external.base import ToolLaunchError
from protannot.external.blast import BlastP
from protannot.models.config import PipelineConfig, SelectionPolicy

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="annotate",
    help="Annotate proteins by BLAST homology",
    no_args_is_help=True,
)

console = Console()

# Failures listed in the terminal table; the full list goes to --report
MAX_FAILURES_SHOWN = 20


def _build_config(config_file: Path | None, **overrides: object) -> PipelineConfig:
    """Merge the YAML config (if any) with CLI overrides; CLI values win."""
    if config_file is not None:
        return PipelineConfig.from_yaml(config_file, **overrides)
    return PipelineConfig(**{k: v for k, v in overrides.items() if v is not None})


def _display_report(report: PipelineReport, out: QuietConsole) -> None:
    """Display the terminal report as Rich tables."""
    style = {
        PipelineState.COMPLETED: "green",
        PipelineState.FAILED: "red",
        PipelineState.CANCELLED: "yellow",
    }.get(report.state, "white")

    table = Table(title="Annotation Summary", show_header=True)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Status", f"[{style}]{report.state.value}[/{style}]")
    table.add_row("Records in scope", f"{report.total_records:,}")
    table.add_row("Batches", f"{report.batches_completed}/{report.total_batches}")
    table.add_row("Annotated", f"{report.succeeded:,}")
    table.add_row("Without hits", f"{report.no_hit:,}")
    table.add_row("Failures", f"{len(report.failures):,}")
    table.add_row("Elapsed", f"{report.elapsed_seconds:.1f}s")
    if report.failed_batch_index is not None:
        table.add_row("Failed batch", str(report.failed_batch_index), style="red")
    out.print(table)

    if not report.failures:
        return

    failures = Table(title="Failures", show_header=True, header_style="bold")
    failures.add_column("Stage", style="cyan")
    failures.add_column("Batch", justify="right")
    failures.add_column("Record")
    failures.add_column("Cause", overflow="fold")
    for failure in report.failures[:MAX_FAILURES_SHOWN]:
        failures.add_row(
            failure.stage,
            str(failure.batch_index),
            failure.record_id or "-",
            failure.cause,
        )
    out.print(failures)
    if len(report.failures) > MAX_FAILURES_SHOWN:
        out.print(
            f"[dim]... {len(report.failures) - MAX_FAILURES_SHOWN} more "
            "(use --report to write all failures)[/dim]"
        )


def _dry_run(config: PipelineConfig, store: SqlRecordStore, experiment: int | None) -> None:
    """Show the batch plan and the BLAST command without running anything."""
    records = store.list_unannotated_records(experiment)
    batches = partition_records(records, config.batch_size)
    console.print(
        f"\n[bold]Records in scope:[/bold] {len(records):,} "
        f"in {len(batches)} batch(es) of up to {config.batch_size}"
    )

    blastp = BlastP(config.blast_path)
    try:
        result = blastp.run(
            query=Path("blast_input.fasta"),
            database=config.database,
            output=Path("blast_output.out"),
            evalue=config.evalue,
            threads=config.num_threads,
            dry_run=True,
        )
        console.print(f"\n[dim]Command: {result.command_string}[/dim]")
    except ToolLaunchError as e:
        console.print(f"\n[yellow]Warning: {e.message}[/yellow]")
        console.print(
            f"[dim]Command: {config.blast_path} -db {config.database} -query <batch> "
            f"-out <output> -evalue {config.evalue} -outfmt \"{BLAST_OUTFMT_CSV}\" "
            f"-num_threads {config.num_threads}[/dim]"
        )
    console.print("\n[green]Dry run complete. No records were modified.[/green]")


@app.command(name="run")
def run_pipeline(
    db_url: str | None = typer.Option(
        None,
        "--db-url",
        help="SQLAlchemy URL of the record store (default: sqlite:///protannot.db)",
    ),
    blast: str | None = typer.Option(
        None,
        "--blast",
        help="blastp executable (name on PATH or path)",
    ),
    database: Path | None = typer.Option(
        None,
        "--database", "-d",
        help="BLAST protein database prefix",
    ),
    evalue: float | None = typer.Option(
        None,
        "--evalue", "-e",
        help="E-value threshold (default: 1e-4)",
    ),
    threads: int | None = typer.Option(
        None,
        "--threads", "-t",
        help="Threads per BLAST invocation (default: 8)",
    ),
    batch_size: int | None = typer.Option(
        None,
        "--batch-size", "-b",
        help="Proteins per BLAST invocation (default: 1000)",
    ),
    sub_batch_size: int | None = typer.Option(
        None,
        "--sub-batch-size",
        help="Annotations per committed transaction (default: 500, at most --batch-size)",
    ),
    policy: SelectionPolicy | None = typer.Option(
        None,
        "--policy", "-p",
        help="Hit selection policy (default: best_evalue)",
        case_sensitive=False,
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Seconds before a BLAST run is terminated",
    ),
    experiment: int | None = typer.Option(
        None,
        "--experiment",
        help="Only annotate proteins identified in this experiment",
    ),
    overlap: bool = typer.Option(
        False,
        "--overlap",
        help="Align the next batch while the current one is persisted",
    ),
    uniprot_fallback: bool = typer.Option(
        False,
        "--uniprot-fallback",
        help="Look up accessions missing from the reference table via the UniProt API",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config", "-c",
        help="YAML configuration file (CLI options take precedence)",
        exists=True,
        dir_okay=False,
    ),
    report_path: Path | None = typer.Option(
        None,
        "--report", "-r",
        help="Write the failure list to this file (.csv or .parquet)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show the batch plan and BLAST command without executing",
    ),
) -> None:
    """
    Annotate unannotated proteins in the record store by BLAST homology.

    Proteins are aligned in batches; for each protein the selected hits
    determine a consensus taxon (lowest common ancestor) and a description
    taken from the best hit. Already committed sub-batches are kept if the
    run fails, and a re-run only processes proteins still unannotated.

    Example:

        protannot annotate run \\
            --db-url sqlite:///proteins.db \\
            --database blastdb/uniprot_sprot \\
            --batch-size 1000 --threads 8

        protannot annotate run --config pipeline.yaml --experiment 42
    """
    out = QuietConsole(console, quiet=quiet)
    configure_logging(console, verbose=verbose, quiet=quiet)

    try:
        config = _build_config(
            config_file,
            database_url=db_url,
            blast_path=blast,
            database=database,
            evalue=evalue,
            num_threads=threads,
            batch_size=batch_size,
            sub_batch_size=sub_batch_size,
            selection_policy=policy,
            tool_timeout=timeout,
            overlap_alignment=overlap or None,
        )
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error: Invalid configuration:[/red]\n{e}")
        raise typer.Exit(code=1) from None

    if config.database is None:
        console.print("[red]Error: No BLAST database given (--database or blast.database)[/red]")
        raise typer.Exit(code=1)

    out.print("\n[bold blue]Protannot BLAST Annotation[/bold blue]\n")
    out.print(f"[bold]Store:[/bold] {config.database_url}")
    out.print(f"[bold]Database:[/bold] {config.database}")
    out.print(
        f"[bold]Policy:[/bold] {config.selection_policy.value}, "
        f"e-value <= {config.evalue:g}, batch size {config.batch_size}"
    )
    if experiment is not None:
        out.print(f"[bold]Experiment:[/bold] {experiment}")

    engine = create_engine(config.database_url)
    factory = create_session_factory(engine)

    with session_scope(factory) as session:
        store = SqlRecordStore(session)

        if dry_run:
            _dry_run(config, store, experiment)
            raise typer.Exit(code=0)

        fallback = UniProtTaxonLookup() if uniprot_fallback else None
        try:
            with pipeline_progress(console, quiet) as on_progress:
                coordinator = PipelineCoordinator(
                    store,
                    config,
                    on_progress=on_progress,
                    taxon_fallback=fallback,
                )
                report = coordinator.run(experiment_id=experiment)
        finally:
            if fallback is not None:
                fallback.close()

    engine.dispose()

    out.print()
    _display_report(report, out)

    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        write_dataframe(
            failures_to_dataframe(report.failures),
            report_path,
            output_format_for(report_path),
        )
        out.print(f"\n[bold]Failure report:[/bold] {report_path}")

    if report.state is PipelineState.FAILED:
        console.print(f"\n[red]Pipeline failed in batch {report.failed_batch_index}:[/red] {report.cause}")
        console.print(
            "[dim]Committed annotations are kept; re-run to continue with the "
            "remaining proteins.[/dim]"
        )
        raise typer.Exit(code=1)
    if report.state is PipelineState.CANCELLED:
        console.print("\n[yellow]Pipeline cancelled.[/yellow]")
        raise typer.Exit(code=1)

    out.print("\n[bold green]Annotation complete![/bold green]\n")


@app.command(name="parse")
def parse_output(
    blast_output: Path = typer.Argument(
        ...,
        help="BLAST output file (-outfmt \"10 qacc sacc bitscore evalue pident stitle\")",
        exists=True,
        dir_okay=False,
    ),
    policy: SelectionPolicy = typer.Option(
        SelectionPolicy.BEST_EVALUE,
        "--policy", "-p",
        help="Hit selection policy",
        case_sensitive=False,
    ),
    evalue: float = typer.Option(
        1e-4,
        "--evalue", "-e",
        help="E-value cutoff applied during selection",
    ),
    output: Path | None = typer.Option(
        None,
        "--output", "-o",
        help="Write selected hits to this file (.csv or .parquet)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress output",
    ),
) -> None:
    """
    Parse an existing BLAST output file and apply hit selection.

    Malformed lines are reported and skipped. Useful for inspecting the
    hits a pipeline run would use without touching the record store.

    Example:

        protannot annotate parse results.csv --policy all -o hits.parquet
    """
    out = QuietConsole(console, quiet=quiet)
    configure_logging(console, verbose=verbose, quiet=quiet)

    malformed: list[MalformedResultLineError] = []
    result = parse_blast_file(blast_output, on_malformed=malformed.append)

    selected = []
    for hits in result.values():
        selected.extend(select_hits(hits, policy, evalue))

    table = Table(title="Parse Summary", show_header=True)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")
    table.add_row("Queries", f"{len(result):,}")
    table.add_row("Hits", f"{result.num_hits:,}")
    table.add_row(f"Selected ({policy.value})", f"{len(selected):,}")
    table.add_row("Malformed lines", f"{len(malformed):,}")
    out.print(table)

    for error in malformed[:MAX_FAILURES_SHOWN]:
        out.print(f"[yellow]line {error.line_number}:[/yellow] {error.reason}")

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        write_dataframe(hits_to_dataframe(selected), output, output_format_for(output))
        out.print(f"\n[bold]Selected hits:[/bold] {output}")
