"""
E2E tests for the protannot command line.

BLAST itself is replaced by the scripted FakeAligner; everything else
(store, parsing, selection, taxonomy, persistence, reporting) is real.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import polars as pl
import pytest
from sqlalchemy import select
from typer.testing import CliRunner

from protannot import __version__
from protannot.cli.main import app
from protannot.db.engine import create_engine, create_session_factory, session_scope
from protannot.db.models import Protein, ReferenceEntry, Taxonomy
from tests.factories import FakeAligner

pytestmark = pytest.mark.e2e

ALIGNER = "protannot.core.pipeline.BlastP"


def stored_annotations(url: str) -> dict[int, tuple[int | None, str | None]]:
    engine = create_engine(url)
    with session_scope(create_session_factory(engine)) as session:
        rows = session.execute(
            select(Protein.protein_id, Protein.taxon_id, Protein.annotation_source)
        ).all()
    engine.dispose()
    return {protein_id: (taxon_id, source) for protein_id, taxon_id, source in rows}


class TestMainApp:
    """Tests for the top-level application."""

    def test_version(self, e2e_runner: CliRunner) -> None:
        """Should print the version and exit."""
        result = e2e_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"protannot version {__version__}" in result.output

    def test_no_args_shows_help(self, e2e_runner: CliRunner) -> None:
        """Should list the subcommands."""
        result = e2e_runner.invoke(app, [])
        assert "annotate" in result.output
        assert "store" in result.output


class TestAnnotateRun:
    """Tests for protannot annotate run."""

    def test_annotates_all_records(
        self,
        run_annotate: Callable,
        file_store: str,
        tmp_path: Path,
    ) -> None:
        """Should annotate every protein and write an empty failure report."""
        aligner = FakeAligner()
        report = tmp_path / "reports" / "failures.csv"

        with patch(ALIGNER, return_value=aligner):
            result = run_annotate(batch_size=2, report=report)

        assert result.exit_code == 0, result.output
        assert aligner.calls == [[1, 2], [3, 4], [5]]
        assert stored_annotations(file_store) == {i: (100, "BLAST") for i in range(1, 6)}
        assert report.exists()
        assert pl.read_csv(report).height == 0

    def test_aligner_failure_exits_nonzero(
        self,
        run_annotate: Callable,
        file_store: str,
        tmp_path: Path,
    ) -> None:
        """Should report the failing batch and keep earlier commits."""
        report = tmp_path / "failures.csv"

        with patch(ALIGNER, return_value=FakeAligner(fail_on={2})):
            result = run_annotate(batch_size=2, report=report)

        assert result.exit_code == 1
        assert "Pipeline failed in batch 2" in result.output
        stored = stored_annotations(file_store)
        assert stored[1] == stored[2] == (100, "BLAST")
        assert stored[3] == (None, None)

        failures = pl.read_csv(report)
        assert failures["stage"].to_list() == ["aligning"]
        assert failures["batch_index"].to_list() == [2]

    def test_rerun_processes_only_remaining(
        self,
        run_annotate: Callable,
    ) -> None:
        """Should skip proteins annotated by an earlier run."""
        with patch(ALIGNER, return_value=FakeAligner(fail_on={2})):
            run_annotate(batch_size=2)

        aligner = FakeAligner()
        with patch(ALIGNER, return_value=aligner):
            result = run_annotate(batch_size=2)

        assert result.exit_code == 0, result.output
        assert aligner.calls == [[3, 4], [5]]

    def test_missing_database(self, run_annotate: Callable) -> None:
        """Should refuse to run without a BLAST database."""
        result = run_annotate(database=None)
        assert result.exit_code == 1
        assert "No BLAST database" in result.output

    def test_invalid_sizes(self, run_annotate: Callable) -> None:
        """Should reject a sub-batch larger than the batch."""
        result = run_annotate(batch_size=10, extra_args=["--sub-batch-size", "20"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_config_file(
        self,
        run_annotate: Callable,
        tmp_path: Path,
    ) -> None:
        """Should read batching options from YAML."""
        config = tmp_path / "pipeline.yaml"
        config.write_text("batching:\n  batch_size: 3\n  sub_batch_size: 3\n")
        aligner = FakeAligner()

        with patch(ALIGNER, return_value=aligner):
            result = run_annotate(extra_args=["--config", str(config)])

        assert result.exit_code == 0, result.output
        assert aligner.calls == [[1, 2, 3], [4, 5]]

    def test_dry_run(
        self,
        run_annotate: Callable,
        file_store: str,
        fake_blastp_on_path,
    ) -> None:
        """Should show the plan without modifying the store."""
        result = run_annotate(batch_size=2, extra_args=["--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Records in scope: 5" in result.output
        assert "Dry run complete" in result.output
        assert stored_annotations(file_store)[1] == (None, None)


class TestAnnotateParse:
    """Tests for protannot annotate parse."""

    def test_best_evalue_hits(
        self,
        e2e_runner: CliRunner,
        blast_output_file: Path,
        tmp_path: Path,
    ) -> None:
        """Should write one selected hit per query."""
        output = tmp_path / "hits.csv"
        result = e2e_runner.invoke(
            app, ["annotate", "parse", str(blast_output_file), "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        hits = pl.read_csv(output)
        assert hits["subject_accession"].to_list() == ["P0A7V0", "P21464", "P62805"]
        assert hits["subject_title"][1] == "Protein S2, small subunit, 30S"

    def test_all_policy_parquet(
        self,
        e2e_runner: CliRunner,
        blast_output_file: Path,
        tmp_path: Path,
    ) -> None:
        """Should keep every hit under the all policy."""
        output = tmp_path / "hits.parquet"
        result = e2e_runner.invoke(
            app,
            ["annotate", "parse", str(blast_output_file), "--policy", "all", "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        assert pl.read_parquet(output).height == 4

    def test_reports_malformed_lines(
        self,
        e2e_runner: CliRunner,
        tmp_path: Path,
    ) -> None:
        """Should skip malformed lines and count them."""
        path = tmp_path / "broken.csv"
        path.write_text("1,sp|P0A7V0|X,250,1e-50,95,title\nnot,a,hit\n")

        result = e2e_runner.invoke(app, ["annotate", "parse", str(path)])

        assert result.exit_code == 0, result.output
        assert "Malformed lines" in result.output
        assert "line 2" in result.output


class TestStoreCommands:
    """Tests for protannot store."""

    def test_init(self, e2e_runner: CliRunner, sqlite_file_url: str) -> None:
        """Should create the schema."""
        result = e2e_runner.invoke(app, ["store", "init", "--db-url", sqlite_file_url])
        assert result.exit_code == 0, result.output
        assert "Record store schema ready" in result.output

    def test_import_taxonomy(
        self,
        e2e_runner: CliRunner,
        sqlite_file_url: str,
        tmp_path: Path,
    ) -> None:
        """Should load a TSV taxonomy and refuse duplicates without --replace."""
        table = tmp_path / "nodes.tsv"
        table.write_text(
            "taxon_id\tparent_id\trank\tname\n"
            "1\t\tno rank\troot\n"
            "2\t1\tsuperkingdom\tBacteria\n"
        )
        args = ["store", "import-taxonomy", str(table), "--db-url", sqlite_file_url]

        first = e2e_runner.invoke(app, args)
        assert first.exit_code == 0, first.output
        assert "Imported 2 taxonomy rows" in first.output

        second = e2e_runner.invoke(app, args)
        assert second.exit_code == 1
        assert "--replace" in second.output

        third = e2e_runner.invoke(app, [*args, "--replace"])
        assert third.exit_code == 0, third.output

        engine = create_engine(sqlite_file_url)
        with session_scope(create_session_factory(engine)) as session:
            nodes = session.execute(select(Taxonomy.taxon_id, Taxonomy.parent_id)).all()
        engine.dispose()
        assert sorted(nodes) == [(1, None), (2, 1)]

    def test_import_references(
        self,
        e2e_runner: CliRunner,
        sqlite_file_url: str,
        tmp_path: Path,
    ) -> None:
        """Should drop rows without taxon and keep the first duplicate."""
        table = tmp_path / "refs.csv"
        table.write_text("accession,taxon_id\nP0A7V0,100\nP0A7V0,101\nQ11111,\n")

        result = e2e_runner.invoke(
            app, ["store", "import-references", str(table), "--db-url", sqlite_file_url],
        )

        assert result.exit_code == 0, result.output
        engine = create_engine(sqlite_file_url)
        with session_scope(create_session_factory(engine)) as session:
            rows = session.execute(select(ReferenceEntry.accession, ReferenceEntry.taxon_id)).all()
        engine.dispose()
        assert rows == [("P0A7V0", 100)]

    def test_missing_required_column(
        self,
        e2e_runner: CliRunner,
        sqlite_file_url: str,
        tmp_path: Path,
    ) -> None:
        """Should fail when the table lacks taxon_id."""
        table = tmp_path / "refs.csv"
        table.write_text("accession\nP0A7V0\n")

        result = e2e_runner.invoke(
            app, ["store", "import-references", str(table), "--db-url", sqlite_file_url],
        )

        assert result.exit_code == 1
        assert "taxon_id" in result.output
