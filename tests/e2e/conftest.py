"""
E2E test fixtures for protannot CLI testing.

Provides an on-disk record store and CLI invocation helpers for
end-to-end tests of the annotate and store commands.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from protannot.cli.main import app
from protannot.db.engine import create_engine, create_session_factory, init_schema, session_scope
from tests.factories import populate_store

if TYPE_CHECKING:
    from click.testing import Result


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def e2e_runner() -> CliRunner:
    """Provide a CLI runner for E2E tests."""
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """Undo the RichHandler installed by configure_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def file_store(sqlite_file_url: str) -> str:
    """On-disk store with taxonomy, references and five unannotated proteins."""
    engine = create_engine(sqlite_file_url)
    init_schema(engine)
    with session_scope(create_session_factory(engine)) as session:
        populate_store(session, proteins=5)
    engine.dispose()
    return sqlite_file_url


# =============================================================================
# CLI Invocation Helpers
# =============================================================================


@pytest.fixture
def run_annotate(
    e2e_runner: CliRunner,
    file_store: str,
) -> Callable[..., Result]:
    """
    Fixture that returns a function to run the annotate run command.

    Usage:
        result = run_annotate(batch_size=2, extra_args=["--dry-run"])
    """
    def _run(
        database: str | None = "sprot",
        batch_size: int | None = None,
        report: Path | None = None,
        extra_args: list[str] | None = None,
    ) -> Result:
        args = ["annotate", "run", "--db-url", file_store, "--quiet"]
        if database is not None:
            args.extend(["--database", database])
        if batch_size is not None:
            args.extend(["--batch-size", str(batch_size)])
        if report is not None:
            args.extend(["--report", str(report)])
        if extra_args:
            args.extend(extra_args)
        return e2e_runner.invoke(app, args)

    return _run
