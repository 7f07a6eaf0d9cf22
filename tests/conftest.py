"""
Shared pytest fixtures for protannot tests.

Provides an in-memory record store, the test taxonomy and BLAST output
samples for unit and end-to-end testing.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from protannot.core.taxonomy import TaxonomyTree
from protannot.db.engine import create_engine, create_session_factory, init_schema
from protannot.db.store import SqlRecordStore
from protannot.external.base import ExternalTool
from tests.factories import blast_line, populate_store, taxonomy_nodes


# =============================================================================
# Record Store Fixtures
# =============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with the record store schema."""
    engine = create_engine("sqlite://")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Generator[Session, None, None]:
    """Session on the in-memory store."""
    factory = create_session_factory(engine)
    db = factory()
    yield db
    db.close()


@pytest.fixture
def populated_session(session: Session) -> Session:
    """Store with taxonomy, reference entries and ten unannotated proteins."""
    populate_store(session, proteins=10, experiment_hits={7: [2, 4, 4, 6]})
    return session


@pytest.fixture
def store(populated_session: Session) -> SqlRecordStore:
    return SqlRecordStore(populated_session)


@pytest.fixture
def sqlite_file_url(tmp_path: Path) -> str:
    """URL of an on-disk SQLite store (for CLI tests using separate engines)."""
    return f"sqlite:///{tmp_path / 'proteins.db'}"


# =============================================================================
# Taxonomy Fixtures
# =============================================================================


@pytest.fixture
def tree() -> TaxonomyTree:
    return TaxonomyTree(taxonomy_nodes())


# =============================================================================
# BLAST Output Fixtures
# =============================================================================


@pytest.fixture
def sample_blast_output() -> str:
    """Output for three queries; query 2 has a title containing commas."""
    return "\n".join([
        blast_line("1", "P0A7V0", 250.0, 1e-50, 95.0),
        blast_line("1", "P0A7V3", 240.0, 1e-45, 90.0),
        blast_line("2", "P21464", 120.5, 1e-20, 60.0, "RS2_BACSU Protein S2, small subunit, 30S"),
        blast_line("3", "P62805", 80.0, 1e-8, 45.5, "H4_HUMAN Histone H4"),
    ]) + "\n"


@pytest.fixture
def blast_output_file(tmp_path: Path, sample_blast_output: str) -> Path:
    path = tmp_path / "results.csv"
    path.write_text(sample_blast_output)
    return path


# =============================================================================
# External Tool Fixtures
# =============================================================================


@pytest.fixture
def fake_blastp_on_path() -> Generator[None, None, None]:
    """Resolve every tool name to /usr/bin/<name> without touching PATH."""
    ExternalTool.set_executable_resolver(lambda name: f"/usr/bin/{name}")
    yield
    ExternalTool.reset_executable_resolver()
