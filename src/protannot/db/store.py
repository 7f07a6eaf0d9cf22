"""
Record store access used by the annotation pipeline.

The pipeline talks to the store through the RecordStore protocol, so
tests and other backends can substitute their own implementation.
SqlRecordStore implements it on an explicit SQLAlchemy session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from protannot.core.exceptions import RecordPersistError, StoreInfrastructureError
from protannot.db.models import Protein, ReferenceEntry, SearchHit, Taxonomy
from protannot.models.records import ConsensusAnnotation, SequenceRecord, TaxonomyNode

logger = logging.getLogger(__name__)

# Keeps IN (...) clauses below the SQLite bound-parameter limit
_LOOKUP_CHUNK_SIZE = 500

# Called with (protein_id, reason) for proteins that cannot be aligned
InvalidRecordHandler = Callable[[int, str], None]


class RecordStore(Protocol):
    """Operations the pipeline needs from the record store."""

    def list_unannotated_records(
        self,
        experiment_id: int | None = None,
        on_invalid: InvalidRecordHandler | None = None,
    ) -> list[SequenceRecord]: ...

    def find_taxon_for_accession(self, accession: str) -> TaxonomyNode | None: ...

    def find_taxa_for_accessions(self, accessions: Iterable[str]) -> dict[str, int]: ...

    def load_taxonomy(self) -> list[TaxonomyNode]: ...

    def update_annotation(self, record_id: int, annotation: ConsensusAnnotation) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def _is_infrastructure_error(error: DBAPIError) -> bool:
    return error.connection_invalidated or isinstance(error, (OperationalError, InterfaceError))


@contextmanager
def _reading(what: str) -> Iterator[None]:
    """Translate driver errors raised while reading into StoreInfrastructureError."""
    try:
        yield
    except DBAPIError as e:
        raise StoreInfrastructureError(f"failed to read {what}: {e.orig}") from e


class SqlRecordStore:
    """RecordStore backed by a SQLAlchemy session.

    The session is owned by the caller; this class never closes it.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_unannotated_records(
        self,
        experiment_id: int | None = None,
        on_invalid: InvalidRecordHandler | None = None,
    ) -> list[SequenceRecord]:
        """Proteins without taxon or pipeline annotation, ordered by id.

        Proteins without residues cannot be aligned; they are left out of
        the result and passed to on_invalid with the reason.

        Args:
            experiment_id: Restrict to proteins identified in this
                experiment; None selects every unannotated protein.
            on_invalid: Called with (protein_id, reason) for each protein
                that cannot be turned into a SequenceRecord.
        """
        stmt = select(Protein).where(
            Protein.taxon_id.is_(None),
            Protein.annotation_source.is_(None),
        )
        if experiment_id is not None:
            in_experiment = select(SearchHit.protein_id).where(
                SearchHit.experiment_id == experiment_id
            )
            stmt = stmt.where(Protein.protein_id.in_(in_experiment))
        stmt = stmt.order_by(Protein.protein_id)

        with _reading("unannotated proteins"):
            proteins = list(self.session.scalars(stmt))

        records = []
        broken = 0
        for protein in proteins:
            try:
                records.append(
                    SequenceRecord(
                        record_id=protein.protein_id,
                        description=protein.description or "",
                        sequence=protein.sequence or "",
                    )
                )
            except ValidationError:
                broken += 1
                logger.debug("Skipping protein %d without sequence", protein.protein_id)
                if on_invalid is not None:
                    on_invalid(protein.protein_id, "empty sequence")
        if broken:
            logger.warning("Skipped %d protein entries without sequence", broken)
        return records

    def find_taxon_for_accession(self, accession: str) -> TaxonomyNode | None:
        stmt = (
            select(Taxonomy)
            .join(ReferenceEntry, ReferenceEntry.taxon_id == Taxonomy.taxon_id)
            .where(ReferenceEntry.accession == accession)
        )
        with _reading("reference entries"):
            row = self.session.scalars(stmt).first()
        return _to_node(row) if row is not None else None

    def find_taxa_for_accessions(self, accessions: Iterable[str]) -> dict[str, int]:
        """Bulk accession -> taxon id lookup; unknown accessions are absent."""
        unique = list(dict.fromkeys(accessions))
        found: dict[str, int] = {}
        for start in range(0, len(unique), _LOOKUP_CHUNK_SIZE):
            chunk = unique[start:start + _LOOKUP_CHUNK_SIZE]
            stmt = select(ReferenceEntry.accession, ReferenceEntry.taxon_id).where(
                ReferenceEntry.accession.in_(chunk)
            )
            with _reading("reference entries"):
                found.update({accession: taxon_id for accession, taxon_id in self.session.execute(stmt)})
        return found

    def load_taxonomy(self) -> list[TaxonomyNode]:
        with _reading("taxonomy"):
            return [_to_node(row) for row in self.session.scalars(select(Taxonomy))]

    def update_annotation(self, record_id: int, annotation: ConsensusAnnotation) -> None:
        """Overwrite the annotation of one protein inside a savepoint.

        Writing the same annotation twice leaves the same stored state;
        annotated_at only moves when taxon, description or source change.

        Raises:
            RecordPersistError: The record is missing or violates a constraint;
                only this record's changes are rolled back.
            StoreInfrastructureError: The connection is unusable.
        """
        try:
            with self.session.begin_nested():
                protein = self.session.get(Protein, record_id)
                if protein is None:
                    raise RecordPersistError(record_id, "record not found")
                stored = (protein.taxon_id, protein.description, protein.annotation_source)
                wanted = (
                    annotation.resolved_taxon_id,
                    annotation.description_text,
                    annotation.provenance_tag,
                )
                if stored != wanted or protein.annotated_at is None:
                    protein.taxon_id, protein.description, protein.annotation_source = wanted
                    protein.annotated_at = datetime.now(timezone.utc)
        except IntegrityError as e:
            raise RecordPersistError(record_id, str(e.orig)) from e
        except DBAPIError as e:
            if _is_infrastructure_error(e):
                raise StoreInfrastructureError(str(e.orig)) from e
            raise RecordPersistError(record_id, str(e.orig)) from e

    def commit(self) -> None:
        try:
            self.session.commit()
        except DBAPIError as e:
            self.session.rollback()
            raise StoreInfrastructureError(str(e.orig)) from e

    def rollback(self) -> None:
        self.session.rollback()


def _to_node(row: Taxonomy) -> TaxonomyNode:
    return TaxonomyNode(
        taxon_id=row.taxon_id,
        parent_id=row.parent_id,
        rank=row.rank or "no rank",
        name=row.name or "",
    )


def import_taxonomy(
    session: Session,
    rows: Sequence[dict[str, Any]],
    *,
    replace: bool = False,
) -> int:
    """Bulk-insert taxonomy rows (taxon_id, parent_id, rank, name).

    Args:
        replace: Delete all existing taxonomy rows first.

    Returns:
        Number of rows inserted.
    """
    if replace:
        session.execute(delete(Taxonomy))
    if rows:
        session.execute(insert(Taxonomy), list(rows))
    session.commit()
    logger.info("Imported %d taxonomy nodes", len(rows))
    return len(rows)


def import_references(
    session: Session,
    rows: Sequence[dict[str, Any]],
    *,
    replace: bool = False,
) -> int:
    """Bulk-insert reference entries (accession, taxon_id[, description])."""
    if replace:
        session.execute(delete(ReferenceEntry))
    if rows:
        session.execute(insert(ReferenceEntry), list(rows))
    session.commit()
    logger.info("Imported %d reference entries", len(rows))
    return len(rows)
