"""
Batch annotation pipeline coordinator.

Drives unannotated protein records through alignment, parsing, hit
selection, taxonomy resolution and persistence, one batch at a time.
Line-, hit- and record-level errors are accumulated as PipelineFailure
entries; tool and store infrastructure errors halt the run without
touching sub-batches that were already committed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from protannot.core.constants import (
    STAGE_ALIGNING,
    STAGE_PARSING,
    STAGE_PARTITIONING,
    STAGE_PERSISTING,
    STAGE_RESOLVING,
    STAGE_SELECTING,
)
from protannot.core.exceptions import (
    MalformedResultLineError,
    ProtannotError,
    StoreInfrastructureError,
    UnresolvedTaxonomyError,
)
from protannot.core.parsers import parse_blast_output
from protannot.core.partition import Batch, partition_records
from protannot.core.persistence import AnnotationPersistor
from protannot.core.selection import best_evalue_hit, select_hits
from protannot.core.taxonomy import AccessionLookup, TaxonomyTree, resolve_common_ancestor
from protannot.db.store import RecordStore
from protannot.external.base import (
    ToolExecutionError,
    ToolInterruptedError,
    ToolLaunchError,
    UnsafePathError,
)
from protannot.external.blast import BlastP
from protannot.models.blast import AlignmentHit
from protannot.models.config import PipelineConfig
from protannot.models.records import (
    ConsensusAnnotation,
    PipelineFailure,
    ProgressEvent,
    SequenceRecord,
)

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[ProgressEvent], None]

# Errors that end the run; everything else is recovered per line, hit or record
_FATAL_ERRORS = (
    ToolLaunchError,
    ToolExecutionError,
    ToolInterruptedError,
    UnsafePathError,
    StoreInfrastructureError,
)


class PipelineState(str, Enum):
    """Coordinator state; COMPLETED, FAILED and CANCELLED are terminal."""

    IDLE = "idle"
    PARTITIONING = "partitioning"
    ALIGNING = "aligning"
    PARSING = "parsing"
    SELECTING = "selecting"
    RESOLVING_TAXONOMY = "resolving_taxonomy"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_STAGE_OF_STATE = {
    PipelineState.PARTITIONING: STAGE_PARTITIONING,
    PipelineState.ALIGNING: STAGE_ALIGNING,
    PipelineState.PARSING: STAGE_PARSING,
    PipelineState.SELECTING: STAGE_SELECTING,
    PipelineState.RESOLVING_TAXONOMY: STAGE_RESOLVING,
    PipelineState.PERSISTING: STAGE_PERSISTING,
}


class Aligner(Protocol):
    """Anything that aligns a batch of records and returns the raw CSV output."""

    def search(
        self,
        records: Iterable[SequenceRecord],
        *,
        database: Path,
        evalue: float,
        threads: int = ...,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str: ...


@dataclass(frozen=True)
class PipelineReport:
    """
    Terminal report of a pipeline run.

    Attributes:
        state: COMPLETED, FAILED or CANCELLED.
        total_records: Unannotated records found in scope.
        total_batches: Number of alignment batches.
        batches_completed: Batches that passed through persisting.
        succeeded: Annotations committed to the store.
        no_hit: Records left unannotated because no hit was selected.
        failures: Every recovered and fatal failure, in occurrence order.
        failed_batch_index: Batch that halted the run (FAILED only).
        cause: Message of the error that halted the run (FAILED only).
        elapsed_seconds: Wall-clock duration of the run.
    """

    state: PipelineState
    total_records: int = 0
    total_batches: int = 0
    batches_completed: int = 0
    succeeded: int = 0
    no_hit: int = 0
    failures: tuple[PipelineFailure, ...] = ()
    failed_batch_index: int | None = None
    cause: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def completed(self) -> bool:
        return self.state is PipelineState.COMPLETED


def build_annotation(
    record: SequenceRecord,
    hits: Sequence[AlignmentHit],
    taxon_id: int | None,
    provenance_tag: str,
) -> ConsensusAnnotation:
    """Annotation of one record; the description comes from its best-e-value hit."""
    best = best_evalue_hit(hits)
    if best is None:
        msg = f"Cannot annotate record {record.record_id} without hits"
        raise ValueError(msg)
    title = best.subject_title or record.description
    return ConsensusAnnotation(
        record_id=record.record_id,
        resolved_taxon_id=taxon_id,
        description_text=f"{title} [{best.subject_accession}]".strip(),
        provenance_tag=provenance_tag,
    )


class PipelineCoordinator:
    """
    Runs the batch annotation pipeline against a record store.

    The coordinator is single-use per run() call and not thread-safe;
    only the optional alignment prefetch runs on a second thread.

    Example:
        >>> coordinator = PipelineCoordinator(SqlRecordStore(session), config)
        >>> report = coordinator.run()
        >>> report.state, report.succeeded
        (<PipelineState.COMPLETED: 'completed'>, 2480)
    """

    def __init__(
        self,
        store: RecordStore,
        config: PipelineConfig,
        aligner: Aligner | None = None,
        on_progress: ProgressHandler | None = None,
        cancel_event: threading.Event | None = None,
        taxon_fallback: AccessionLookup | None = None,
    ) -> None:
        """
        Args:
            store: Record store providing records, taxonomy and persistence.
            config: Pipeline configuration.
            aligner: Aligner to use; defaults to BlastP(config.blast_path).
            on_progress: Receives ProgressEvent notifications.
            cancel_event: Set from another thread to stop the run.
            taxon_fallback: Consulted for accessions missing from the store,
                e.g. a UniProtTaxonLookup.
        """
        self.store = store
        self.config = config
        self.aligner = aligner if aligner is not None else BlastP(config.blast_path)
        self.on_progress = on_progress
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.taxon_fallback = taxon_fallback

        self.state = PipelineState.IDLE
        self.failures: list[PipelineFailure] = []
        self._tree = TaxonomyTree()
        self._total_records = 0
        self._total_batches = 0
        self._batches_completed = 0
        self._current_batch = 0
        self._no_hit = 0
        self._start_time = 0.0
        self._persistor = AnnotationPersistor(
            store,
            on_persisted=self._on_persisted,
            cancel_event=self.cancel_event,
        )

    def cancel(self) -> None:
        """Request cooperative cancellation of the running pipeline."""
        self.cancel_event.set()

    def run(self, experiment_id: int | None = None) -> PipelineReport:
        """
        Annotate every unannotated record in scope.

        Args:
            experiment_id: Restrict to proteins of one experiment; None
                processes all unannotated proteins.

        Returns:
            PipelineReport. Committed sub-batches are kept whatever the
            terminal state.
        """
        self._start_time = time.perf_counter()

        try:
            self._enter(PipelineState.PARTITIONING)
            records = self.store.list_unannotated_records(
                experiment_id,
                on_invalid=self._record_invalid,
            )
            self._tree = TaxonomyTree(self.store.load_taxonomy())
            self._total_records = len(records)
            batches = partition_records(records, self.config.batch_size)
            self._total_batches = len(batches)
            logger.info(
                "Annotating %d records in %d batches (taxonomy: %d nodes)",
                len(records),
                len(batches),
                len(self._tree),
            )

            with closing(self._aligned_batches(batches)) as aligned:
                for batch, raw_output in aligned:
                    self._process_batch(batch, raw_output, len(batches))
                    self._batches_completed += 1
                    if self.state is PipelineState.CANCELLED:
                        break

        except _FATAL_ERRORS as e:
            return self._halt(e)

        if self.state is not PipelineState.CANCELLED:
            self.state = PipelineState.COMPLETED
        report = self._report()
        logger.info(
            "Pipeline %s: %d annotated, %d without hits, %d failures",
            report.state.value,
            report.succeeded,
            report.no_hit,
            len(report.failures),
        )
        return report

    # ------------------------------------------------------------------
    # Alignment scheduling
    # ------------------------------------------------------------------

    def _aligned_batches(self, batches: Sequence[Batch]) -> Iterator[tuple[Batch, str]]:
        """Yield (batch, raw_output) pairs in batch order.

        With overlap_alignment, the alignment of batch N+1 is started on a
        single worker thread as soon as batch N's output is available, so
        at most one aligner subprocess runs at a time.
        """
        if not self.config.overlap_alignment:
            for batch in batches:
                if self._cancelled_before(batch):
                    return
                self._start_batch(batch, len(batches))
                yield batch, self._align(batch)
            return

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="protannot-align") as executor:
            pending: Future[str] | None = None
            try:
                for position, batch in enumerate(batches):
                    if self._cancelled_before(batch):
                        return
                    self._start_batch(batch, len(batches))
                    if pending is None:
                        pending = executor.submit(self._align, batch)
                    raw_output = pending.result()
                    pending = None

                    if position + 1 < len(batches) and not self.cancel_event.is_set():
                        pending = executor.submit(self._align, batches[position + 1])
                    yield batch, raw_output
            finally:
                if pending is not None and not pending.done():
                    # The run ends early; stop the prefetched subprocess
                    pending.cancel()
                    self.cancel_event.set()

    def _start_batch(self, batch: Batch, total_batches: int) -> None:
        self._current_batch = batch.index
        self._enter(PipelineState.ALIGNING)
        self._emit(
            STAGE_ALIGNING,
            batch.index,
            total_batches,
            f"Aligning batch {batch.index} of {total_batches} ({len(batch)} records)",
        )

    def _align(self, batch: Batch) -> str:
        if self.config.database is None:
            raise ToolLaunchError(BlastP.TOOL_NAME, reason="no BLAST database configured")

        logger.info("Aligning batch %d (%d records)", batch.index, len(batch))
        return self.aligner.search(
            batch.records,
            database=self.config.database,
            evalue=self.config.evalue,
            threads=self.config.num_threads,
            timeout=self.config.tool_timeout,
            cancel_event=self.cancel_event,
        )

    def _cancelled_before(self, batch: Batch) -> bool:
        if not self.cancel_event.is_set():
            return False
        logger.info("Cancellation requested; batch %d and later not processed", batch.index)
        self.state = PipelineState.CANCELLED
        return True

    # ------------------------------------------------------------------
    # Per-batch stages
    # ------------------------------------------------------------------

    def _process_batch(self, batch: Batch, raw_output: str, total_batches: int) -> None:
        self._enter(PipelineState.PARSING)
        result = parse_blast_output(
            raw_output,
            on_malformed=lambda e: self._record_malformed(batch.index, e),
        )

        self._enter(PipelineState.SELECTING)
        selected: dict[int, list[AlignmentHit]] = {}
        for record in batch.records:
            hits = select_hits(
                result.get(record.query_id, []),
                self.config.selection_policy,
                self.config.evalue,
            )
            if hits:
                selected[record.record_id] = hits
            else:
                self._no_hit += 1
        unknown = set(result) - {record.query_id for record in batch.records}
        if unknown:
            logger.warning(
                "Ignoring hits for %d query ids not in batch %d", len(unknown), batch.index
            )

        self._enter(PipelineState.RESOLVING_TAXONOMY)
        lookup = self._accession_lookup(
            hit.subject_accession for hits in selected.values() for hit in hits
        )
        annotations = []
        for record in batch.records:
            hits = selected.get(record.record_id)
            if hits is None:
                continue
            taxon_id = self._resolve(record, hits, lookup, batch.index)
            annotations.append(
                build_annotation(record, hits, taxon_id, self.config.provenance_tag)
            )

        self._enter(PipelineState.PERSISTING)
        outcome = self._persistor.persist(
            annotations,
            self.config.sub_batch_size,
            batch_index=batch.index,
        )
        self.failures.extend(outcome.failures)
        if outcome.cancelled:
            self.state = PipelineState.CANCELLED
        logger.info(
            "Batch %d/%d done: %d annotated, %d record failures",
            batch.index,
            total_batches,
            outcome.succeeded,
            len(outcome.failures),
        )

    def _accession_lookup(self, accessions: Iterable[str]) -> AccessionLookup:
        """Bulk store lookup for a batch, falling back per accession when configured."""
        known = self.store.find_taxa_for_accessions(accessions)

        def lookup(accession: str) -> int | None:
            taxon_id = known.get(accession)
            if taxon_id is None and self.taxon_fallback is not None:
                try:
                    taxon_id = self.taxon_fallback(accession)
                except ProtannotError as e:
                    logger.warning("Fallback lookup failed for %s: %s", accession, e.message)
                    return None
                known[accession] = taxon_id
            return taxon_id

        return lookup

    def _resolve(
        self,
        record: SequenceRecord,
        hits: Sequence[AlignmentHit],
        lookup: AccessionLookup,
        batch_index: int,
    ) -> int | None:
        def on_unresolved(error: UnresolvedTaxonomyError) -> None:
            self.failures.append(
                PipelineFailure(
                    stage=STAGE_RESOLVING,
                    batch_index=batch_index,
                    record_id=record.query_id,
                    cause=error.message,
                )
            )

        try:
            return resolve_common_ancestor(hits, lookup, self._tree, on_unresolved=on_unresolved)
        except ValueError as e:
            # Broken parent links; the record is still annotated, undetermined
            on_unresolved(UnresolvedTaxonomyError(hits[0].subject_accession, str(e)))
            return None

    def _record_invalid(self, record_id: int, reason: str) -> None:
        self.failures.append(
            PipelineFailure(
                stage=STAGE_PARTITIONING,
                batch_index=0,
                record_id=str(record_id),
                cause=reason,
            )
        )

    def _record_malformed(self, batch_index: int, error: MalformedResultLineError) -> None:
        logger.debug("Skipping malformed line in batch %d: %s", batch_index, error.reason)
        query_id = error.line.split(",", 1)[0].strip() or None
        self.failures.append(
            PipelineFailure(
                stage=STAGE_PARSING,
                batch_index=batch_index,
                record_id=query_id,
                cause=error.reason,
            )
        )

    # ------------------------------------------------------------------
    # State, progress and reporting
    # ------------------------------------------------------------------

    def _enter(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _emit(self, stage: str, current: int, total: int, message: str = "") -> None:
        if self.on_progress is not None:
            self.on_progress(
                ProgressEvent(stage=stage, current=current, total=total, message=message)
            )

    def _on_persisted(self, record_id: int) -> None:
        self._emit(
            STAGE_PERSISTING,
            self._persistor.committed,
            self._total_records,
            f"Annotated protein {record_id}",
        )

    def _halt(self, error: ProtannotError) -> PipelineReport:
        """Enter a terminal state after an error that ends the run."""
        batch_index = self._current_batch
        if isinstance(error, ToolInterruptedError) and self.cancel_event.is_set():
            self.state = PipelineState.CANCELLED
            logger.info("Pipeline cancelled while aligning batch %d", batch_index)
            return self._report()

        stage = _STAGE_OF_STATE.get(self.state, STAGE_PARTITIONING)
        self.state = PipelineState.FAILED
        cause = error.message.splitlines()[0]
        self.failures.append(PipelineFailure(stage=stage, batch_index=batch_index, cause=cause))
        logger.error("Pipeline failed in batch %d (%s): %s", batch_index, stage, cause)
        return self._report(failed_batch_index=batch_index, cause=cause)

    def _report(
        self,
        failed_batch_index: int | None = None,
        cause: str | None = None,
    ) -> PipelineReport:
        return PipelineReport(
            state=self.state,
            total_records=self._total_records,
            total_batches=self._total_batches,
            batches_completed=self._batches_completed,
            succeeded=self._persistor.committed,
            no_hit=self._no_hit,
            failures=tuple(self.failures),
            failed_batch_index=failed_batch_index,
            cause=cause,
            elapsed_seconds=time.perf_counter() - self._start_time,
        )
