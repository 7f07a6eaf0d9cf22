"""
Sub-batched persistence of consensus annotations.

Annotations are written in sub-batches, one transaction each. A record
that cannot be written is rolled back on its own and reported; the
rest of its sub-batch is still committed. An unusable store aborts the
current sub-batch and is re-raised to the caller.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from protannot.core.constants import DEFAULT_SUB_BATCH_SIZE, STAGE_PERSISTING
from protannot.core.exceptions import (
    InvalidBatchSizeError,
    RecordPersistError,
    StoreInfrastructureError,
)
from protannot.db.store import RecordStore
from protannot.models.records import ConsensusAnnotation, PipelineFailure

logger = logging.getLogger(__name__)

# Called once per committed record with the record id
PersistedHandler = Callable[[int], None]


@dataclass(frozen=True)
class PersistResult:
    """Outcome of persisting one batch of annotations.

    Attributes:
        succeeded: Records written and committed.
        failures: Record-level failures (each rolled back individually).
        cancelled: Persistence stopped early at a sub-batch boundary.
    """

    succeeded: int
    failures: tuple[PipelineFailure, ...] = ()
    cancelled: bool = False


class AnnotationPersistor:
    """
    Writes annotations to a RecordStore in committed sub-batches.

    The persistor counts every committed record across calls in
    ``committed``, so partial progress is known even when a call raises.

    Example:
        >>> persistor = AnnotationPersistor(store)
        >>> result = persistor.persist(annotations, sub_batch_size=500)
        >>> result.succeeded
        998
    """

    def __init__(
        self,
        store: RecordStore,
        on_persisted: PersistedHandler | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.on_persisted = on_persisted
        self.cancel_event = cancel_event
        self.committed = 0

    def persist(
        self,
        annotations: Sequence[ConsensusAnnotation],
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        batch_index: int = 0,
    ) -> PersistResult:
        """
        Persist annotations, committing after every sub_batch_size records.

        Args:
            annotations: Annotations of one batch.
            sub_batch_size: Records per transaction.
            batch_index: Batch number recorded with failures.

        Returns:
            PersistResult with the committed count and record failures.

        Raises:
            InvalidBatchSizeError: If sub_batch_size < 1.
            StoreInfrastructureError: If the store becomes unusable. The
                current sub-batch is rolled back; earlier ones stay committed.
        """
        if sub_batch_size < 1:
            raise InvalidBatchSizeError(sub_batch_size)

        succeeded = 0
        failures: list[PipelineFailure] = []

        for start in range(0, len(annotations), sub_batch_size):
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.info(
                    "Persistence cancelled with %d of %d annotations left in batch %d",
                    len(annotations) - start,
                    len(annotations),
                    batch_index,
                )
                return PersistResult(succeeded, tuple(failures), cancelled=True)

            sub_batch = annotations[start:start + sub_batch_size]
            written = self._write_sub_batch(sub_batch, batch_index, failures)

            succeeded += len(written)
            logger.debug(
                "Committed %d/%d annotations of batch %d",
                start + len(sub_batch),
                len(annotations),
                batch_index,
            )
            for record_id in written:
                self.committed += 1
                if self.on_persisted is not None:
                    self.on_persisted(record_id)

        return PersistResult(succeeded, tuple(failures))

    def _write_sub_batch(
        self,
        sub_batch: Sequence[ConsensusAnnotation],
        batch_index: int,
        failures: list[PipelineFailure],
    ) -> list[int]:
        """Write and commit one sub-batch; returns the committed record ids."""
        written: list[int] = []
        try:
            for annotation in sub_batch:
                try:
                    self.store.update_annotation(annotation.record_id, annotation)
                except RecordPersistError as e:
                    logger.warning("Record %s not persisted: %s", e.record_id, e.cause)
                    failures.append(
                        PipelineFailure(
                            stage=STAGE_PERSISTING,
                            batch_index=batch_index,
                            record_id=str(annotation.record_id),
                            cause=e.cause,
                        )
                    )
                    continue
                written.append(annotation.record_id)
            self.store.commit()
        except StoreInfrastructureError:
            self._rollback_after_failure()
            raise
        return written

    def _rollback_after_failure(self) -> None:
        try:
            self.store.rollback()
        except Exception as e:
            # The original store error is the one re-raised
            logger.warning("Rollback after store failure also failed: %s", e)
