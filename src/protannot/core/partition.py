"""
Partitioning of sequence records into fixed-size BLAST batches.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from protannot.core.exceptions import InvalidBatchSizeError
from protannot.models.records import SequenceRecord


@dataclass(frozen=True)
class Batch:
    """Ordered group of records aligned by one BLAST invocation.

    Attributes:
        index: 1-based position of the batch in the run.
        records: Records of the batch, in input order.
    """

    index: int
    records: tuple[SequenceRecord, ...]

    def __len__(self) -> int:
        return len(self.records)


def partition_records(
    records: Sequence[SequenceRecord],
    batch_size: int,
) -> list[Batch]:
    """Split records into consecutive batches of at most batch_size.

    All batches but the last hold exactly batch_size records; input
    order is preserved across and within batches.

    Args:
        records: Records to partition.
        batch_size: Maximum records per batch.

    Returns:
        ceil(len(records) / batch_size) batches (empty for no records).

    Raises:
        InvalidBatchSizeError: If batch_size < 1.
    """
    if batch_size < 1:
        raise InvalidBatchSizeError(batch_size)

    return [
        Batch(index=number, records=tuple(records[start:start + batch_size]))
        for number, start in enumerate(range(0, len(records), batch_size), start=1)
    ]
