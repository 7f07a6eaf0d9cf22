"""Unit tests for batch partitioning."""

from __future__ import annotations

import math

import pytest

from protannot.core.exceptions import InvalidBatchSizeError
from protannot.core.partition import Batch, partition_records
from tests.factories import make_records


class TestPartitionRecords:
    """Tests for partition_records."""

    @pytest.mark.parametrize(
        ("count", "batch_size"),
        [(0, 1), (1, 1), (7, 3), (9, 3), (10, 1000), (2500, 1000)],
    )
    def test_batch_count_and_order(self, count: int, batch_size: int) -> None:
        """Should produce ceil(N/size) batches whose concatenation is the input."""
        records = make_records(count)
        batches = partition_records(records, batch_size)

        assert len(batches) == math.ceil(count / batch_size)
        assert sum(len(batch) for batch in batches) == count
        assert [r for batch in batches for r in batch.records] == records

    def test_all_but_last_are_full(self) -> None:
        """Should fill every batch except possibly the last."""
        batches = partition_records(make_records(2500), 1000)
        assert [len(batch) for batch in batches] == [1000, 1000, 500]

    def test_indices_are_one_based(self) -> None:
        """Should number batches 1..n in order."""
        batches = partition_records(make_records(5), 2)
        assert [batch.index for batch in batches] == [1, 2, 3]

    def test_empty_input(self) -> None:
        """Should return no batches for no records."""
        assert partition_records([], 10) == []

    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_invalid_batch_size(self, batch_size: int) -> None:
        """Should reject non-positive batch sizes."""
        with pytest.raises(InvalidBatchSizeError) as exc_info:
            partition_records(make_records(3), batch_size)
        assert exc_info.value.batch_size == batch_size

    def test_batch_is_immutable(self) -> None:
        """Should not allow reassigning batch fields."""
        batch = partition_records(make_records(2), 2)[0]
        assert isinstance(batch, Batch)
        with pytest.raises(AttributeError):
            batch.index = 5  # type: ignore[misc]
