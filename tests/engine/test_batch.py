"""Tests for BatchPlanner — coverage, order, size bounds, validation."""

import math

import pytest

from src.engine.batch import BatchPlanner, chunk
from src.models.dataset import JoinedRecord


def _records(n: int) -> list[JoinedRecord]:
    return [
        JoinedRecord(source={"MSID": str(i)}, target={"MSID": str(i)})
        for i in range(n)
    ]


class TestBatchPlanner:
    @pytest.mark.parametrize(("n", "size"), [(0, 20), (1, 20), (20, 20), (21, 20), (45, 7), (5, 1)])
    def test_batch_count_is_ceiling(self, n: int, size: int) -> None:
        batches = BatchPlanner(size).plan(_records(n))
        assert len(batches) == math.ceil(n / size)

    def test_order_preserved_and_nothing_lost(self) -> None:
        records = _records(45)
        batches = BatchPlanner(20).plan(records)
        flattened = [r for batch in batches for r in batch]
        assert [r.msid for r in flattened] == [r.msid for r in records]

    def test_no_batch_exceeds_size(self) -> None:
        batches = BatchPlanner(7).plan(_records(45))
        assert all(len(b) <= 7 for b in batches)
        assert [len(b) for b in batches[:-1]] == [7] * 6
        assert len(batches[-1]) == 3

    def test_default_batch_size_is_twenty(self) -> None:
        assert BatchPlanner().batch_size == 20

    def test_plan_override_size(self) -> None:
        batches = BatchPlanner(20).plan(_records(10), batch_size=4)
        assert [len(b) for b in batches] == [4, 4, 2]

    @pytest.mark.parametrize("size", [0, -1, True, 2.5])
    def test_rejects_invalid_batch_size(self, size: object) -> None:
        with pytest.raises(ValueError):
            BatchPlanner(size)  # type: ignore[arg-type]

    def test_plan_rejects_invalid_override(self) -> None:
        with pytest.raises(ValueError):
            BatchPlanner().plan(_records(3), batch_size=0)


class TestChunk:
    def test_chunk_generic_items(self) -> None:
        assert chunk("abcde", 2) == [["a", "b"], ["c", "d"], ["e"]]
