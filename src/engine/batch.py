"""Batch planner — split joined records into bounded-size batches.

Batches bound how many Evaluator calls are in flight at once: the
orchestrator scores one batch concurrently and only then starts the next.

Pure deterministic: no LLM calls, no side effects.
"""

from collections.abc import Sequence
from typing import TypeVar

from src.models.dataset import JoinedRecord

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 20


class BatchPlanner:
    """Partition an ordered collection into contiguous fixed-size slices."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = _validate_batch_size(batch_size)

    def plan(
        self,
        records: Sequence[JoinedRecord],
        batch_size: int | None = None,
    ) -> list[list[JoinedRecord]]:
        """Return ceil(N / batch_size) batches preserving record order.

        Every batch holds ``batch_size`` records except possibly the last.
        """
        return chunk(records, batch_size if batch_size is not None else self.batch_size)


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    size = _validate_batch_size(size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _validate_batch_size(size: int) -> int:
    if isinstance(size, bool) or not isinstance(size, int) or size < 1:
        raise ValueError(f"Batch size must be a positive integer, got {size!r}")
    return size
