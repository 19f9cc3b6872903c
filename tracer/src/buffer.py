"""
In-memory batch buffer in front of the sample store.

Samples accumulate in insertion order until the capacity bound is reached,
at which point the whole list is swapped out and committed as one batch.
At 256 entries a batch is roughly 22 KB of sample data.

The buffer is owned by the acquisition thread and is not synchronized.
Whoever owns it must call flush_on_shutdown() (or use it as a context
manager) on every exit path, otherwise samples below the capacity bound are
lost.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import logging
from typing import Protocol

from tracer.src.models import Sample

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY: int = 256


class BatchSink(Protocol):
    """Anything that can durably commit a batch of samples."""

    def commit_batch(self, samples: list[Sample]) -> int: ...


class PersistenceBuffer:
    """Accumulates Samples and flushes them to a BatchSink in batches.

    Args:
        sink: Destination for committed batches (normally a SampleStore).
        capacity: Number of buffered samples that triggers a flush.
    """

    def __init__(self, sink: BatchSink, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._sink = sink
        self._capacity = capacity
        self._pending: list[Sample] = []
        self.flushed_batches = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def pending(self) -> tuple[Sample, ...]:
        """Buffered samples awaiting commit, oldest first."""
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def append(self, sample: Sample) -> None:
        """Buffer *sample* and flush if the capacity bound is reached."""
        self._pending.append(sample)
        self.flush_if_full()

    def flush_if_full(self) -> int:
        """Flush when at capacity. Returns the number of rows committed."""
        if len(self._pending) < self._capacity:
            return 0
        return self._flush()

    def flush_on_shutdown(self) -> int:
        """Commit whatever is buffered, regardless of capacity."""
        if not self._pending:
            return 0
        logger.info("Flushing %d buffered samples on shutdown", len(self._pending))
        return self._flush()

    def __enter__(self) -> PersistenceBuffer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.flush_on_shutdown()

    def _flush(self) -> int:
        batch, self._pending = self._pending, []
        self.flushed_batches += 1
        return self._sink.commit_batch(batch)
