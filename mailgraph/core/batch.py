"""Batch statistics and the failure-rate quality gate.

Counters are mutated only from the event loop thread, between awaits, so
plain integer increments are atomic with respect to other workers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_RATE_THRESHOLD = 0.02


@dataclass
class BatchStats:
    """Aggregate counters for one batch run.

    Attributes:
        processed: Documents fully processed.
        failures: Documents whose processing failed.
        skipped: Documents skipped as already ingested.
        entities_created: Entities resolved across all documents.
        relationships_created: Edges written across all documents.
        started_at: Monotonic clock reading when the batch started.
    """

    processed: int = 0
    failures: int = 0
    skipped: int = 0
    entities_created: int = 0
    relationships_created: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def total(self) -> int:
        return self.processed + self.failures + self.skipped

    @property
    def elapsed_seconds(self) -> float:
        return max(time.monotonic() - self.started_at, 1e-9)

    @property
    def rate(self) -> float:
        """Documents per second over the whole run."""
        return self.total / self.elapsed_seconds

    @property
    def failure_rate(self) -> float:
        total = self.total
        if total == 0:
            return 0.0
        return self.failures / total

    def snapshot(self) -> BatchStats:
        """Return an independent copy of the current counters."""
        return replace(self)

    def log_progress(self, label: str = "Batch progress") -> None:
        logger.info(
            "%s: processed=%d failures=%d skipped=%d entities=%d relationships=%d rate=%.1f docs/sec elapsed=%.0fs",
            label,
            self.processed,
            self.failures,
            self.skipped,
            self.entities_created,
            self.relationships_created,
            self.rate,
            self.elapsed_seconds,
        )


class BatchQualityError(Exception):
    """Raised after a batch whose failure rate exceeds the threshold.

    All successfully processed documents remain committed.

    Attributes:
        stats: Counters at the end of the batch.
        failure_rate: Observed failures / total.
        threshold: The configured threshold.
    """

    def __init__(self, stats: BatchStats, threshold: float) -> None:
        self.stats = stats
        self.failure_rate = stats.failure_rate
        self.threshold = threshold
        super().__init__(
            f"failure rate {self.failure_rate * 100:.2f}% exceeds {threshold * 100:.2f}% threshold "
            f"({stats.failures} of {stats.total} documents failed)"
        )


class BatchCancelledError(Exception):
    """Raised when a batch stops early on cancellation, after in-flight work drained."""

    def __init__(self, stats: BatchStats) -> None:
        self.stats = stats
        super().__init__(f"batch cancelled after {stats.total} documents")


def check_quality_gate(stats: BatchStats, threshold: float = DEFAULT_FAILURE_RATE_THRESHOLD) -> None:
    """Raise BatchQualityError when failures / total is strictly above threshold."""
    if stats.failure_rate > threshold:
        raise BatchQualityError(stats.snapshot(), threshold)
