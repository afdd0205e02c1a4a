"""Bounded-concurrency batch extraction.

One asyncio task per email, at most ``workers`` in flight, gated by a
semaphore acquired before each dispatch so the input stream is consumed
no faster than workers free up. Cancellation is cooperative: the
``cancel_event`` is checked before every dispatch, in-flight emails run to
completion, and then ``BatchCancelledError`` is raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable

from mailgraph.core.batch import (
    DEFAULT_FAILURE_RATE_THRESHOLD,
    BatchCancelledError,
    BatchStats,
    check_quality_gate,
)
from mailgraph.extraction.extractor import DocumentExtractor
from mailgraph.graph.store import DocumentStore
from mailgraph.graph.types import Document, DuplicateKeyError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 10
DEFAULT_PROGRESS_INTERVAL = 50


async def _iterate(documents: Iterable[Document] | AsyncIterable[Document]) -> AsyncIterator[Document]:
    if isinstance(documents, AsyncIterable):
        async for document in documents:
            yield document
    else:
        for document in documents:
            yield document


class ExtractionPipeline:
    """Loads and extracts a stream of emails with a fixed-size worker pool."""

    def __init__(
        self,
        extractor: DocumentExtractor,
        documents: DocumentStore,
        *,
        workers: int = DEFAULT_WORKERS,
        failure_rate_threshold: float = DEFAULT_FAILURE_RATE_THRESHOLD,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        """Initialize the pipeline.

        Args:
            extractor: Per-email extractor.
            documents: Store the emails are persisted to before extraction.
            workers: Maximum number of emails processed concurrently.
            failure_rate_threshold: Failure share above which the batch errors.
            progress_interval: Emit a progress log every this many emails.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._extractor = extractor
        self._documents = documents
        self._workers = workers
        self._failure_rate_threshold = failure_rate_threshold
        self._progress_interval = max(progress_interval, 1)

    async def process_batch(
        self,
        documents: Iterable[Document] | AsyncIterable[Document],
        cancel_event: asyncio.Event | None = None,
        extract: bool = True,
    ) -> BatchStats:
        """Process every email in ``documents``.

        Args:
            documents: Emails to ingest; unpersisted ones are stored first.
            cancel_event: When set, no further emails are dispatched.
            extract: When False, emails are only stored.

        Returns:
            Final batch counters.

        Raises:
            BatchCancelledError: If ``cancel_event`` was set before the
                stream was exhausted. In-flight emails have completed.
            BatchQualityError: If failures / total exceeds the threshold.
                Successfully processed emails remain committed.
        """
        stats = BatchStats()
        semaphore = asyncio.Semaphore(self._workers)
        pending: set[asyncio.Task[None]] = set()
        cancelled = False

        logger.info("Starting batch (workers=%d, extract=%s)", self._workers, extract)

        try:
            async for document in _iterate(documents):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break

                await semaphore.acquire()
                if cancel_event is not None and cancel_event.is_set():
                    semaphore.release()
                    cancelled = True
                    break

                task = asyncio.create_task(self._run_one(document, stats, semaphore, extract))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            # In-flight emails always drain, even if the input stream raised.
            if pending:
                await asyncio.gather(*pending)

        stats.log_progress("Batch complete")

        if cancelled:
            logger.warning("Batch cancelled after %d emails", stats.total)
            raise BatchCancelledError(stats.snapshot())

        check_quality_gate(stats, self._failure_rate_threshold)
        return stats

    async def _run_one(
        self,
        document: Document,
        stats: BatchStats,
        semaphore: asyncio.Semaphore,
        extract: bool,
    ) -> None:
        try:
            await self._process_document(document, stats, extract)
        except Exception:
            stats.failures += 1
            logger.exception("Failed to process email %s", document.message_id)
        finally:
            semaphore.release()
            if stats.total % self._progress_interval == 0:
                stats.log_progress()

    async def _process_document(self, document: Document, stats: BatchStats, extract: bool) -> None:
        if document.id is None:
            stored = await self._store_document(document)
            if stored is None:
                stats.skipped += 1
                return
            document = stored

        if not extract:
            stats.processed += 1
            return

        summary = await self._extractor.extract(document)
        stats.entities_created += summary.entities_created
        stats.relationships_created += summary.relationships_created
        if summary.degraded:
            stats.failures += 1
        else:
            stats.processed += 1

    async def _store_document(self, document: Document) -> Document | None:
        """Persist an email, returning None when it was already ingested."""
        existing = await self._documents.find_document_by_key(document.message_id)
        if existing is not None:
            logger.debug("Skipping already ingested email %s", document.message_id)
            return None
        try:
            return await self._documents.create_document(document)
        except DuplicateKeyError:
            logger.debug("Email %s ingested concurrently, skipping", document.message_id)
            return None
