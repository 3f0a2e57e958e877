"""
Backfill service — pages through ConnectWise and ingests every eligible
ticket that is not already in the vector store.

Runs strictly one ticket at a time. A re-run starts again from page 1 and
relies on the duplicate check, so repeated runs never create extra rows and
never re-pay for embeddings of tickets already stored.
"""

import asyncio

from structlog import get_logger

from app.connectwise.client import ConnectWiseClient
from app.core.config import IngestConfig
from app.core.errors import BackfillAlreadyRunning, SourceError
from app.llm.client import EmbeddingClient
from app.models.ticket_models import (
    FailedTicket,
    IngestionReport,
    TerminationReason,
    TicketRecord,
)
from app.services.ingest_service import effective_text, ingest_ticket
from app.store.vector_store import VectorStore

logger = get_logger()


async def run_backfill(
    source: ConnectWiseClient,
    store: VectorStore,
    embedder: EmbeddingClient,
    config: IngestConfig,
    limit: int | None = None,
    cancel_event: asyncio.Event | None = None,
) -> IngestionReport:
    """Ingest the eligible ticket backlog.

    Args:
        source: Ticket source to page through.
        store: Vector store used for the duplicate check and upserts.
        embedder: Embeddings provider.
        config: Page size, filter predicate and text policy.
        limit: Stop after this many tickets have been processed.
            ``None`` or 0 means no limit.
        cancel_event: Checked before every page and every ticket.

    Returns:
        The report. ``termination`` says why the run ended.

    Raises:
        SourceError: A page could not be fetched or parsed. The partial
            report is attached as ``error.report``.
    """
    report = IngestionReport()
    page = 1

    logger.info(
        "backfill_start",
        limit=limit or None,
        page_size=config.page_size,
        conditions=config.source_filter_predicate,
    )

    while True:
        if _is_cancelled(cancel_event):
            return _finish(report, TerminationReason.CANCELLED)

        try:
            records = await source.fetch_page(
                page, config.page_size, config.source_filter_predicate
            )
        except SourceError as e:
            report.ok = False
            report.termination = TerminationReason.SOURCE_ERROR
            e.report = report
            logger.error("backfill_source_failed", page=page, error=e.message)
            raise

        report.pages_fetched += 1
        logger.info("backfill_page_fetched", page=page, records=len(records))

        if not records:
            return _finish(report, TerminationReason.EXHAUSTED)

        for record in records:
            if _is_cancelled(cancel_event):
                return _finish(report, TerminationReason.CANCELLED)

            await _process_record(record, store, embedder, config, report)
            report.processed += 1

            if limit and report.processed >= limit:
                report.note = (
                    f"stopped early after processing {report.processed} "
                    f"tickets (limit={limit})"
                )
                return _finish(report, TerminationReason.LIMIT_REACHED)

        page += 1


async def _process_record(
    record: TicketRecord,
    store: VectorStore,
    embedder: EmbeddingClient,
    config: IngestConfig,
    report: IngestionReport,
) -> None:
    """Classify one ticket and ingest it if it qualifies."""
    text = effective_text(record.summary, record.notes, config.include_notes)
    if len(text) < config.minimum_text_length:
        report.skipped_short_text += 1
        logger.debug("backfill_skip_short", ticket=record.id, length=len(text))
        return

    try:
        # Must precede the embeddings call
        if await store.exists(record.id):
            report.skipped_duplicate += 1
            logger.debug("backfill_skip_duplicate", ticket=record.id)
            return

        await ingest_ticket(
            record.id,
            record.summary,
            record.notes,
            embedder=embedder,
            store=store,
            config=config,
        )
    except Exception as e:
        report.failed += 1
        if len(report.failures) < config.max_failures_retained:
            report.failures.append(FailedTicket(ticket_number=record.id, reason=str(e)))
        logger.exception("backfill_ticket_failed", ticket=record.id, error=str(e))
        return

    report.inserted += 1


def _is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _finish(report: IngestionReport, reason: TerminationReason) -> IngestionReport:
    report.termination = reason
    logger.info(
        "backfill_complete",
        termination=reason.value,
        processed=report.processed,
        inserted=report.inserted,
        skipped_duplicate=report.skipped_duplicate,
        skipped_short_text=report.skipped_short_text,
        failed=report.failed,
        pages=report.pages_fetched,
    )
    return report


class BackfillJob:
    """A single background backfill run per process."""

    def __init__(
        self,
        source: ConnectWiseClient,
        store: VectorStore,
        embedder: EmbeddingClient,
        config: IngestConfig,
    ) -> None:
        self._source = source
        self._store = store
        self._embedder = embedder
        self._config = config
        self._task: asyncio.Task | None = None
        self._cancel_event = asyncio.Event()
        self.last_report: IngestionReport | None = None
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, limit: int | None = None) -> asyncio.Task:
        """Launch the backfill as a fire-and-forget task."""
        if self.is_running:
            raise BackfillAlreadyRunning()

        self._cancel_event = asyncio.Event()
        self.last_report = None
        self.last_error = None
        self._task = asyncio.create_task(self._safe_run(limit))
        logger.info("backfill_job_started", limit=limit or None)
        return self._task

    def cancel(self) -> bool:
        """Ask the running backfill to stop before its next ticket."""
        if not self.is_running:
            return False
        self._cancel_event.set()
        logger.info("backfill_job_cancel_requested")
        return True

    async def stop(self, timeout: float = 30.0) -> None:
        """Cancel the running backfill and wait for it to finish.

        If it does not reach a ticket boundary within ``timeout`` seconds the
        task itself is cancelled.
        """
        if not self.is_running:
            return

        self.cancel()
        try:
            await asyncio.wait_for(self._task, timeout)
        except asyncio.TimeoutError:
            logger.warning("backfill_job_stop_timeout", timeout=timeout)
        logger.info("backfill_job_stopped")

    async def _safe_run(self, limit: int | None) -> None:
        """Wrapper that records the outcome instead of losing it in the task."""
        try:
            self.last_report = await run_backfill(
                self._source,
                self._store,
                self._embedder,
                self._config,
                limit=limit,
                cancel_event=self._cancel_event,
            )
        except SourceError as e:
            self.last_report = e.report
            self.last_error = e.message
        except Exception as e:
            self.last_error = str(e)
            logger.exception("backfill_job_failed")
