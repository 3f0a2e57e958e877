"""
Backfill API — bulk-ingest the ConnectWise backlog, either inline or as a
background job.
"""

import asyncio
import contextlib

from fastapi import APIRouter, Depends, Request
from structlog import get_logger

from app.api.deps import get_backfill_job, get_config, get_embedder, get_source, get_store
from app.connectwise.client import ConnectWiseClient
from app.core.config import IngestConfig
from app.llm.client import EmbeddingClient
from app.models.ticket_models import BackfillRequest, BackfillStatus, IngestionReport
from app.services.backfill_service import BackfillJob, run_backfill
from app.store.vector_store import VectorStore

logger = get_logger()

router = APIRouter(prefix="/ingest", tags=["Backfill"])

DISCONNECT_POLL_SECONDS = 0.5


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    """Set ``cancel_event`` once the client has gone away."""
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
    logger.info("backfill_client_disconnected")
    cancel_event.set()


@router.post(
    "/backfill",
    response_model=IngestionReport,
    response_model_exclude_none=True,
)
async def backfill(
    request: Request,
    payload: BackfillRequest | None = None,
    source: ConnectWiseClient = Depends(get_source),
    store: VectorStore = Depends(get_store),
    embedder: EmbeddingClient = Depends(get_embedder),
    config: IngestConfig = Depends(get_config),
):
    """Run the backfill to completion and return its report.

    A source failure is rendered as ``{error, raw, report}`` by the
    ``IngestError`` handler. If the client disconnects, the run stops before
    its next ticket.
    """
    limit = payload.limit if payload else None
    logger.info("backfill_request", limit=limit)

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        return await run_backfill(
            source, store, embedder, config, limit=limit, cancel_event=cancel_event
        )
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher


@router.post("/backfill/start", status_code=202)
async def start_backfill(
    payload: BackfillRequest | None = None,
    job: BackfillJob = Depends(get_backfill_job),
):
    """Start the backfill in the background so the caller gets a fast 202."""
    limit = payload.limit if payload else None
    job.start(limit)
    return {"status": "accepted", "limit": limit}


@router.get("/backfill/status", response_model=BackfillStatus)
async def backfill_status(job: BackfillJob = Depends(get_backfill_job)):
    return BackfillStatus(
        running=job.is_running,
        report=job.last_report,
        error=job.last_error,
    )


@router.post("/backfill/cancel")
async def cancel_backfill(job: BackfillJob = Depends(get_backfill_job)):
    return {"status": "cancelling" if job.cancel() else "idle"}
