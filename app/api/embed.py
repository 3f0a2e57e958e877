"""
Embed API — embed one ticket and upsert it into the vector store.
"""

from fastapi import APIRouter, Depends
from structlog import get_logger

from app.api.deps import get_config, get_embedder, get_store
from app.core.config import IngestConfig
from app.llm.client import EmbeddingClient
from app.models.ticket_models import EmbedRequest, EmbedResponse
from app.services.ingest_service import ingest_ticket
from app.store.vector_store import VectorStore

logger = get_logger()

router = APIRouter(tags=["Embeddings"])


@router.post("/embed", response_model=EmbedResponse)
async def embed(
    payload: EmbedRequest,
    store: VectorStore = Depends(get_store),
    embedder: EmbeddingClient = Depends(get_embedder),
    config: IngestConfig = Depends(get_config),
):
    """Embed a ticket's summary (and notes, if configured) and store it.

    Errors are rendered by the ``IngestError`` handler in ``app.main``.
    """
    logger.info("embed_request", ticket=payload.ticket_number)

    result = await ingest_ticket(
        payload.ticket_number,
        payload.summary,
        payload.notes,
        embedder=embedder,
        store=store,
        config=config,
    )
    return EmbedResponse(id=result.id, dims=result.dims)
