"""
Match API — similar historical tickets and an internal note.
"""

from fastapi import APIRouter, Depends
from structlog import get_logger

from app.api.deps import get_config, get_embedder, get_store
from app.core.config import IngestConfig
from app.llm.client import EmbeddingClient
from app.models.ticket_models import MatchRequest, MatchResponse
from app.services.match_service import find_matches
from app.store.vector_store import VectorStore

logger = get_logger()

router = APIRouter(tags=["Matching"])


@router.post("/match", response_model=MatchResponse)
async def match(
    payload: MatchRequest,
    store: VectorStore = Depends(get_store),
    embedder: EmbeddingClient = Depends(get_embedder),
    config: IngestConfig = Depends(get_config),
):
    logger.info("match_request", ticket=payload.ticket_number, top_n=payload.top_n)

    return await find_matches(
        payload.text,
        store=store,
        embedder=embedder,
        config=config,
        ticket_number=payload.ticket_number,
        top_n=payload.top_n,
        with_note=payload.with_note,
    )
