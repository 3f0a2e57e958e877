"""
Match service — nearest stored tickets for a piece of text, plus an
optional LLM-written internal note.
"""

from structlog import get_logger

from app.core.config import IngestConfig
from app.llm.client import EmbeddingClient
from app.llm.prompts import build_internal_note_prompt
from app.models.ticket_models import MatchResponse
from app.services.ingest_service import validate_text
from app.store.vector_store import VectorStore

logger = get_logger()

NO_MATCHES_NOTE = "No historical matches found."


async def find_matches(
    text: str,
    *,
    store: VectorStore,
    embedder: EmbeddingClient,
    config: IngestConfig,
    ticket_number: str | None = None,
    top_n: int | None = None,
    with_note: bool = True,
) -> MatchResponse:
    """Embed ``text`` and return the closest stored tickets.

    The caller's own ``ticket_number`` is excluded from the results.
    """
    text = text.strip()
    validate_text(text, config.minimum_text_length)

    k = min(top_n or config.match_default_limit, config.match_max_limit)
    vector = await embedder.embed(text, config.provider_model)
    matches = await store.nearest_neighbors(vector, k, exclude_ticket_number=ticket_number)

    logger.info("match_complete", ticket=ticket_number, k=k, matches=len(matches))

    note = None
    if with_note and not matches:
        note = NO_MATCHES_NOTE
    elif with_note:
        messages = build_internal_note_prompt(ticket_number, text, matches)
        note = await embedder.write_note(messages)

    return MatchResponse(
        ticket_number=ticket_number,
        match_count=len(matches),
        matches=matches,
        internal_note=note,
    )
