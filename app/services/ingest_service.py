"""
Single-ticket ingest — validate, embed, upsert.

Used directly by ``POST /embed`` and per record by the backfill.
"""

from structlog import get_logger

from app.core.config import IngestConfig
from app.core.errors import ValidationError
from app.llm.client import EmbeddingClient
from app.models.ticket_models import IngestResult
from app.store.vector_store import VectorStore

logger = get_logger()


def effective_text(summary: str, notes: str | None, include_notes: bool) -> str:
    """The text that gets embedded for a ticket."""
    if include_notes and notes and notes.strip():
        return f"{summary.strip()}\n\n{notes.strip()}".strip()
    return summary.strip()


def validate_text(text: str, minimum_length: int) -> None:
    """Raise ``ValidationError`` when ``text`` is shorter than ``minimum_length``."""
    if len(text) < minimum_length:
        raise ValidationError(minimum_length, len(text))


async def ingest_ticket(
    ticket_number: str,
    summary: str,
    notes: str | None,
    *,
    embedder: EmbeddingClient,
    store: VectorStore,
    config: IngestConfig,
) -> IngestResult:
    """Embed one ticket and upsert it under ``ticket_number``.

    One provider call and one store write, no retries. Any failure
    propagates to the caller.

    Raises:
        ValidationError: Effective text below ``config.minimum_text_length``.
        ProviderError: The embeddings call failed.
        StoreError: The upsert failed.
    """
    text = effective_text(summary, notes, config.include_notes)
    validate_text(text, config.minimum_text_length)

    vector = await embedder.embed(text, config.provider_model)
    result = await store.upsert(ticket_number, summary.strip(), notes, vector)

    logger.info("ticket_ingested", ticket=ticket_number, id=result.id, dims=result.dims)
    return result
