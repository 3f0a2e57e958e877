"""
Vector store — ticket embeddings in PostgreSQL with a pgvector column.

Expected table::

    ticket_embeddings(
        id            bigserial primary key,
        ticket_number text unique not null,
        summary       text not null,
        notes         text,
        embedding     vector(N) not null,
        created_at    timestamptz not null default now()
    )
"""

import asyncpg
from structlog import get_logger

from app.core.errors import StoreError
from app.models.ticket_models import IngestResult, Match

logger = get_logger()

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

EXISTS_SQL = "SELECT EXISTS (SELECT 1 FROM ticket_embeddings WHERE ticket_number = $1)"

UPSERT_SQL = """
    INSERT INTO ticket_embeddings (ticket_number, summary, notes, embedding, created_at)
    VALUES ($1, $2, $3, $4::vector, now())
    ON CONFLICT (ticket_number) DO UPDATE
        SET summary = EXCLUDED.summary,
            notes = EXCLUDED.notes,
            embedding = EXCLUDED.embedding,
            created_at = now()
    RETURNING id
"""

NEAREST_SQL = """
    SELECT ticket_number, summary, notes, embedding <-> $1::vector AS distance
    FROM ticket_embeddings
    WHERE $2::text IS NULL OR ticket_number <> $2::text
    ORDER BY embedding <-> $1::vector
    LIMIT $3
"""

COUNT_SQL = "SELECT count(*) FROM ticket_embeddings"


def vector_literal(vector: list[float]) -> str:
    """Format a vector as a pgvector text literal."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


class VectorStore:
    """Gateway owning all reads and writes of ``ticket_embeddings``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def exists(self, ticket_number: str) -> bool:
        try:
            return bool(await self._pool.fetchval(EXISTS_SQL, ticket_number))
        except _STORE_ERRORS as e:
            logger.warning("store_exists_failed", ticket=ticket_number, error=str(e))
            raise StoreError(f"Duplicate check failed for {ticket_number}: {e}") from e

    async def upsert(
        self,
        ticket_number: str,
        summary: str,
        notes: str | None,
        vector: list[float],
    ) -> IngestResult:
        """Insert or replace the entry for ``ticket_number``."""
        try:
            row_id = await self._pool.fetchval(
                UPSERT_SQL, ticket_number, summary, notes, vector_literal(vector)
            )
        except _STORE_ERRORS as e:
            logger.warning("store_upsert_failed", ticket=ticket_number, error=str(e))
            raise StoreError(f"Upsert failed for {ticket_number}: {e}") from e

        logger.debug("store_upserted", ticket=ticket_number, id=row_id, dims=len(vector))
        return IngestResult(id=row_id, dims=len(vector))

    async def nearest_neighbors(
        self,
        vector: list[float],
        k: int,
        exclude_ticket_number: str | None = None,
    ) -> list[Match]:
        """Return the ``k`` closest entries, nearest first."""
        try:
            rows = await self._pool.fetch(
                NEAREST_SQL, vector_literal(vector), exclude_ticket_number, k
            )
        except _STORE_ERRORS as e:
            logger.warning("store_query_failed", error=str(e))
            raise StoreError(f"Similarity query failed: {e}") from e

        matches = []
        for row in rows:
            distance = float(row["distance"])
            matches.append(Match(
                ticket_number=row["ticket_number"],
                summary=row["summary"],
                notes=row["notes"],
                distance=distance,
                similarity=1 / (1 + distance),
            ))
        return matches

    async def count(self) -> int:
        try:
            return await self._pool.fetchval(COUNT_SQL)
        except _STORE_ERRORS as e:
            raise StoreError(f"Count failed: {e}") from e
