"""
Ticket Embeddings — FastAPI application entry point.
"""

from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from structlog import get_logger

from app.api.embed import router as embed_router
from app.api.ingest import router as ingest_router
from app.api.match import router as match_router
from app.connectwise.client import ConnectWiseClient
from app.core.config import build_ingest_config, load_ingest_policy, settings
from app.core.errors import IngestError
from app.core.logging import configure_logging
from app.llm.client import EmbeddingClient
from app.services.backfill_service import BackfillJob
from app.store.vector_store import VectorStore

configure_logging(settings.LOG_LEVEL)
logger = get_logger()

SERVICE_NAME = "ticket-embeddings"
VERSION = "0.3.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: build shared clients, then close them."""
    config = build_ingest_config(settings, load_ingest_policy())
    logger.info(
        "startup",
        service=SERVICE_NAME,
        model=config.provider_model,
        page_size=config.page_size,
        min_text_length=config.minimum_text_length,
    )

    pool = await asyncpg.create_pool(
        settings.DATABASE_URL,
        min_size=settings.PG_POOL_MIN,
        max_size=settings.PG_POOL_MAX,
        ssl=settings.PG_SSL or None,
    )
    embedder = EmbeddingClient(
        config,
        api_key=settings.OPENAI_API_KEY,
        note_model=settings.NOTE_MODEL,
    )
    source = ConnectWiseClient(
        base_url=settings.CW_BASE_URL,
        company_id=settings.CW_COMPANY_ID,
        public_key=settings.CW_PUBLIC_KEY,
        private_key=settings.CW_PRIVATE_KEY,
        client_id=settings.CW_CLIENT_ID,
        timeout=settings.CW_TIMEOUT_SECONDS,
    )
    store = VectorStore(pool)

    app.state.ingest_config = config
    app.state.vector_store = store
    app.state.embedder = embedder
    app.state.source = source
    app.state.backfill_job = BackfillJob(source, store, embedder, config)
    yield

    await app.state.backfill_job.stop(settings.SHUTDOWN_TIMEOUT_SECONDS)
    await source.close()
    await embedder.close()
    await pool.close()
    logger.info("shutdown", service=SERVICE_NAME)


app = FastAPI(
    title="Ticket Embeddings",
    description=(
        "Embeds ConnectWise tickets into pgvector, backfills the closed-ticket "
        "backlog, and finds similar historical tickets."
    ),
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    logger.warning(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# Routes
app.include_router(embed_router)
app.include_router(ingest_router)
app.include_router(match_router)


@app.get("/")
async def root():
    """Health check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
    }


@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    store = getattr(request.app.state, "vector_store", None)
    store_connected = False
    if store is not None:
        try:
            await store.count()
            store_connected = True
        except IngestError:
            store_connected = False

    return {
        "status": "healthy",
        "store_connected": store_connected,
        "source_configured": settings.source_configured,
        "provider_configured": bool(settings.OPENAI_API_KEY),
    }
