"""
FastAPI dependencies — hand routes the collaborators built in the lifespan.
"""

from fastapi import Request

from app.connectwise.client import ConnectWiseClient
from app.core.config import IngestConfig
from app.llm.client import EmbeddingClient
from app.services.backfill_service import BackfillJob
from app.store.vector_store import VectorStore


def get_config(request: Request) -> IngestConfig:
    return request.app.state.ingest_config


def get_store(request: Request) -> VectorStore:
    return request.app.state.vector_store


def get_embedder(request: Request) -> EmbeddingClient:
    return request.app.state.embedder


def get_source(request: Request) -> ConnectWiseClient:
    return request.app.state.source


def get_backfill_job(request: Request) -> BackfillJob:
    return request.app.state.backfill_job
