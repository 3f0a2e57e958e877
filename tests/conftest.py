"""Shared pytest fixtures."""

import pytest

from app.core.config import IngestConfig


@pytest.fixture
def config() -> IngestConfig:
    return IngestConfig(page_size=1000, minimum_text_length=10)
