"""
Error taxonomy for the embed / ingest / match paths.

Every error knows the HTTP status it maps to and how to render itself as a
JSON body; ``app.main`` registers a single handler for ``IngestError``.
"""

from typing import Any


class IngestError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(IngestError):
    """Input text is shorter than the configured minimum."""

    status_code = 400

    def __init__(self, minimum_length: int, provided_length: int) -> None:
        super().__init__(f"summary must be at least {minimum_length} characters")
        self.minimum_length = minimum_length
        self.provided_length = provided_length

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "providedLength": self.provided_length}


class ProviderError(IngestError):
    """The embeddings / chat provider failed or returned malformed data."""

    status_code = 502

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class StoreError(IngestError):
    """A duplicate check, upsert or similarity query failed."""

    status_code = 503

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details


class SourceError(IngestError):
    """A ticket-source page fetch failed or returned an unparseable body."""

    status_code = 502

    def __init__(self, message: str, raw: Any = None, report: Any = None) -> None:
        super().__init__(message)
        self.raw = raw
        self.report = report

    def to_payload(self) -> dict[str, Any]:
        payload = {"error": self.message, "raw": self.raw}
        if self.report is not None:
            payload["report"] = self.report.model_dump(mode="json", by_alias=True)
        return payload


class BackfillAlreadyRunning(IngestError):
    status_code = 409

    def __init__(self) -> None:
        super().__init__("a backfill is already running")
