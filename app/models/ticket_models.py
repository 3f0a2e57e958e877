"""
Pydantic models for tickets, API payloads and the backfill report.
"""

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes as camelCase, accepts either camelCase or snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Ticket source ──────────────────────────────────────


class TicketRecord(BaseModel):
    """A ticket as returned by the ConnectWise list endpoint."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str = Field(..., min_length=1)
    summary: str = ""
    notes: str | None = Field(
        None, validation_alias=AliasChoices("notes", "initialDescription")
    )

    @field_validator("summary", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


# ── /embed ─────────────────────────────────────────────


class EmbedRequest(CamelModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    ticket_number: str = Field(..., min_length=1, description="ConnectWise ticket id")
    summary: str = Field(
        "", validation_alias=AliasChoices("summary", "text"),
    )
    notes: str | None = None


class IngestResult(BaseModel):
    id: int
    dims: int


class EmbedResponse(CamelModel):
    ok: bool = True
    id: int
    dims: int


# ── /ingest/backfill ───────────────────────────────────


class TerminationReason(str, Enum):
    EXHAUSTED = "exhausted"
    LIMIT_REACHED = "limit_reached"
    SOURCE_ERROR = "source_error"
    CANCELLED = "cancelled"


class BackfillRequest(CamelModel):
    limit: int | None = Field(
        None, ge=0, description="Stop after this many tickets; 0 or absent = all"
    )


class FailedTicket(CamelModel):
    ticket_number: str
    reason: str


class IngestionReport(CamelModel):
    """Counters for one backfill invocation."""

    ok: bool = True
    processed: int = 0
    inserted: int = 0
    skipped_duplicate: int = 0
    skipped_short_text: int = 0
    failed: int = 0
    failures: list[FailedTicket] = Field(default_factory=list)
    pages_fetched: int = 0
    termination: TerminationReason | None = None
    note: str | None = None


class BackfillStatus(CamelModel):
    running: bool
    report: IngestionReport | None = None
    error: str | None = None


# ── /match ─────────────────────────────────────────────


class MatchRequest(CamelModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    text: str
    ticket_number: str | None = None
    top_n: int | None = Field(None, ge=1)
    with_note: bool = True


class Match(CamelModel):
    ticket_number: str
    summary: str
    notes: str | None = None
    distance: float
    similarity: float


class MatchResponse(CamelModel):
    ok: bool = True
    ticket_number: str | None = None
    match_count: int
    matches: list[Match]
    internal_note: str | None = None
