"""
Ingestion policy model — loaded from YAML, decides which ConnectWise tickets
are eligible for the embeddings backfill.
"""

from pydantic import BaseModel, Field


class IngestPolicy(BaseModel):
    """Which tickets the backfill pulls from the ticket source."""

    # ── Source population ──────────────────────────────
    boards: list[str] = Field(
        default_factory=lambda: ["Help Desk"],
        description="Service boards (work queues) to ingest from",
    )
    closed_only: bool = True
    excluded_statuses: list[str] = Field(
        default_factory=lambda: ["Cancelled"],
    )

    # ── Extra raw conditions appended with AND ─────────
    extra_conditions: list[str] = Field(default_factory=list)

    def build_conditions(self) -> str:
        """Render the policy as a ConnectWise ``conditions`` query string."""
        clauses = []
        if self.closed_only:
            clauses.append("closedFlag = true")
        for status in self.excluded_statuses:
            clauses.append(f'status/name != "{_quote(status)}"')
        if self.boards:
            names = ", ".join(f'"{_quote(b)}"' for b in self.boards)
            clauses.append(f"board/name in ({names})")
        clauses.extend(c for c in self.extra_conditions if c.strip())
        return " AND ".join(clauses)


def _quote(value: str) -> str:
    return value.replace('"', '\\"')
