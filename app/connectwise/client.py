"""
ConnectWise client — pages through the ``service/tickets`` list endpoint
and decodes each page into ``TicketRecord`` objects.
"""

import json

import httpx
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from app.core.errors import SourceError
from app.models.ticket_models import TicketRecord

logger = get_logger()

TICKET_FIELDS = "id,summary,initialDescription"


class PageOk:
    """A page body that decoded to a list of tickets."""

    def __init__(self, records: list[TicketRecord], skipped: int = 0):
        self.records = records
        self.skipped = skipped

    def __repr__(self) -> str:
        return f"PageOk(records={len(self.records)}, skipped={self.skipped})"


class PageError:
    """A page body that could not be decoded; ``raw`` is kept for diagnosis."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason

    def __repr__(self) -> str:
        return f"PageError(reason={self.reason!r})"


def decode_page(body: str) -> PageOk | PageError:
    """Decode a raw list-endpoint body.

    Records that fail validation are logged and skipped. A non-empty page in
    which no record is valid is a ``PageError``, never an empty ``PageOk``.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return PageError(body, "response is not valid JSON")

    if not isinstance(payload, list):
        return PageError(body, "response is not a list of tickets")

    records = []
    reason = ""
    for index, item in enumerate(payload):
        try:
            records.append(TicketRecord.model_validate(item))
        except PydanticValidationError as e:
            reason = e.errors()[0]["msg"]
            logger.warning("source_record_invalid", index=index, reason=reason)

    if payload and not records:
        return PageError(body, f"malformed ticket record: {reason}")

    return PageOk(records, skipped=len(payload) - len(records))


class ConnectWiseClient:
    """Async client for the ConnectWise Manage REST API."""

    def __init__(
        self,
        base_url: str,
        company_id: str,
        public_key: str,
        private_key: str,
        client_id: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if client_id:
            headers["clientId"] = client_id

        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=httpx.BasicAuth(f"{company_id}+{public_key}", private_key),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def fetch_page(
        self,
        page: int,
        page_size: int,
        conditions: str = "",
    ) -> list[TicketRecord]:
        """Fetch one page of tickets.

        Args:
            page: 1-based page number.
            page_size: Records per page.
            conditions: ConnectWise conditions string narrowing the population.

        Returns:
            The decoded tickets, empty when the source is exhausted.

        Raises:
            SourceError: On transport/auth failure or an unparseable body.
        """
        params = {"page": page, "pageSize": page_size, "fields": TICKET_FIELDS}
        if conditions:
            params["conditions"] = conditions

        try:
            response = await self._http.get("/service/tickets", params=params)
        except httpx.HTTPError as e:
            logger.error("source_request_failed", page=page, error=str(e))
            raise SourceError(f"Ticket source request failed: {e}") from e

        if response.is_error:
            logger.error(
                "source_http_error",
                page=page,
                status=response.status_code,
            )
            raise SourceError(
                f"Ticket source returned HTTP {response.status_code}",
                raw=response.text,
            )

        result = decode_page(response.text)
        if isinstance(result, PageError):
            logger.error("source_page_malformed", page=page, reason=result.reason)
            raise SourceError(
                f"Failed to parse tickets page {page}: {result.reason}",
                raw=result.raw,
            )

        logger.debug(
            "source_page_fetched",
            page=page,
            records=len(result.records),
            skipped=result.skipped,
        )
        return result.records

    async def close(self) -> None:
        await self._http.aclose()
