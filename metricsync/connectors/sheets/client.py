"""MetricSync — Google Sheets API Client.

Lists a spreadsheet's tabs and reads a cell range as header-keyed rows.
Both calls are idempotent reads, so 429s, 5xx responses and transport
errors are retried with exponential backoff.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from metricsync.config import settings
from metricsync.core.errors import (
    InsufficientDataError,
    SourceUnavailableError,
    TabsNotFoundError,
)
from metricsync.core.logging import get_logger
from metricsync.models.sync_models import SheetTab

logger = get_logger("sheets.client")


class SheetsClient:
    """Async HTTP client for the Sheets v4 REST API."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.base_url = (base_url or settings.sheets_base_url).rstrip("/")
        self.max_retries = max(1, max_retries or settings.sheets_max_retries)
        self.retry_base_delay = (
            settings.sheets_retry_base_delay
            if retry_base_delay is None
            else retry_base_delay
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.http_timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "SheetsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Core Request Method ──

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self.retry_base_delay * (2 ** (attempt - 1)))

    async def _get(self, url: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """GET with bounded retry on rate limits, server and transport errors."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self.access_token}"}

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.get(url, params=params, headers=headers)
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    logger.warning(
                        f"Request error: {e}. Retrying (attempt {attempt}/{self.max_retries})"
                    )
                    await self._backoff(attempt)
                    continue
                raise SourceUnavailableError(
                    f"Google Sheets unreachable after {self.max_retries} attempts: {e}"
                ) from e

            retryable = resp.status_code == 429 or resp.status_code >= 500
            if retryable and attempt < self.max_retries:
                logger.warning(
                    f"Google Sheets returned {resp.status_code}. "
                    f"Retrying (attempt {attempt}/{self.max_retries})",
                    extra={"status_code": resp.status_code},
                )
                await self._backoff(attempt)
                continue

            if resp.status_code >= 400:
                raise SourceUnavailableError(
                    f"Google Sheets API error: {resp.status_code} {resp.reason_phrase}",
                    upstream_status=resp.status_code,
                )
            try:
                body = resp.json()
            except ValueError as e:
                raise SourceUnavailableError(
                    f"Google Sheets returned a malformed response: {e}",
                    upstream_status=resp.status_code,
                ) from e
            if not isinstance(body, dict):
                raise SourceUnavailableError(
                    f"Google Sheets returned an unexpected {type(body).__name__} body",
                    upstream_status=resp.status_code,
                )
            return body

        raise SourceUnavailableError("Max retries exhausted")

    # ── Tabs ──

    async def list_tabs(self, spreadsheet_id: str) -> List[SheetTab]:
        """Return every tab as {name, ref}, in spreadsheet order."""
        url = f"{self.base_url}/spreadsheets/{quote(spreadsheet_id, safe='')}"
        result = await self._get(url, {"fields": "sheets.properties"})

        tabs = []
        for sheet in result.get("sheets") or []:
            props = sheet.get("properties") or {}
            sheet_id = props.get("sheetId")
            tabs.append(
                SheetTab(
                    name=props.get("title") or "Untitled",
                    ref=str(sheet_id) if sheet_id is not None else "0",
                )
            )

        if not tabs:
            raise TabsNotFoundError("No sheets found in the spreadsheet")

        logger.info(f"Found {len(tabs)} tabs in {spreadsheet_id}", extra={"count": len(tabs)})
        return tabs

    # ── Rows ──

    async def fetch_rows(
        self,
        spreadsheet_id: str,
        tab_name: str,
        cell_range: str | None = None,
    ) -> List[Dict[str, str]]:
        """Read a range; the first row is the header row.

        Returns one dict per data row keyed by header. Short rows are padded
        with empty strings.
        """
        a1 = f"{tab_name}!{cell_range or settings.sheets_default_range}"
        url = (
            f"{self.base_url}/spreadsheets/{quote(spreadsheet_id, safe='')}"
            f"/values/{quote(a1, safe='')}"
        )
        result = await self._get(url)
        values: List[List[Any]] = result.get("values") or []

        if len(values) < 2:
            raise InsufficientDataError(
                "Sheet must have at least a header row and one data row"
            )

        headers = [str(h) for h in values[0]]
        rows: List[Dict[str, str]] = []
        for raw_row in values[1:]:
            rows.append(
                {
                    header: str(raw_row[i]) if i < len(raw_row) else ""
                    for i, header in enumerate(headers)
                }
            )

        logger.info(
            f"Fetched {len(rows)} rows from {spreadsheet_id} / {tab_name}",
            extra={"count": len(rows)},
        )
        return rows
