"""
Async client for the spreadsheet values API.

Every request carries a bounded timeout. Transport errors, timeouts, 429
and 5xx responses are retried with exponential backoff; once the attempts
are used up SyncUnavailable is raised. Other 4xx responses are permanent
and raise ExternalStoreError straight away.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from bakehouse.services.exceptions import ExternalStoreError, SyncUnavailable
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync.token_provider import TokenProvider
from bakehouse.utils.config import SyncSettings

logger = get_service_logger(__name__)

RETRYABLE_STATUS = {408, 429}


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS or status_code >= 500


def column_letter(index: int) -> str:
    """1-based column index to A1 letters (1 -> A, 27 -> AA)."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def rows_to_records(values: List[List[Any]]) -> List[Dict[str, str]]:
    """Turn a header row plus data rows into dicts; short rows are padded with ''."""
    if not values:
        return []
    header = [str(column).strip() for column in values[0]]
    records = []
    for row in values[1:]:
        if not any(str(cell).strip() for cell in row):
            continue
        padded = list(row) + [""] * (len(header) - len(row))
        records.append({column: str(padded[i]) for i, column in enumerate(header) if column})
    return records


class SheetsClient:
    """
    Spreadsheet values API client bound to one spreadsheet.

    Args:
        spreadsheet_id: Target spreadsheet
        token_provider: Source of bearer tokens
        settings: Timeouts and retry policy
        http_client: Optional pre-built httpx.AsyncClient (tests pass one with
            a MockTransport); the client is owned and closed by this object
            only when it created it
        sleep: Awaitable sleep used between retries
    """

    def __init__(
        self,
        spreadsheet_id: str,
        token_provider: TokenProvider,
        settings: Optional[SyncSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._spreadsheet_id = spreadsheet_id
        self._tokens = token_provider
        self._settings = settings or SyncSettings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.request_timeout)
        )
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self._settings.backoff_max, self._settings.backoff_base * (2 ** (attempt - 1)))

    def _url(self, suffix: str) -> str:
        return f"{self._settings.api_base}/spreadsheets/{self._spreadsheet_id}{suffix}"

    async def _request(
        self,
        method: str,
        suffix: str,
        operation: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        max_attempts = self._settings.max_attempts
        last_error: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            try:
                token = await self._tokens.get_token(self._client)
                response = await self._client.request(
                    method,
                    self._url(suffix),
                    params=params,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self._settings.request_timeout,
                )
                if response.status_code == 401 and attempt < max_attempts:
                    self._tokens.invalidate()
                    last_error = "HTTP 401"
                    continue
                response.raise_for_status()
                return response.json() if response.content else {}
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if not is_retryable_status(status):
                    raise ExternalStoreError(operation, status, e.response.text[:500])
                last_error = f"HTTP {status}"
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < max_attempts:
                delay = self.backoff_delay(attempt)
                log_operation(
                    logger,
                    operation=operation,
                    outcome="retrying",
                    level=logging.WARNING,
                    attempt=attempt,
                    delay=delay,
                    error=last_error,
                )
                await self._sleep(delay)

        raise SyncUnavailable(operation, max_attempts, last_error)

    # Values API

    async def get_values(self, range_name: str) -> List[List[Any]]:
        data = await self._request(
            "GET", f"/values/{quote(range_name, safe='!:')}", f"read {range_name}"
        )
        return data.get("values", [])

    async def update_values(self, range_name: str, rows: List[List[Any]]) -> Dict[str, Any]:
        return await self._request(
            "PUT",
            f"/values/{quote(range_name, safe='!:')}",
            f"update {range_name}",
            params={"valueInputOption": "RAW"},
            json={"range": range_name, "majorDimension": "ROWS", "values": rows},
        )

    async def append_values(self, sheet: str, rows: List[List[Any]]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/values/{quote(sheet, safe='!:')}:append",
            f"append {sheet}",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": rows},
        )

    async def batch_update(self, data: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/values:batchUpdate",
            "batch update",
            json={"valueInputOption": "RAW", "data": data},
        )

    # Record-level helpers

    async def read_records(self, sheet: str) -> List[Dict[str, str]]:
        """Read a sheet as a list of dicts keyed by its header row."""
        return rows_to_records(await self.get_values(sheet))

    async def upsert_rows(
        self, sheet: str, columns: List[str], records: List[Dict[str, str]]
    ) -> Tuple[int, int]:
        """
        Write records keyed by their "id" column.

        Existing rows with a matching id are overwritten in place, the rest
        are appended. An empty sheet gets ``columns`` as its header row; a
        header missing some of ``columns`` is extended.

        Returns:
            (rows updated, rows appended)
        """
        if not records:
            return 0, 0

        values = await self.get_values(sheet)
        header = [str(column).strip() for column in values[0]] if values else []
        missing = [column for column in columns if column not in header]
        if missing:
            header = header + missing
            await self.update_values(f"{sheet}!A1:{column_letter(len(header))}1", [header])

        if "id" not in header:
            raise ExternalStoreError(f"upsert {sheet}", 0, "sheet has no id column")
        id_index = header.index("id")
        existing = {}
        for offset, row in enumerate(values[1:], start=2):
            if len(row) > id_index and str(row[id_index]).strip():
                existing[str(row[id_index]).strip()] = offset

        last_column = column_letter(len(header))
        updates = []
        appends = []
        for record in records:
            row = [record.get(column, "") for column in header]
            row_number = existing.get(record["id"])
            if row_number is None:
                appends.append(row)
            else:
                updates.append(
                    {
                        "range": f"{sheet}!A{row_number}:{last_column}{row_number}",
                        "majorDimension": "ROWS",
                        "values": [row],
                    }
                )

        if updates:
            await self.batch_update(updates)
        if appends:
            await self.append_values(sheet, appends)

        log_operation(
            logger,
            operation="upsert_rows",
            outcome="success",
            sheet=sheet,
            updated=len(updates),
            appended=len(appends),
        )
        return len(updates), len(appends)
