"""Hosted tabular store access (Google Sheets values API over httpx)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote

import httpx

from .errors import BackendUnavailableError, ContactsSyncError

logger = logging.getLogger(__name__)

SHEETS_API_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

Rows = List[List[str]]


class SheetsRequestError(ContactsSyncError):
    """Raised when a Google Sheets API request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Sheets request failed ({status_code}): {message}")


class TokenProvider(Protocol):
    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        ...


class StaticTokenProvider:
    """Serves an access token obtained out of band (env var, secret manager)."""

    def __init__(self, token: Optional[str]) -> None:
        self._token = (token or "").strip()

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if not self._token:
            raise BackendUnavailableError("Google Sheets access token is not configured")
        return self._token


class TabularClient(Protocol):
    """The five range operations the canonical tabular backend relies on."""

    async def read_range(self, range_: str) -> Rows:
        ...

    async def update_range(self, range_: str, rows: Sequence[Sequence[str]]) -> None:
        ...

    async def append_rows(self, range_: str, rows: Sequence[Sequence[str]]) -> None:
        ...

    async def clear_range(self, range_: str) -> None:
        ...

    async def delete_rows(self, sheet_name: str, start_index: int, end_index: int) -> None:
        """Delete rows ``[start_index, end_index)`` (0-based, header is row 0)."""
        ...


def column_letter(index: int) -> str:
    """0-based column index to A1 notation letters (0 -> A, 21 -> V, 26 -> AA)."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


class GoogleSheetsClient:
    """Google Sheets values API client.

    Requests carry a bounded timeout; a 401 triggers one token refresh and
    retry. No other retry policy is applied.
    """

    def __init__(
        self,
        *,
        spreadsheet_id: str,
        token_provider: TokenProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self._token_provider = token_provider
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=10.0))
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def _values_url(self, range_: str, suffix: str = "") -> str:
        encoded = quote(range_, safe="!:'")
        return f"{SHEETS_API_BASE_URL}/{self.spreadsheet_id}/values/{encoded}{suffix}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.spreadsheet_id:
            raise BackendUnavailableError("Google Sheets spreadsheet id is not configured")
        token = await self._token_provider.get_access_token()
        response = await self._send(method, url, token, params=params, json=json)
        if response.status_code == 401:
            token = await self._token_provider.get_access_token(force_refresh=True)
            response = await self._send(method, url, token, params=params, json=json)

        if response.status_code < 200 or response.status_code >= 300:
            raise SheetsRequestError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise SheetsRequestError(
                status_code=response.status_code,
                message="Invalid JSON payload from Google Sheets API",
            ) from exc
        if not isinstance(payload, dict):
            raise SheetsRequestError(
                status_code=response.status_code,
                message="Google Sheets API payload must be a JSON object",
            )
        return payload

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        *,
        params: Optional[Dict[str, Any]],
        json: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise SheetsRequestError(status_code=0, message=str(exc)) from exc

    async def read_range(self, range_: str) -> Rows:
        payload = await self._request("GET", self._values_url(range_))
        values = payload.get("values") or []
        return [[str(cell) for cell in row] for row in values]

    async def update_range(self, range_: str, rows: Sequence[Sequence[str]]) -> None:
        await self._request(
            "PUT",
            self._values_url(range_),
            params={"valueInputOption": "RAW"},
            json={"range": range_, "majorDimension": "ROWS", "values": [list(r) for r in rows]},
        )

    async def append_rows(self, range_: str, rows: Sequence[Sequence[str]]) -> None:
        await self._request(
            "POST",
            self._values_url(range_, ":append"),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": [list(r) for r in rows]},
        )

    async def clear_range(self, range_: str) -> None:
        await self._request("POST", self._values_url(range_, ":clear"), json={})

    async def _sheet_id(self, sheet_name: str) -> int:
        payload = await self._request(
            "GET",
            f"{SHEETS_API_BASE_URL}/{self.spreadsheet_id}",
            params={"fields": "sheets.properties"},
        )
        for sheet in payload.get("sheets") or []:
            properties = sheet.get("properties") or {}
            if properties.get("title") == sheet_name:
                return int(properties.get("sheetId") or 0)
        return 0

    async def delete_rows(self, sheet_name: str, start_index: int, end_index: int) -> None:
        sheet_id = await self._sheet_id(sheet_name)
        await self._request(
            "POST",
            f"{SHEETS_API_BASE_URL}/{self.spreadsheet_id}:batchUpdate",
            json={
                "requests": [
                    {
                        "deleteDimension": {
                            "range": {
                                "sheetId": sheet_id,
                                "dimension": "ROWS",
                                "startIndex": start_index,
                                "endIndex": end_index,
                            }
                        }
                    }
                ]
            },
        )


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        message = payload.get("error_description") or payload.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
    return (response.text or "").strip()[:200] or "unknown error"


__all__ = [
    "GoogleSheetsClient",
    "SheetsRequestError",
    "StaticTokenProvider",
    "TabularClient",
    "TokenProvider",
    "column_letter",
]
