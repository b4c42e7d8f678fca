"""Google Sheets record store: one appended row per submission."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .exceptions import GoogleAuthError, PersistError
from .google_auth import GoogleCredentials, authorized_request
from .models import StructuredRecord

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4"


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    return value


def merge_header(existing: Sequence[str], columns: Sequence[str]) -> List[str]:
    """Keep the existing column order and append any new columns at the end."""

    header = [str(name) for name in existing]
    known = set(header)
    for column in columns:
        if column not in known:
            header.append(column)
            known.add(column)
    return header


class GoogleSheetsRecordStore:
    """Append flattened records to the first row-aligned sheet of a spreadsheet."""

    def __init__(
        self,
        credentials: GoogleCredentials,
        *,
        spreadsheet_id: str,
        sheet_name: str = "Sheet1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._spreadsheet_id = spreadsheet_id
        self._sheet_name = sheet_name
        self._transport = transport
        self._header_lock = asyncio.Lock()

    def _range_path(self, cell_range: str, suffix: str = "") -> str:
        escaped_sheet = self._sheet_name.replace("'", "''")
        target = quote(f"'{escaped_sheet}'!{cell_range}", safe="")
        return f"/spreadsheets/{self._spreadsheet_id}/values/{target}{suffix}"

    async def _request(
        self,
        *,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async def send(auth_headers: Dict[str, str]) -> httpx.Response:
            headers = {"Accept": "application/json", **auth_headers}
            async with httpx.AsyncClient(
                timeout=10.0, base_url=SHEETS_API_BASE, transport=self._transport
            ) as client:
                return await client.request(
                    method, path, params=params, json=json_data, headers=headers
                )

        try:
            response = await authorized_request(self._credentials, send)
        except GoogleAuthError as exc:
            raise PersistError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("Google Sheets request errored: %s %s -> %s", method, path, exc)
            raise PersistError("Google Sheets 요청이 실패했습니다.") from exc

        if response.is_error:
            logger.error(
                "Google Sheets request failed: %s %s -> %s", method, path, response.text
            )
            raise PersistError(f"Google Sheets 요청이 실패했습니다. ({response.status_code})")

        try:
            payload = response.json() if response.text else {}
        except ValueError as exc:
            logger.error("Google Sheets returned non-JSON body for %s %s: %s", method, path, response.text[:200])
            raise PersistError("Google Sheets 응답을 해석하지 못했습니다.") from exc
        if not isinstance(payload, dict):
            logger.error("Unexpected Google Sheets response for %s %s: %s", method, path, payload)
            raise PersistError("Google Sheets 응답을 해석하지 못했습니다.")
        return payload

    async def _read_header(self) -> List[str]:
        data = await self._request(method="GET", path=self._range_path("1:1"))
        values = data.get("values")
        if isinstance(values, list) and values and isinstance(values[0], list):
            return [str(value) for value in values[0]]
        return []

    async def _write_header(self, header: Sequence[str]) -> None:
        await self._request(
            method="PUT",
            path=self._range_path("1:1"),
            params={"valueInputOption": "RAW"},
            json_data={"values": [list(header)]},
        )

    async def ensure_header(self, columns: Sequence[str]) -> List[str]:
        async with self._header_lock:
            existing = await self._read_header()
            header = merge_header(existing, columns)
            if header != existing:
                logger.info(
                    "[Sheets] 헤더 행 갱신: %d개 열 추가", len(header) - len(existing)
                )
                await self._write_header(header)
            return header

    async def put(self, document_id: str, record: StructuredRecord) -> None:
        row = record.to_row()
        header = await self.ensure_header(list(row.keys()))
        values = [_cell(row.get(column)) for column in header]

        await self._request(
            method="POST",
            path=self._range_path("A1", ":append"),
            params={
                "valueInputOption": "USER_ENTERED",
                "insertDataOption": "INSERT_ROWS",
            },
            json_data={"values": [values]},
        )
        logger.info("[Sheets] Google Sheets에 데이터 추가 성공 (%s)", document_id)
