from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from relocation_queue.services.errors import TableStoreError
from relocation_queue.services.tables import Cell, CellUpdate, TableGrid
from relocation_queue.services.temporal import format_timestamp

logger = logging.getLogger(__name__)


def column_letter(index: int) -> str:
    """0-based column index to A1 letters (0 -> A, 26 -> AA)."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def a1_range(sheet: str, cell: str | None = None) -> str:
    quoted = "'" + sheet.replace("'", "''") + "'"
    return f"{quoted}!{cell}" if cell else quoted


class SheetsTableStore:
    """Table store backed by one Google Sheets document, one tab per table."""

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str,
        *,
        base_url: str = "https://sheets.googleapis.com",
        timeout_seconds: float = 10.0,
        tz: tzinfo = timezone.utc,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.base_url = f"{base_url.rstrip('/')}/v4/spreadsheets/{spreadsheet_id}"
        self.headers = {"Authorization": f"Bearer {access_token}"}
        self.timeout_seconds = timeout_seconds
        self.tz = tz
        self._client = client
        self._sheet_ids: dict[str, int] = {}

    async def read_table(self, name: str) -> TableGrid | None:
        response = await self._request(
            "GET",
            f"/values/{quote(a1_range(name), safe='')}",
            params={"valueRenderOption": "UNFORMATTED_VALUE", "dateTimeRenderOption": "FORMATTED_STRING"},
            allow_missing=True,
        )
        if response is None:
            return None
        values: list[list[Any]] = response.json().get("values", [])
        if not values:
            return TableGrid(header=[])
        header = [str(label) for label in values[0]]
        return TableGrid(header=header, rows=[list(row) for row in values[1:]])

    async def write_table(self, name: str, header: Sequence[str], rows: Sequence[Sequence[Cell]]) -> None:
        # Single PUT; blanks pad out whatever the previous contents covered.
        current = await self.read_table(name)
        values = [list(header), *[[self._encode(value) for value in row] for row in rows]]
        old_height = 0
        old_width = 0
        if current is not None:
            old_height = len(current.rows) + (1 if current.header else 0)
            old_width = max([len(current.header), *(len(row) for row in current.rows)])
        width = max([old_width, *(len(row) for row in values)])
        padded = [row + [""] * (width - len(row)) for row in values]
        padded.extend([""] * width for _ in range(old_height - len(padded)))
        await self._request(
            "PUT",
            f"/values/{quote(a1_range(name, 'A1'), safe='')}",
            params={"valueInputOption": "USER_ENTERED"},
            json={"majorDimension": "ROWS", "values": padded},
        )

    async def delete_row(self, name: str, index: int) -> None:
        sheet_id = await self._sheet_id(name)
        # Grid row 0 is the header; data row ``index`` sits one below it.
        await self._request(
            "POST",
            ":batchUpdate",
            json={
                "requests": [
                    {
                        "deleteDimension": {
                            "range": {
                                "sheetId": sheet_id,
                                "dimension": "ROWS",
                                "startIndex": index + 1,
                                "endIndex": index + 2,
                            }
                        }
                    }
                ]
            },
        )

    async def batch_update(self, name: str, updates: Sequence[CellUpdate]) -> None:
        if not updates:
            return
        grid = await self.read_table(name)
        if grid is None:
            raise TableStoreError(f"table {name!r} does not exist")

        data: list[dict[str, Any]] = []
        for update in updates:
            column = grid.column_index(update.column)
            if column is None:
                raise TableStoreError(f"unknown column {update.column!r} in table {name!r}")
            cell = f"{column_letter(column)}{update.row + 2}"
            data.append({"range": a1_range(name, cell), "values": [[self._encode(update.value)]]})

        await self._request(
            "POST",
            "/values:batchUpdate",
            json={"valueInputOption": "USER_ENTERED", "data": data},
        )

    async def append_row(self, name: str, row: Sequence[Cell]) -> None:
        await self._request(
            "POST",
            f"/values/{quote(a1_range(name, 'A1'), safe='')}:append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": [[self._encode(value) for value in row]]},
        )

    async def append_columns_if_missing(self, name: str, columns: Sequence[str]) -> list[str]:
        grid = await self.read_table(name)
        if grid is None:
            await self._request(
                "POST",
                ":batchUpdate",
                json={"requests": [{"addSheet": {"properties": {"title": name}}}]},
            )
            self._sheet_ids.clear()
            grid = TableGrid(header=[])

        added = grid.missing_columns(columns)
        if not added:
            return []
        start = column_letter(len(grid.header))
        await self._request(
            "PUT",
            f"/values/{quote(a1_range(name, f'{start}1'), safe='')}",
            params={"valueInputOption": "RAW"},
            json={"majorDimension": "ROWS", "values": [added]},
        )
        logger.info("appended columns table=%s columns=%s", name, ",".join(added))
        return added

    async def _sheet_id(self, name: str) -> int:
        if name not in self._sheet_ids:
            response = await self._request("GET", "", params={"fields": "sheets.properties(sheetId,title)"})
            if response is None:
                raise TableStoreError(f"spreadsheet {self.spreadsheet_id!r} metadata unavailable")
            self._sheet_ids = {
                sheet["properties"]["title"]: int(sheet["properties"]["sheetId"])
                for sheet in response.json().get("sheets", [])
            }
        try:
            return self._sheet_ids[name]
        except KeyError as exc:
            raise TableStoreError(f"table {name!r} does not exist") from exc

    def _encode(self, value: Cell) -> Any:
        if value is None:
            return ""
        if isinstance(value, datetime):
            return format_timestamp(value, self.tz)
        return value

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> httpx.Response | None:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, params=params, json=json, headers=self.headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, params=params, json=json, headers=self.headers)
        except httpx.HTTPError as exc:
            raise TableStoreError(f"sheets request failed: {method} {path}: {exc}") from exc

        if allow_missing and response.status_code == 400 and "Unable to parse range" in response.text:
            return None
        if response.is_error:
            raise TableStoreError(
                f"sheets request failed: {method} {path}: status={response.status_code} body={response.text[:200]}"
            )
        return response
