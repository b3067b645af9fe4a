"""
Remote sheet store protocol and its Google Sheets v4 implementation.

The store is the only place that knows about the Google client; everything
above it deals in ``SheetHandle`` objects and ``StoreError`` exceptions.
"""
import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from iyield_ingest.exceptions import CreateError, StoreError

logger = structlog.get_logger()

SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)

# Grid size Google assigns to a sheet when it does not report one
DEFAULT_ROW_COUNT = 1000
DEFAULT_COLUMN_COUNT = 26

CLEAR_RANGE = "A:ZZZ"


@dataclass
class SheetHandle:
    """A tab in the spreadsheet and its current grid capacity."""

    id: int
    title: str
    rows: int = DEFAULT_ROW_COUNT
    cols: int = DEFAULT_COLUMN_COUNT


class SheetStore(ABC):
    """Grid-based remote store holding one tab per destination."""

    @abstractmethod
    async def list_sheets(self) -> list[SheetHandle]:
        """Return every tab with its identity and grid size."""

    @abstractmethod
    async def add_sheet(self, title: str) -> SheetHandle:
        """Create a tab; raises CreateError when no identity comes back."""

    @abstractmethod
    async def delete_sheets(self, sheet_ids: Sequence[int]) -> None:
        """Delete several tabs in one request."""

    @abstractmethod
    async def resize_sheet(self, handle: SheetHandle, rows: int, cols: int) -> None:
        """Set the grid size of a tab."""

    @abstractmethod
    async def clear_values(self, handle: SheetHandle) -> None:
        """Remove all cell values of a tab."""

    @abstractmethod
    async def update_values(
        self,
        handle: SheetHandle,
        start_row: int,
        rows: Sequence[Sequence[str]],
    ) -> None:
        """Write ``rows`` starting at 1-based row ``start_row``, column A."""

    @abstractmethod
    async def auto_resize_columns(self, handle: SheetHandle, start: int, end: int) -> None:
        """Fit column widths for the zero-based, end-exclusive column range."""


# =============================================================================
# GOOGLE SHEETS
# =============================================================================

_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")


def quote_title(title: str) -> str:
    """Return a tab title safely formatted for A1 notation."""
    if _SIMPLE_TITLE_RE.fullmatch(title):
        return title
    return "'" + title.replace("'", "''") + "'"


def a1_range(title: str, range_spec: str) -> str:
    return f"{quote_title(title)}!{range_spec}"


def translate_http_error(exc: HttpError) -> StoreError:
    """Convert a googleapiclient error into a StoreError with its signals."""
    resp = getattr(exc, "resp", None)
    status = getattr(resp, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None

    reason = None
    details: Any = None
    content = getattr(exc, "content", b"")
    try:
        payload = json.loads(content.decode("utf-8") if isinstance(content, bytes) else content)
    except (ValueError, AttributeError):
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        details = payload["error"]
        errors = details.get("errors") or []
        if errors and isinstance(errors[0], dict):
            reason = errors[0].get("reason")
        reason = reason or details.get("status")

    retry_after = None
    if resp is not None and hasattr(resp, "get"):
        header = resp.get("retry-after") or resp.get("Retry-After")
        if header:
            try:
                retry_after = float(header)
            except (TypeError, ValueError):
                retry_after = None

    return StoreError(
        f"Sheets API error {status}: {reason or exc}",
        status=status,
        reason=reason,
        retry_after=retry_after,
        details=details,
    )


def _handle_from_properties(properties: dict[str, Any]) -> SheetHandle:
    grid = properties.get("gridProperties") or {}
    return SheetHandle(
        id=properties["sheetId"],
        title=properties["title"],
        rows=grid.get("rowCount", DEFAULT_ROW_COUNT),
        cols=grid.get("columnCount", DEFAULT_COLUMN_COUNT),
    )


class GoogleSheetStore(SheetStore):
    """SheetStore backed by the Google Sheets v4 API."""

    def __init__(self, spreadsheet_id: str, service: Any):
        self.spreadsheet_id = spreadsheet_id
        self._service = service

    @classmethod
    def from_service_account(
        cls,
        spreadsheet_id: str,
        credentials_path: str | Path,
    ) -> "GoogleSheetStore":
        """Build a store authenticated with a service account key file."""
        path = Path(credentials_path).expanduser()
        credentials = service_account.Credentials.from_service_account_file(
            str(path), scopes=list(SCOPES)
        )
        service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return cls(spreadsheet_id, service)

    async def _execute(self, request: Any) -> dict[str, Any]:
        """Run a prepared request off the event loop and translate errors."""
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise translate_http_error(e) from e

    async def _batch_update(self, requests: list[dict[str, Any]]) -> dict[str, Any]:
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": requests},
        )
        return await self._execute(request)

    async def list_sheets(self) -> list[SheetHandle]:
        request = self._service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id,
            fields="sheets.properties",
        )
        payload = await self._execute(request)
        return [
            _handle_from_properties(sheet.get("properties", {}))
            for sheet in payload.get("sheets", [])
        ]

    async def add_sheet(self, title: str) -> SheetHandle:
        payload = await self._batch_update([{"addSheet": {"properties": {"title": title}}}])
        replies = payload.get("replies") or [{}]
        properties = (replies[0].get("addSheet") or {}).get("properties") or {}
        if properties.get("sheetId") is None:
            raise CreateError(f"Failed to create sheet '{title}'")
        properties.setdefault("title", title)
        return _handle_from_properties(properties)

    async def delete_sheets(self, sheet_ids: Sequence[int]) -> None:
        await self._batch_update(
            [{"deleteSheet": {"sheetId": sheet_id}} for sheet_id in sheet_ids]
        )

    async def resize_sheet(self, handle: SheetHandle, rows: int, cols: int) -> None:
        await self._batch_update([
            {
                "updateSheetProperties": {
                    "properties": {
                        "sheetId": handle.id,
                        "gridProperties": {"rowCount": rows, "columnCount": cols},
                    },
                    "fields": "gridProperties(rowCount,columnCount)",
                }
            }
        ])

    async def clear_values(self, handle: SheetHandle) -> None:
        request = self._service.spreadsheets().values().clear(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(handle.title, CLEAR_RANGE),
            body={},
        )
        await self._execute(request)

    async def update_values(
        self,
        handle: SheetHandle,
        start_row: int,
        rows: Sequence[Sequence[str]],
    ) -> None:
        request = self._service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(handle.title, f"A{start_row}"),
            valueInputOption="RAW",
            body={"values": [list(row) for row in rows]},
        )
        await self._execute(request)

    async def auto_resize_columns(self, handle: SheetHandle, start: int, end: int) -> None:
        await self._batch_update([
            {
                "autoResizeDimensions": {
                    "dimensions": {
                        "sheetId": handle.id,
                        "dimension": "COLUMNS",
                        "startIndex": start,
                        "endIndex": end,
                    }
                }
            }
        ])
