"""Shared fixtures: settings, recorded sleeps and an in-memory sheet store."""

from pathlib import Path
from typing import Sequence

import pytest

from iyield_ingest.config import Settings
from iyield_ingest.exceptions import StoreError
from iyield_ingest.sheets.remote import RemoteCaller
from iyield_ingest.sheets.store import SheetHandle, SheetStore


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeSheetStore(SheetStore):
    """
    In-memory spreadsheet.

    Errors queued with ``fail(operation, ...)`` are raised by the next calls
    of that operation, one per call.
    """

    def __init__(self, titles: Sequence[str] = ("Sheet1",)):
        self.sheets: dict[int, SheetHandle] = {}
        self.values: dict[int, list[list[str]]] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.create_without_id = False
        self._next_id = 100
        for title in titles:
            self._add(title)

    def _add(self, title: str) -> SheetHandle:
        self._next_id += 1
        handle = SheetHandle(id=self._next_id, title=title, rows=1000, cols=26)
        self.sheets[handle.id] = handle
        self.values[handle.id] = []
        return handle

    def fail(self, operation: str, *errors: BaseException) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def calls_of(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def by_title(self, title: str) -> SheetHandle:
        return next(h for h in self.sheets.values() if h.title == title)

    def content(self, title: str) -> list[list[str]]:
        return self.values[self.by_title(title).id]

    async def list_sheets(self) -> list[SheetHandle]:
        self._record("list_sheets")
        return [SheetHandle(h.id, h.title, h.rows, h.cols) for h in self.sheets.values()]

    async def add_sheet(self, title: str) -> SheetHandle:
        self._record("add_sheet", title)
        if self.create_without_id:
            return SheetHandle(id=None, title=title)
        if any(h.title == title for h in self.sheets.values()):
            raise StoreError(f"A sheet with the name {title} already exists", status=400)
        handle = self._add(title)
        return SheetHandle(handle.id, handle.title, handle.rows, handle.cols)

    async def delete_sheets(self, sheet_ids: Sequence[int]) -> None:
        self._record("delete_sheets", list(sheet_ids))
        for sheet_id in sheet_ids:
            del self.sheets[sheet_id]
            del self.values[sheet_id]

    async def resize_sheet(self, handle: SheetHandle, rows: int, cols: int) -> None:
        self._record("resize_sheet", handle.title, rows, cols)
        stored = self.sheets[handle.id]
        stored.rows = rows
        stored.cols = cols

    async def clear_values(self, handle: SheetHandle) -> None:
        self._record("clear_values", handle.title)
        self.values[handle.id] = []

    async def update_values(self, handle: SheetHandle, start_row: int, rows) -> None:
        self._record("update_values", handle.title, start_row, len(rows))
        stored = self.sheets[handle.id]
        end_row = start_row - 1 + len(rows)
        width = max((len(row) for row in rows), default=0)
        if end_row > stored.rows or width > stored.cols:
            raise StoreError("Range exceeds grid limits", status=400)
        grid = self.values[handle.id]
        while len(grid) < end_row:
            grid.append([])
        for offset, row in enumerate(rows):
            grid[start_row - 1 + offset] = list(row)

    async def auto_resize_columns(self, handle: SheetHandle, start: int, end: int) -> None:
        self._record("auto_resize_columns", handle.title, start, end)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        google_sheet_id="sheet-123",
        sync_roots=str(tmp_path / "data"),
        sheets_throttle_ms=0,
        sheets_max_cells=40000,
        sheets_grid_row_buffer=200,
        sheets_grid_col_buffer=5,
        fred_api_key="",
        coingecko_api_key="",
        data_dir=str(tmp_path / "data"),
        macro_dir=str(tmp_path / "macro"),
    )


@pytest.fixture
def store() -> FakeSheetStore:
    return FakeSheetStore()


@pytest.fixture
def caller(settings: Settings, sleeps: SleepRecorder) -> RemoteCaller:
    return RemoteCaller.from_settings(settings, sleep=sleeps)


def write_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
