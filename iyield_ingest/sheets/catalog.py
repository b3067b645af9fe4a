"""
In-memory mirror of the spreadsheet's tabs and their grid capacity.
"""
import structlog

from iyield_ingest.exceptions import CreateError
from iyield_ingest.sheets.remote import RemoteCaller
from iyield_ingest.sheets.store import SheetHandle, SheetStore

logger = structlog.get_logger()


class DestinationCatalog:
    """
    Tabs of the target spreadsheet keyed by title.

    Only the sync orchestrator mutates the catalog, so the cached handles
    are trusted between refreshes.
    """

    def __init__(
        self,
        store: SheetStore,
        caller: RemoteCaller,
        prefix: str = "DATA_",
        row_buffer: int = 200,
        col_buffer: int = 5,
    ):
        self.store = store
        self.caller = caller
        self.prefix = prefix
        self.row_buffer = row_buffer
        self.col_buffer = col_buffer
        self.handles: dict[str, SheetHandle] = {}

    def __contains__(self, title: str) -> bool:
        return title in self.handles

    def get(self, title: str) -> SheetHandle | None:
        return self.handles.get(title)

    def is_generated(self, title: str) -> bool:
        """Tabs carrying the reserved prefix are owned by the pipeline."""
        return title.startswith(self.prefix)

    async def refresh(self) -> dict[str, SheetHandle]:
        """Replace the cached map with the store's current listing."""
        sheets = await self.caller("spreadsheets.get", self.store.list_sheets)
        self.handles = {sheet.title: sheet for sheet in sheets}
        logger.debug("Catalog refreshed", sheets=len(self.handles))
        return self.handles

    async def delete_generated(self) -> int:
        """Delete every pipeline-owned tab in one request. Returns the count."""
        doomed = [h for h in self.handles.values() if self.is_generated(h.title)]
        if not doomed:
            return 0
        await self.caller(
            "deleteSheet",
            self.store.delete_sheets,
            [handle.id for handle in doomed],
        )
        for handle in doomed:
            self.handles.pop(handle.title, None)
        logger.info("Deleted generated sheets", count=len(doomed), prefix=self.prefix)
        return len(doomed)

    async def ensure(self, title: str) -> SheetHandle:
        """Return the tab called ``title``, creating it when missing."""
        existing = self.handles.get(title)
        if existing:
            return existing
        handle = await self.caller("addSheet", self.store.add_sheet, title)
        if handle is None or handle.id is None:
            raise CreateError(f"Failed to create sheet '{title}'")
        self.handles[title] = handle
        logger.debug("Sheet created", title=title, sheet_id=handle.id)
        return handle

    def target_size(self, handle: SheetHandle, min_rows: int, min_cols: int) -> tuple[int, int]:
        """Grid size needed for the data plus buffer, never below the current one."""
        return (
            max(handle.rows, min_rows + self.row_buffer),
            max(handle.cols, min_cols + self.col_buffer),
        )

    async def grow_to(self, handle: SheetHandle, min_rows: int, min_cols: int) -> SheetHandle:
        """Grow ``handle`` so it fits ``min_rows`` x ``min_cols`` plus buffer."""
        rows, cols = self.target_size(handle, min_rows, min_cols)
        if rows == handle.rows and cols == handle.cols:
            return handle
        await self.caller("updateSheetProperties", self.store.resize_sheet, handle, rows, cols)
        handle.rows = rows
        handle.cols = cols
        self.handles[handle.title] = handle
        logger.debug("Sheet resized", title=handle.title, rows=rows, cols=cols)
        return handle
