"""
Sheet synchronization pass: local CSV files -> one generated tab each.

A pass discovers the CSV files under the sync roots, drops every generated
tab, then recreates and fills one tab per file. Writes are split by the
per-request cell budget and every remote call goes through the throttled,
rate-limit aware ``RemoteCaller``.
"""
import re
from pathlib import Path
from typing import Sequence

import structlog

from iyield_ingest.codec import normalize_rows, parse
from iyield_ingest.config import Settings
from iyield_ingest.models import ItemOutcome, OutcomeStatus, PassSummary
from iyield_ingest.sheets.catalog import DestinationCatalog
from iyield_ingest.sheets.remote import RemoteCaller
from iyield_ingest.sheets.store import SheetHandle, SheetStore
from iyield_ingest.utils.files import discover_tabular_files
from iyield_ingest.utils.logging import LogContext, log_error

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_\-.]")

AUTOFIT_MIN_COLUMNS = 3
AUTOFIT_MAX_COLUMNS = 50


def destination_name(
    path: str | Path,
    roots: Sequence[str | Path],
    prefix: str = "DATA_",
    max_length: int = 90,
    strip_leading: Sequence[str] = ("data", "macro"),
) -> str:
    """
    Tab title for a CSV file.

    The path relative to its root is joined with ``_``; the ``.csv`` suffix
    and a leading output directory component (``data/``, ``macro/``) are
    dropped, unsafe characters become ``_``, and the result is capped and
    prefixed.
    """
    absolute = Path(path).resolve()
    parts: tuple[str, ...] | None = None
    for root in roots:
        resolved_root = Path(root).resolve()
        if absolute != resolved_root and absolute.is_relative_to(resolved_root):
            parts = absolute.relative_to(resolved_root).parts
            break
    if parts is None:
        parts = absolute.parts[1:]

    parts = list(parts)
    if parts and parts[-1].lower().endswith(".csv"):
        parts[-1] = parts[-1][: -len(".csv")]
    if len(parts) > 1 and parts[0] in strip_leading:
        parts = parts[1:]

    name = _UNSAFE_CHARS.sub("_", "_".join(parts))
    return f"{prefix}{name[:max_length] or 'Sheet'}"


def chunk_rows_by_cell_budget(
    rows: Sequence[Sequence[str]],
    max_cells: int,
) -> list[tuple[int, list[Sequence[str]]]]:
    """
    Split rows into consecutive chunks of at most ``max_cells`` cells.

    Returns ``(start_row, chunk)`` pairs with 1-based start rows that tile the
    input exactly. A single row wider than the budget still gets its own chunk.
    """
    if not rows:
        return []
    cols = max(len(rows[0]), 1)
    rows_per_chunk = max(1, max_cells // cols)
    return [
        (offset + 1, list(rows[offset:offset + rows_per_chunk]))
        for offset in range(0, len(rows), rows_per_chunk)
    ]


class SyncOrchestrator:
    """Runs one synchronization pass against a sheet store."""

    def __init__(
        self,
        store: SheetStore,
        settings: Settings,
        caller: RemoteCaller | None = None,
        roots: Sequence[str | Path] | None = None,
    ):
        self.settings = settings
        self.roots = list(roots) if roots is not None else settings.sync_root_list
        self.caller = caller or RemoteCaller.from_settings(settings)
        self.catalog = DestinationCatalog(
            store,
            self.caller,
            prefix=settings.sheet_prefix,
            row_buffer=settings.sheets_grid_row_buffer,
            col_buffer=settings.sheets_grid_col_buffer,
        )
        self.store = store

    def discover(self) -> list[Path]:
        return discover_tabular_files(self.roots)

    def name_for(self, path: Path) -> str:
        return destination_name(
            path,
            self.roots,
            prefix=self.settings.sheet_prefix,
            max_length=self.settings.sheet_name_max_length,
            strip_leading=(
                Path(self.settings.data_dir).name,
                Path(self.settings.macro_dir).name,
            ),
        )

    async def reset(self) -> int:
        """Drop all generated tabs and reload the catalog."""
        await self.catalog.refresh()
        deleted = await self.catalog.delete_generated()
        await self.catalog.refresh()
        return deleted

    async def write_rows(self, handle: SheetHandle, rows: list[list[str]]) -> int:
        """Write rows from A1, split by the cell budget. Returns the call count."""
        budget = self.settings.sheets_max_cells
        total_cells = len(rows) * max(len(rows[0]) if rows else 1, 1)
        if total_cells <= budget:
            await self.caller("values.update", self.store.update_values, handle, 1, rows)
            return 1

        chunks = chunk_rows_by_cell_budget(rows, budget)
        for start_row, chunk in chunks:
            await self.caller("values.update", self.store.update_values, handle, start_row, chunk)
        logger.debug("Wrote rows in chunks", chunks=len(chunks), cells=total_cells)
        return len(chunks)

    async def autofit(self, handle: SheetHandle, cols: int) -> None:
        """Best-effort column width fit; failures are only logged."""
        end = min(max(cols, AUTOFIT_MIN_COLUMNS), AUTOFIT_MAX_COLUMNS)
        try:
            await self.caller("autoResizeDimensions", self.store.auto_resize_columns, handle, 0, end)
        except Exception as e:
            log_error(logger, "Column auto-fit failed", e, title=handle.title)

    async def sync_file(self, path: Path) -> ItemOutcome:
        """Replace the content of the file's tab. Raises on any failure."""
        rows = normalize_rows(parse(path.read_text(encoding="utf-8")))
        if not rows:
            logger.warning("Skip empty CSV", file=str(path))
            return ItemOutcome(str(path), OutcomeStatus.SKIPPED, detail="empty")

        title = self.name_for(path)
        need_rows = len(rows)
        need_cols = len(rows[0]) or 1

        handle = await self.catalog.ensure(title)
        await self.catalog.grow_to(handle, need_rows, need_cols)
        await self.caller("values.clear", self.store.clear_values, handle)
        await self.write_rows(handle, rows)
        await self.autofit(handle, need_cols)

        logger.info("Synced file", file=str(path), title=title, rows=need_rows)
        return ItemOutcome(str(path), OutcomeStatus.SUCCESS, rows=need_rows, target=title)

    async def run(self) -> PassSummary:
        """
        Run a full pass.

        Errors while resetting the catalog propagate (the catalog can no longer
        be trusted); errors for a single file are recorded and the pass moves
        on to the next file.
        """
        summary = PassSummary("sync")
        logger.info("Scanning roots", roots=[str(root) for root in self.roots])
        files = self.discover()
        if not files:
            logger.info("No CSV found. Nothing to sync.")
            return summary

        await self.reset()

        for path in files:
            with LogContext(file=str(path)):
                try:
                    summary.add(await self.sync_file(path))
                except Exception as e:
                    log_error(logger, "Failed sync", e, file=str(path))
                    summary.add(ItemOutcome(str(path), OutcomeStatus.FAILED, detail=str(e)))

        logger.info("Sync completed", files=len(files), **summary.counts())
        return summary
