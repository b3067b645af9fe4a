"""
Google Sheets synchronization.
"""
from iyield_ingest.sheets.catalog import DestinationCatalog
from iyield_ingest.sheets.remote import RemoteCaller, is_rate_limited, sheet_retry_policy
from iyield_ingest.sheets.store import GoogleSheetStore, SheetHandle, SheetStore
from iyield_ingest.sheets.sync import SyncOrchestrator, chunk_rows_by_cell_budget, destination_name

__all__ = [
    "DestinationCatalog",
    "GoogleSheetStore",
    "RemoteCaller",
    "SheetHandle",
    "SheetStore",
    "SyncOrchestrator",
    "chunk_rows_by_cell_budget",
    "destination_name",
    "is_rate_limited",
    "sheet_retry_policy",
]
