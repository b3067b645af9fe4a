"""
iyield ingestion: provider collectors and Google Sheets synchronization.
"""
from iyield_ingest.config import Settings, get_settings

__version__ = "1.0.0"
__all__ = ["Settings", "get_settings", "__version__"]
