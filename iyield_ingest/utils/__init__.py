"""
Utility functions and helpers.
"""
from iyield_ingest.utils.logging import (
    setup_logging,
    LogContext,
    log_error,
)
from iyield_ingest.utils.retry import RetryPolicy

__all__ = [
    "setup_logging",
    "LogContext",
    "log_error",
    "RetryPolicy",
]
