"""
HTTP access to data providers.
"""
from iyield_ingest.api.client import FetchClient, RetryableStatusError, parse_retry_after

__all__ = ["FetchClient", "RetryableStatusError", "parse_retry_after"]
