"""
Exception hierarchy for ingestion and sheet synchronization.
"""
from typing import Any


class IngestError(Exception):
    """Base class for all errors raised by iyield_ingest."""


class ConfigurationError(IngestError):
    """Missing or invalid configuration (fatal at startup)."""


class FetchError(IngestError):
    """A provider request failed permanently or exhausted its retries."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class MalformedTableError(IngestError):
    """A tabular file could not be interpreted against its header."""


class StoreError(IngestError):
    """
    An error returned by the remote sheet store.

    Carries whatever rate-limit signaling the store exposed so the retry
    policy can decide without knowing the transport.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        reason: str | None = None,
        retry_after: float | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.retry_after = retry_after
        self.details = details


class CreateError(StoreError):
    """The store did not echo back an identity for a newly created sheet."""
