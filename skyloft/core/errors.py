"""
Exception hierarchy for the library and ingestion layers.

Ingestion raises a DownloadError subclass; every subclass carries a stable
``kind`` string that the orchestrator can log or surface.
"""
from typing import Optional


class SkyloftError(Exception):
    """Base class for application errors."""


class NotFoundError(SkyloftError):
    """Raised when an operation targets an unknown record ID."""

    def __init__(self, record_id: str):
        super().__init__(f"Unknown video id: {record_id}")
        self.record_id = record_id


class DownloadError(SkyloftError):
    kind = "download_failed"

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class SourceError(DownloadError):
    """Malformed URL or missing/unreadable local source file."""
    kind = "invalid_source"


class TransferError(DownloadError):
    """Network failure, non-2xx response, timeout, or local copy failure."""
    kind = "transfer_failed"

    def __init__(self, message: str, source: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, source)
        self.status = status


class ProbeError(DownloadError):
    """The transferred file could not be opened as media at all."""
    kind = "media_probe_failed"


class PersistError(DownloadError):
    """Catalog insert or filesystem write failed."""
    kind = "persist_failed"


class DownloadCancelled(DownloadError):
    kind = "cancelled"
