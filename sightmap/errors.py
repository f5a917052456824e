from typing import Optional


class SyncError(Exception):
    """Base class for failures that abort a sync run."""


class UnauthorizedError(SyncError):
    pass


class FeedFetchError(SyncError):
    """Network error, timeout, non-2xx status or an exceeded pagination bound."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        msg = super().__str__()
        return f"{msg} (status={self.status})" if self.status is not None else msg


class MalformedFeedError(SyncError):
    pass


class TransformError(SyncError):
    def __init__(self, message: str, index: int, record_id: Optional[str] = None):
        super().__init__(f"record #{index} (id={record_id}): {message}")
        self.index = index
        self.record_id = record_id


class StoreError(Exception):
    """Wraps database errors raised by the sighting store."""


class UploadError(Exception):
    pass
