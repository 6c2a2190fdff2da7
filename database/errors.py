class StorageError(Exception):
    """Base exception for ledger storage operations."""


class NotFoundError(StorageError):
    """Account or obligation not found in storage."""
