"""Exceptions raised by the attachment store.

Only ``WriteFailedError`` is meant to reach an end user; the record layer
turns it into a validation message. Delete failures never raise.
"""
from typing import Optional


class StoreError(Exception):
    """Base exception for attachment store errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class WriteFailedError(StoreError):
    """Raised when an uploaded payload could not be durably written."""
    def __init__(self, reference: str, reason: Optional[str] = None):
        self.reference = reference
        detail = f"Could not write attachment {reference}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)


class InvalidExtensionError(StoreError, ValueError):
    """Raised when a commit is given an empty or malformed extension."""
    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Invalid attachment extension: {extension!r}")


class TokenStateError(StoreError):
    """Raised when a pending upload is used outside its lifecycle."""
    def __init__(self, token_id: str, state: str, action: str):
        self.token_id = token_id
        self.state = state
        super().__init__(f"Cannot {action} upload {token_id} in state '{state}'")


class StorageConfigError(StoreError):
    """Raised when the storage root is missing, not a directory or read-only."""
