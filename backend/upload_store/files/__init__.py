"""Attachment storage for upload-store.

This module persists uploaded files for records that reference them by name.
Files are stored in a single flat directory under generated unique names and
the record keeps only the name (the attachment reference).

Upload cycle:
- stage: remember the record's current reference
- commit: write the new file, then delete the previous one
- discard: drop the staged upload, nothing touches the disk

Deleting a record deletes its file. Delete failures are logged, never raised.
"""
from .errors import (
    InvalidExtensionError,
    StorageConfigError,
    StoreError,
    TokenStateError,
    WriteFailedError,
)
from .schemas import PendingUpload, UploadedFile, UploadState
from .store import AttachmentStore

__all__ = [
    "AttachmentStore",
    "InvalidExtensionError",
    "PendingUpload",
    "StorageConfigError",
    "StoreError",
    "TokenStateError",
    "UploadState",
    "UploadedFile",
    "WriteFailedError",
]
