"""Pydantic schemas for the attachment store.

This module defines the data carried through one upload cycle:
- UploadState: Enum for the pending-upload state machine
- PendingUpload: Token returned by ``stage`` and consumed by ``commit``/``discard``
- UploadedFile: Incoming payload handed over by the record layer

A PendingUpload lives only for the request that created it; it is never
persisted. The reference it eventually yields is a flat file name of the form
``{unique_id}.{extension}`` inside the storage root.
"""
import re
import uuid
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadState(str, Enum):
    """States of a pending upload.

    STAGED is the only state from which ``commit`` or ``discard`` may proceed;
    the other three are terminal for the cycle.
    """
    STAGED = "staged"
    COMMITTED = "committed"
    FAILED = "failed"
    DISCARDED = "discarded"


class PendingUpload(BaseModel):
    """Token for an in-flight upload.

    Holds the reference the owning record had when the upload was staged, so
    that the file behind it can be retired once the new payload is on disk.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Token ID")
    previous_reference: Optional[str] = Field(None, description="Reference to retire after commit")
    state: UploadState = Field(UploadState.STAGED, description="Lifecycle state")
    reference: Optional[str] = Field(None, description="Reference produced by a successful commit")

    @property
    def is_open(self) -> bool:
        return self.state == UploadState.STAGED


class UploadedFile(BaseModel):
    """An uploaded file as received from the client.

    ``content`` is either the raw bytes or a readable binary stream. When
    ``extension`` is not given it is taken from the client file name.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    filename: str = Field(..., description="Client-side file name")
    content: Any = Field(..., description="Payload bytes or binary stream")
    extension: Optional[str] = Field(None, description="Extension without the leading dot")

    def get_extension(self) -> str:
        """Return the extension to store the file under (without the dot)."""
        if self.extension:
            return self.extension
        return PurePath(self.filename).suffix.lstrip(".")


_EXTENSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_+-]*$")


def normalize_extension(extension: Optional[str]) -> Optional[str]:
    """Lower-case an extension, or return None when it is not usable.

    Examples:
        >>> normalize_extension("PNG")
        'png'
        >>> normalize_extension(".png") is None
        True
    """
    if not extension or not _EXTENSION_RE.match(extension):
        return None
    return extension.lower()
