"""Attachment storage service.

Stores uploaded payloads in a flat directory under generated unique names:
{storage_root}/{unique_id}.{ext}

One upload cycle is stage -> commit | discard. A commit writes the new file
to a temporary name in the same directory and hard-links it into place, and only
then removes the file the owning record referenced before. A crash between the
two steps leaves the old file behind rather than a record pointing at nothing.
"""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

from upload_store.config import get_settings

from .errors import (
    InvalidExtensionError,
    StorageConfigError,
    TokenStateError,
    WriteFailedError,
)
from .naming import NameGenerator, get_name_generator, uuid_name
from .schemas import PendingUpload, UploadState, normalize_extension

logger = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, memoryview, BinaryIO]

COPY_CHUNK_SIZE = 1024 * 1024
TEMP_PREFIX = ".upload-"
TEMP_SUFFIX = ".part"


class AttachmentStore:
    """Service for writing, replacing and removing stored attachments."""

    _instance: Optional["AttachmentStore"] = None

    def __init__(
        self,
        root: Union[str, Path],
        name_generator: Optional[NameGenerator] = None,
        create_root: bool = False,
        file_mode: int = 0o644,
    ) -> None:
        """Initialize the store.

        The root is resolved to an absolute path once, here, and checked for
        being a writable directory.

        Args:
            root: Storage directory for all attachments
            name_generator: Callable producing unique IDs; defaults to UUID4
            create_root: Create the directory (and parents) if it is missing
            file_mode: Permission bits applied to stored files

        Raises:
            StorageConfigError: If the root is unusable
        """
        self._root = Path(root).expanduser().resolve()
        self._name_generator = name_generator or uuid_name
        self._file_mode = file_mode
        self._ensure_root(create_root)

    @classmethod
    def from_settings(cls, settings) -> "AttachmentStore":
        """Build a store from loaded ``StorageSettings``."""
        return cls(
            root=settings.root,
            name_generator=get_name_generator(settings.name_strategy),
            create_root=settings.create_root,
            file_mode=settings.file_mode,
        )

    @classmethod
    def get_instance(cls) -> "AttachmentStore":
        """Get or create the singleton instance from the application settings."""
        if cls._instance is None:
            cls._instance = cls.from_settings(get_settings().storage)
        return cls._instance

    @classmethod
    def set_instance(cls, store: "AttachmentStore") -> None:
        """Install an already built store as the singleton."""
        cls._instance = store

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_root(self, create_root: bool) -> None:
        if create_root:
            try:
                self._root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageConfigError(
                    f"Cannot create storage root {self._root}: {e}"
                ) from e
        if not self._root.exists():
            raise StorageConfigError(f"Storage root does not exist: {self._root}")
        if not self._root.is_dir():
            raise StorageConfigError(f"Storage root is not a directory: {self._root}")
        if not os.access(self._root, os.W_OK | os.X_OK):
            raise StorageConfigError(f"Storage root is not writable: {self._root}")

    # ------------------------------------------------------------------
    # Upload cycle
    # ------------------------------------------------------------------

    def stage(self, current_reference: Optional[str] = None) -> PendingUpload:
        """Start an upload cycle for a record.

        Args:
            current_reference: The record's reference before this upload

        Returns:
            PendingUpload token to pass to ``commit`` or ``discard``
        """
        token = PendingUpload(previous_reference=current_reference or None)
        logger.debug(
            "Staged upload %s (previous=%s)", token.id, token.previous_reference
        )
        return token

    def commit(self, token: PendingUpload, payload: Payload, extension: str) -> str:
        """Write the payload under a new name and retire the previous file.

        Args:
            token: Token returned by ``stage``
            payload: File content as bytes or a readable binary stream
            extension: File extension without the leading dot

        Returns:
            The new attachment reference

        Raises:
            TokenStateError: If the token was already committed, failed or discarded
            InvalidExtensionError: If the extension is empty or malformed
            WriteFailedError: If the payload could not be written
        """
        if not token.is_open:
            raise TokenStateError(token.id, token.state.value, "commit")

        ext = normalize_extension(extension)
        if ext is None:
            raise InvalidExtensionError(extension)

        reference = f"{self._name_generator()}.{ext}"
        target = self._root / reference

        try:
            size_bytes = self._write_atomic(target, payload)
        except Exception as e:
            token.state = UploadState.FAILED
            logger.error("Failed to write attachment %s: %s", target, str(e))
            raise WriteFailedError(reference, str(e)) from e

        token.state = UploadState.COMMITTED
        token.reference = reference
        logger.info("Saved attachment: %s (%d bytes)", target, size_bytes)

        previous = token.previous_reference
        if previous and previous != reference:
            self.delete(previous)

        return reference

    def discard(self, token: PendingUpload) -> None:
        """Drop a staged upload without touching the filesystem.

        Raises:
            TokenStateError: If the token was already committed
        """
        if token.state == UploadState.COMMITTED:
            raise TokenStateError(token.id, token.state.value, "discard")
        if token.state == UploadState.STAGED:
            token.state = UploadState.DISCARDED
            logger.debug("Discarded upload %s", token.id)

    def delete(self, reference: Optional[str]) -> bool:
        """Remove the file behind a reference, best effort.

        Failures are logged and never raised.

        Returns:
            True if a file was removed
        """
        if not reference:
            return False
        if not is_safe_reference(reference):
            logger.warning("Refusing to delete unsafe reference %r", reference)
            return False

        path = self._root / reference
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Attachment already absent: %s", path)
            return False
        except OSError as e:
            logger.warning("Could not delete attachment %s: %s", path, e)
            return False

        logger.info("Deleted attachment: %s", path)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def path_for(self, reference: str) -> Path:
        """Full path of a reference inside the storage root.

        Raises:
            ValueError: If the reference is empty or would escape the root
        """
        if not reference or not is_safe_reference(reference):
            raise ValueError(f"Invalid attachment reference: {reference!r}")
        return self._root / reference

    def exists(self, reference: Optional[str]) -> bool:
        """Check whether a reference has a file on disk."""
        if not reference or not is_safe_reference(reference):
            return False
        return (self._root / reference).is_file()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write_atomic(self, target: Path, payload: Payload) -> int:
        """Write to a temp file next to ``target`` and link it into place.

        ``os.link`` fails with FileExistsError instead of replacing an existing
        file, so a name collision can never clobber another attachment. The
        temp file is always removed, so nothing is visible under the final
        name unless the whole payload made it to disk.
        """
        fd, tmp_name = tempfile.mkstemp(
            prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self._root
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                if isinstance(payload, (bytes, bytearray, memoryview)):
                    fh.write(payload)
                else:
                    shutil.copyfileobj(payload, fh, COPY_CHUNK_SIZE)
                fh.flush()
                os.fsync(fh.fileno())
                size_bytes = fh.tell()
            os.chmod(tmp_path, self._file_mode)
            os.link(tmp_path, target)
        finally:
            try:
                os.unlink(tmp_path)
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", tmp_path, e)
        self._fsync_root()
        return size_bytes

    def _fsync_root(self) -> None:
        # Directory fsync is POSIX only; the link is already visible.
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            dir_fd = os.open(self._root, os.O_RDONLY | os.O_DIRECTORY)
        except OSError as e:
            logger.debug("Could not open %s for fsync: %s", self._root, e)
            return
        try:
            os.fsync(dir_fd)
        except OSError as e:
            logger.debug("Directory fsync failed for %s: %s", self._root, e)
        finally:
            os.close(dir_fd)


def is_safe_reference(reference: str) -> bool:
    """Check that a reference names a plain file directly inside the root.

    Rejects path separators, NUL bytes and dot-prefixed names (which also
    covers ``.``, ``..`` and in-progress temp files).
    """
    if not reference or reference.startswith("."):
        return False
    if "\x00" in reference:
        return False
    separators = {"/", "\\", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    return not any(sep in reference for sep in separators)
