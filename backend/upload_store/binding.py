"""Record lifecycle hooks for uploaded files.

``AttachmentBinding`` connects an ``AttachmentStore`` to any record object
that keeps its attachment reference in a plain attribute. The record layer
calls the hooks at the matching points of its own lifecycle:

    binding = AttachmentBinding(store, attribute="avatar")

    binding.before_validate(user, uploaded)   # uploaded file seen on the form
    if validate(user) and binding.before_save(user):
        session.commit()                      # user.avatar is the new reference
    else:
        binding.cancel(user)

    binding.before_delete(user)               # record is being removed

Between ``before_validate`` and ``before_save`` the attribute holds the
``UploadedFile`` itself so validators can inspect it.
"""
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .files.errors import InvalidExtensionError, StoreError
from .files.schemas import PendingUpload, UploadedFile
from .files.store import AttachmentStore

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "We can't save the file. Try again later."
INVALID_EXTENSION_MESSAGE = "The file must have a valid extension."


@dataclass
class _BoundUpload:
    owner:    Any
    token:    PendingUpload
    uploaded: UploadedFile


@dataclass
class _OwnerErrors:
    ref:      Callable[[], Any]
    messages: List[str] = field(default_factory=list)


@dataclass
class AttachmentBinding:
    """Binds uploads to the ``attribute`` field of record objects."""

    store:     AttachmentStore
    attribute: str = "file"
    _pending:  Dict[int, _BoundUpload] = field(default_factory=dict, repr=False)
    _errors:   Dict[int, _OwnerErrors] = field(default_factory=dict, repr=False)

    @classmethod
    def from_settings(cls, settings, store: Optional[AttachmentStore] = None) -> "AttachmentBinding":
        """Build a binding from loaded ``AppSettings``."""
        return cls(
            store=store or AttachmentStore.from_settings(settings.storage),
            attribute=settings.binding.attribute,
        )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def before_validate(self, owner: Any, uploaded: Optional[UploadedFile]) -> bool:
        """Stage an uploaded file for ``owner``.

        Returns:
            True if a file was staged, False if there was nothing to stage
        """
        key = id(owner)
        self._clear_errors(owner)
        if uploaded is None:
            return False

        # A second upload before save replaces the first one.
        if key in self._pending:
            self.cancel(owner)

        current = getattr(owner, self.attribute, None)
        token = self.store.stage(current)
        self._pending[key] = _BoundUpload(owner=owner, token=token, uploaded=uploaded)
        setattr(owner, self.attribute, uploaded)
        return True

    def before_save(self, owner: Any) -> bool:
        """Store the staged file and point ``owner`` at it.

        If the store rejects the upload the previous reference is restored
        and an error is recorded against the attribute.

        Returns:
            False if the save must be aborted, True otherwise
        """
        self._clear_errors(owner)
        bound = self._pending.pop(id(owner), None)
        if bound is None:
            return True

        try:
            reference = self.store.commit(
                bound.token, bound.uploaded.content, bound.uploaded.get_extension()
            )
        except StoreError as e:
            logger.error(
                "Upload for %s.%s failed: %s", type(owner).__name__, self.attribute, e.message
            )
            if bound.token.is_open:
                self.store.discard(bound.token)
            setattr(owner, self.attribute, bound.token.previous_reference)
            if isinstance(e, InvalidExtensionError):
                self._add_error(owner, INVALID_EXTENSION_MESSAGE)
            else:
                self._add_error(owner, SAVE_FAILED_MESSAGE)
            return False

        setattr(owner, self.attribute, reference)
        return True

    def cancel(self, owner: Any) -> None:
        """Drop a staged upload and restore the previous reference."""
        bound = self._pending.pop(id(owner), None)
        if bound is None:
            return
        self.store.discard(bound.token)
        setattr(owner, self.attribute, bound.token.previous_reference)

    def before_delete(self, owner: Any) -> None:
        """Remove the file referenced by ``owner``."""
        self._clear_errors(owner)
        self.cancel(owner)
        reference = getattr(owner, self.attribute, None)
        if isinstance(reference, str):
            self.store.delete(reference)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def errors_for(self, owner: Any) -> List[str]:
        """Errors recorded for ``owner`` during the current cycle."""
        entry = self._errors.get(id(owner))
        if entry is None or entry.ref() is not owner:
            return []
        return list(entry.messages)

    def has_pending(self, owner: Any) -> bool:
        return id(owner) in self._pending

    def _add_error(self, owner: Any, message: str) -> None:
        key = id(owner)
        entry = self._errors.get(key)
        if entry is None or entry.ref() is not owner:
            entry = _OwnerErrors(ref=self._track(owner, key))
            self._errors[key] = entry
        entry.messages.append(message)

        add_error = getattr(owner, "add_error", None)
        if callable(add_error):
            add_error(self.attribute, message)

    def _clear_errors(self, owner: Any) -> None:
        entry = self._errors.get(id(owner))
        if entry is not None and entry.ref() is owner:
            del self._errors[id(owner)]

    def _track(self, owner: Any, key: int) -> Callable[[], Any]:
        # Entries go away with their owner, so a recycled id() never sees them.
        errors = self._errors

        def _drop(ref: "weakref.ref[Any]") -> None:
            entry = errors.get(key)
            if entry is not None and entry.ref is ref:
                del errors[key]

        try:
            return weakref.ref(owner, _drop)
        except TypeError:
            # Not weak-referenceable (e.g. __slots__ without __weakref__);
            # held until the owner's next cycle clears it.
            return lambda: owner
