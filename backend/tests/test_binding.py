"""Tests for the record lifecycle binding."""

import gc
import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest

from upload_store.binding import (
    INVALID_EXTENSION_MESSAGE,
    SAVE_FAILED_MESSAGE,
    AttachmentBinding,
)
from upload_store.config import AppSettings
from upload_store.files.errors import TokenStateError
from upload_store.files.schemas import UploadedFile, UploadState


@dataclass
class Record:
    """Minimal stand-in for an ORM row with an error bag."""
    file: Any = None
    errors: Dict[str, List[str]] = field(default_factory=dict)

    def add_error(self, attribute: str, message: str) -> None:
        self.errors.setdefault(attribute, []).append(message)


class Avatar:
    """Record without add_error, using a custom attribute name."""
    def __init__(self, avatar: Optional[str] = None):
        self.avatar = avatar


class BrokenStream(io.RawIOBase):
    def readable(self):
        return True

    def readinto(self, buffer):
        raise OSError(5, "Input/output error")


def upload(content=b"data", filename="photo.PNG"):
    return UploadedFile(filename=filename, content=content)


class TestBeforeValidate:
    """Tests for staging through the binding."""

    def test_nothing_uploaded(self, binding):
        record = Record(file="old.png")
        assert binding.before_validate(record, None) is False
        assert record.file == "old.png"
        assert not binding.has_pending(record)

    def test_uploaded_file_is_placed_on_attribute(self, binding):
        record = Record(file="old.png")
        uploaded = upload()

        assert binding.before_validate(record, uploaded) is True
        assert record.file is uploaded
        assert binding.has_pending(record)

    def test_no_filesystem_effect(self, binding, storage_root):
        binding.before_validate(Record(), upload())
        assert list(storage_root.iterdir()) == []


class TestBeforeSave:
    """Tests for committing through the binding."""

    def test_new_record(self, binding, storage_root):
        record = Record()
        binding.before_validate(record, upload(b"hello", "notes.TXT"))

        assert binding.before_save(record) is True
        assert isinstance(record.file, str)
        assert record.file.endswith(".txt")
        assert (storage_root / record.file).read_bytes() == b"hello"
        assert not binding.has_pending(record)

    def test_update_replaces_previous_file(self, binding, storage_root):
        (storage_root / "old123.png").write_bytes(b"old")
        record = Record(file="old123.png")

        binding.before_validate(record, upload(b"new"))
        assert binding.before_save(record) is True

        assert record.file != "old123.png"
        assert not (storage_root / "old123.png").exists()
        assert (storage_root / record.file).read_bytes() == b"new"

    def test_save_without_upload(self, binding):
        record = Record(file="old.png")
        assert binding.before_save(record) is True
        assert record.file == "old.png"

    def test_explicit_extension_wins(self, binding):
        record = Record()
        binding.before_validate(
            record, UploadedFile(filename="blob", content=b"x", extension="JSON")
        )
        binding.before_save(record)
        assert record.file.endswith(".json")

    def test_stream_content(self, binding, storage_root):
        record = Record()
        binding.before_validate(record, upload(io.BytesIO(b"streamed"), "a.bin"))
        binding.before_save(record)
        assert (storage_root / record.file).read_bytes() == b"streamed"

    def test_write_failure_aborts_save(self, binding, storage_root):
        """Test that a failed write restores the old value and reports an error."""
        (storage_root / "old.png").write_bytes(b"old")
        record = Record(file="old.png")

        binding.before_validate(record, upload(BrokenStream()))
        assert binding.before_save(record) is False

        assert record.file == "old.png"
        assert record.errors == {"file": [SAVE_FAILED_MESSAGE]}
        assert binding.errors_for(record) == [SAVE_FAILED_MESSAGE]
        assert (storage_root / "old.png").read_bytes() == b"old"
        assert [p.name for p in storage_root.iterdir()] == ["old.png"]

    def test_errors_cleared_on_next_cycle(self, binding):
        record = Record()
        binding.before_validate(record, upload(BrokenStream()))
        binding.before_save(record)
        assert binding.errors_for(record)

        binding.before_validate(record, upload(b"ok"))
        assert binding.errors_for(record) == []
        assert binding.before_save(record) is True

    def test_owner_without_add_error(self, store):
        binding = AttachmentBinding(store, attribute="avatar")
        record = Avatar()
        binding.before_validate(record, upload(BrokenStream()))

        assert binding.before_save(record) is False
        assert record.avatar is None
        assert binding.errors_for(record) == [SAVE_FAILED_MESSAGE]


class TestStoreRejections:
    """Tests for store errors other than write failures."""

    def test_upload_without_extension(self, binding, storage_root):
        """Test that a file name without suffix aborts the save cleanly."""
        (storage_root / "old.png").write_bytes(b"old")
        record = Record(file="old.png")
        binding.before_validate(record, upload(b"x", "noext"))

        assert binding.before_save(record) is False

        assert record.file == "old.png"
        assert record.errors == {"file": [INVALID_EXTENSION_MESSAGE]}
        assert not binding.has_pending(record)
        assert [p.name for p in storage_root.iterdir()] == ["old.png"]

        binding.cancel(record)
        assert record.file == "old.png"

        binding.before_delete(record)
        assert list(storage_root.iterdir()) == []

    def test_invalid_extension_discards_token(self, binding, store, monkeypatch):
        tokens = []
        original_stage = store.stage

        def recording_stage(current=None):
            token = original_stage(current)
            tokens.append(token)
            return token

        monkeypatch.setattr(store, "stage", recording_stage)
        record = Record()
        binding.before_validate(record, upload(b"x", "bad.ext with space"))

        assert binding.before_save(record) is False
        assert tokens[0].state == UploadState.DISCARDED

    def test_token_state_error(self, binding, store, monkeypatch):
        """Test that a token rejected by the store restores the old reference."""
        def rejecting_commit(token, payload, extension):
            raise TokenStateError(token.id, "committed", "commit")

        monkeypatch.setattr(store, "commit", rejecting_commit)
        record = Record(file="old.png")
        binding.before_validate(record, upload())

        assert binding.before_save(record) is False
        assert record.file == "old.png"
        assert binding.errors_for(record) == [SAVE_FAILED_MESSAGE]

    def test_retry_after_rejection(self, binding, storage_root):
        record = Record()
        binding.before_validate(record, upload(b"x", "noext"))
        assert binding.before_save(record) is False

        binding.before_validate(record, upload(b"x", "fixed.txt"))
        assert binding.before_save(record) is True
        assert (storage_root / record.file).read_bytes() == b"x"
        assert binding.errors_for(record) == []


class TestErrorTracking:
    """Tests for per-record error bookkeeping."""

    def test_unrelated_record_has_no_errors(self, binding):
        failed = Record()
        binding.before_validate(failed, upload(BrokenStream()))
        binding.before_save(failed)

        assert binding.errors_for(failed) == [SAVE_FAILED_MESSAGE]
        assert binding.errors_for(Record()) == []

    def test_errors_survive_cancel(self, binding):
        """Test that the caller can still read errors after cancelling."""
        record = Record()
        binding.before_validate(record, upload(BrokenStream()))
        binding.before_save(record)
        binding.cancel(record)
        assert binding.errors_for(record) == [SAVE_FAILED_MESSAGE]

    def test_errors_cleared_on_delete(self, binding):
        record = Record()
        binding.before_validate(record, upload(BrokenStream()))
        binding.before_save(record)

        binding.before_delete(record)
        assert binding.errors_for(record) == []

    def test_errors_dropped_with_discarded_records(self, binding):
        """Test that failed records thrown away do not accumulate."""
        for _ in range(50):
            record = Record()
            binding.before_validate(record, upload(BrokenStream()))
            binding.before_save(record)
            del record
        gc.collect()

        assert binding._errors == {}

    def test_errors_for_record_without_weakref_support(self, store):
        class Slotted:
            __slots__ = ("file",)

            def __init__(self):
                self.file = None

        binding = AttachmentBinding(store)
        record = Slotted()
        binding.before_validate(record, upload(BrokenStream()))

        assert binding.before_save(record) is False
        assert binding.errors_for(record) == [SAVE_FAILED_MESSAGE]
        assert binding.errors_for(Slotted()) == []


class TestCancel:
    """Tests for abandoning a staged upload."""

    def test_cancel_restores_previous(self, binding, storage_root):
        (storage_root / "old.png").write_bytes(b"old")
        record = Record(file="old.png")
        binding.before_validate(record, upload())

        binding.cancel(record)

        assert record.file == "old.png"
        assert not binding.has_pending(record)
        assert [p.name for p in storage_root.iterdir()] == ["old.png"]

    def test_cancel_without_pending(self, binding):
        record = Record(file="old.png")
        binding.cancel(record)
        assert record.file == "old.png"

    def test_restage_replaces_pending_upload(self, binding, storage_root):
        record = Record(file="old.png")
        binding.before_validate(record, upload(b"first"))
        binding.before_validate(record, upload(b"second"))

        binding.before_save(record)
        assert (storage_root / record.file).read_bytes() == b"second"
        assert len(list(storage_root.iterdir())) == 1


class TestBeforeDelete:
    """Tests for removing files with their records."""

    def test_delete_removes_file(self, binding, storage_root):
        record = Record()
        binding.before_validate(record, upload())
        binding.before_save(record)

        binding.before_delete(record)
        assert list(storage_root.iterdir()) == []

    def test_delete_without_file(self, binding):
        binding.before_delete(Record())

    def test_delete_with_missing_file(self, binding):
        binding.before_delete(Record(file="gone.png"))

    def test_delete_with_pending_upload(self, binding, storage_root):
        """Test that a pending upload is dropped and the stored file removed."""
        (storage_root / "old.png").write_bytes(b"old")
        record = Record(file="old.png")
        binding.before_validate(record, upload())

        binding.before_delete(record)

        assert not binding.has_pending(record)
        assert list(storage_root.iterdir()) == []


class TestFromSettings:
    def test_from_settings(self, storage_root):
        settings = AppSettings(
            storage={"root": str(storage_root), "name_strategy": "time"},
            binding={"attribute": "avatar"},
        )
        binding = AttachmentBinding.from_settings(settings)

        assert binding.attribute == "avatar"
        assert binding.store.root == storage_root.resolve()

        record = Avatar()
        binding.before_validate(record, upload())
        assert binding.before_save(record) is True
        assert (storage_root / record.avatar).exists()


@pytest.mark.parametrize(
    "filename,expected",
    [("photo.PNG", "PNG"), ("archive.tar.gz", "gz"), ("noext", ""), ("dir/a.txt", "txt")],
)
def test_uploaded_file_extension(filename, expected):
    assert UploadedFile(filename=filename, content=b"").get_extension() == expected
