"""Shared test fixtures and configuration for upload store tests."""
import pytest

from upload_store.binding import AttachmentBinding
from upload_store.config import get_settings
from upload_store.files.naming import SequenceNameGenerator
from upload_store.files.store import AttachmentStore


@pytest.fixture
def storage_root(tmp_path):
    """Provide an empty storage directory."""
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def store(storage_root):
    """Provide an AttachmentStore writing into the temp storage root."""
    return AttachmentStore(storage_root)


@pytest.fixture
def sequential_store(storage_root):
    """Provide a store with deterministic names (file-1, file-2, ...)."""
    return AttachmentStore(storage_root, name_generator=SequenceNameGenerator())


@pytest.fixture
def binding(store):
    return AttachmentBinding(store, attribute="file")


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Keep cached settings and the store singleton out of other tests."""
    yield
    AttachmentStore.reset_instance()
    get_settings.cache_clear()
