"""Startup entry point for applications using the upload store.

Loads the settings file, applies the configured log level and builds the
binding the record layer hooks into:

    binding = init_app("config/upload_store.settings.yaml")
"""
import logging
from pathlib import Path
from typing import Optional, Union

from upload_store.binding import AttachmentBinding
from upload_store.config import load_settings
from upload_store.files.store import AttachmentStore
from upload_store.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def init_app(settings_path: Optional[Union[str, Path]] = None) -> AttachmentBinding:
    """Load settings, configure logging and return a ready binding.

    The store is also installed as the ``AttachmentStore`` singleton so code
    calling ``AttachmentStore.get_instance()`` shares it.
    """
    settings = load_settings(settings_path)
    configure_logging(settings.logging.level)

    store = AttachmentStore.from_settings(settings.storage)
    AttachmentStore.set_instance(store)

    binding = AttachmentBinding.from_settings(settings, store=store)
    logger.info(
        "Upload store ready (root=%s, attribute=%s)", store.root, binding.attribute
    )
    return binding
