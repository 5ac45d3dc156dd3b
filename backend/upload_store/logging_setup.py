"""Root logger configuration."""
import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger.

    ``level`` is the name from ``logging.level`` in the settings file
    (e.g. "debug"). Unknown names leave the level at INFO.
    """
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    if not level:
        return
    configured_level = getattr(logging, level.upper(), None)
    if isinstance(configured_level, int):
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", level.upper())
    else:
        logger.warning("Unknown log level %r, keeping INFO", level)
