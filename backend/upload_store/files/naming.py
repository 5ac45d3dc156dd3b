"""Unique name generators for stored attachments.

A generator is any zero-argument callable returning an identifier made of
``[0-9A-Za-z_-]``. The store appends ``.{extension}`` to it.
"""
import itertools
import secrets
import threading
import time
import uuid
from typing import Callable, Dict

NameGenerator = Callable[[], str]


def uuid_name() -> str:
    """Random 128-bit identifier rendered as hyphenated hex."""
    return str(uuid.uuid4())


def time_ordered_name() -> str:
    """Microsecond timestamp in hex followed by 32 bits of entropy.

    Names sort by creation time, which keeps directory listings readable.
    """
    return f"{time.time_ns() // 1000:x}-{secrets.token_hex(4)}"


class SequenceNameGenerator:
    """Deterministic generator yielding ``{prefix}{n}`` for n = 1, 2, ..."""

    def __init__(self, prefix: str = "file-", start: int = 1) -> None:
        self._prefix = prefix
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self._prefix}{n}"


NAME_STRATEGIES: Dict[str, NameGenerator] = {
    "uuid": uuid_name,
    "time": time_ordered_name,
}


def get_name_generator(strategy: str) -> NameGenerator:
    """Look up a generator by its configured strategy name."""
    try:
        return NAME_STRATEGIES[strategy]
    except KeyError:
        raise ValueError(
            f"Unknown name strategy '{strategy}'. "
            f"Expected one of: {', '.join(sorted(NAME_STRATEGIES))}"
        ) from None
