"""Logging utilities for ipcert library.

Every module logs through get_logger(), which returns an adapter that
tags records emitted inside identifier_context() with the IP address
being issued for (as the ``ip`` extra field).
"""

import logging
import time
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Silent unless the application configures logging
_root = logging.getLogger("ipcert")
_root.addHandler(logging.NullHandler())

# IP identifier of the issuance flow running in this context
_current_identifier: ContextVar[str | None] = ContextVar("current_identifier", default=None)


@contextmanager
def identifier_context(identifier: str) -> Iterator[None]:
    """Tag log records emitted inside the block with an IP identifier.

    Contexts nest; leaving the inner block restores the outer identifier.

    Args:
        identifier: IP address being processed.
    """
    token = _current_identifier.set(identifier)
    try:
        yield
    finally:
        _current_identifier.reset(token)


def current_identifier() -> str | None:
    """Return the identifier of the active flow, if any."""
    return _current_identifier.get()


class IdentifierAdapter(logging.LoggerAdapter):
    """Adds the active identifier to the ``extra`` of each record.

    Fields passed explicitly by the caller take precedence.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        identifier = _current_identifier.get()
        if identifier is not None:
            kwargs["extra"] = {"ip": identifier, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> IdentifierAdapter:
    """Get a logger under the ipcert namespace.

    Args:
        name: The module name (typically __name__).

    Returns:
        An adapter around the module logger.
    """
    return IdentifierAdapter(logging.getLogger(name))


class Timer:
    """Context manager for timing operations.

    Usage:
        with Timer() as t:
            # do work
        print(f"Elapsed: {t.elapsed_ms}ms")
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
