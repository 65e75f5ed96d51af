"""Exceptions and the error-reporting channel.

Computation errors, failing subscriber/watcher callbacks and failing
cancellation callbacks are all reported through the ``bansa`` logger.
Handlers attached to that logger decide where they end up.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("bansa")


class BansaError(Exception):
    """Base class for errors raised by bansa."""


class PendingError(BansaError):
    """Raised by ``Atom.get()`` while the atom waits on an in-flight future.

    Await ``err.future`` and read again.
    """

    def __init__(self, future: Any) -> None:
        super().__init__("atom is pending")
        self.future = future


class _Wrapped(BaseException):
    """Internal: a dependency read hit a pending or errored atom.

    Derives from BaseException so ``except Exception`` in user computations
    does not swallow it.
    """

    def __init__(self, error: BaseException | None = None, future: Any = None) -> None:
        super().__init__()
        self.error = error
        self.future = future


class _Expired(BaseException):
    """Internal: a read happened under a superseded execution."""


def report_error(error: BaseException, message: str = "Uncaught error in atom") -> None:
    """Send an error to the process-wide reporting channel."""
    logger.error(message, exc_info=(type(error), error, error.__traceback__))
