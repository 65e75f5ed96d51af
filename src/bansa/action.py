"""Actions and transactions: synchronous batched updates.

Writes are batched anyway: they wait for the next flush, which normally runs
on the next event-loop iteration. Wrapping them in an @action or
``with transaction()`` instead holds the flush until the outermost scope
exits and then runs it right there, so dependents are up to date as soon as
the block returns, with or without a running loop.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, ParamSpec, TypeVar

from bansa import _scheduler

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch all atom writes inside fn and flush on return.

    Usage:
        left = atom(0)
        right = atom(0)

        @action
        def swap():
            a, b = left.get(), right.get()
            left.set(b)
            right.set(a)
            # dependents see both changes at once
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        scheduler = _scheduler.current()
        scheduler.begin_batch()
        try:
            return fn(*args, **kwargs)
        finally:
            scheduler.end_batch()

    return wrapper


@contextmanager
def transaction():
    """Context manager for batching writes.

    Usage:
        with transaction():
            first.set("Ada")
            last.set("Lovelace")
        # flushed here
    """
    scheduler = _scheduler.current()
    scheduler.begin_batch()
    try:
        yield
    finally:
        scheduler.end_batch()
