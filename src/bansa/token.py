"""Cancellation tokens handed to computations and subscribers.

A token is cancelled when the thing it belongs to is superseded: the next
execution of an atom, the next value delivered to a subscriber, an
unsubscribe, or the atom's deactivation. Register teardown with
``on_cancel`` or ``await token.wait()``.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from bansa.errors import report_error


class CancelToken:
    """One-shot cancellation signal with any number of listeners."""

    __slots__ = ("_cancelled", "_callbacks")

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel and run every registered callback once. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                report_error(e, "Error in cancellation callback")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run callback on cancellation, or right away if already cancelled."""
        if self._cancelled:
            try:
                callback()
            except Exception as e:
                report_error(e, "Error in cancellation callback")
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        future = asyncio.get_running_loop().create_future()

        def _wake() -> None:
            if not future.done():
                future.set_result(None)

        self.on_cancel(_wake)
        await future

    def __repr__(self) -> str:
        return f"CancelToken({'cancelled' if self._cancelled else 'live'})"
