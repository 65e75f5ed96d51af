"""Textual integration for bansa. Opt-in, requires textual.

Binds atoms to a running Textual app: callbacks are skipped while the app is
paused or not running, ``NoMatches`` from widget queries is swallowed, and
calls arriving from another thread are marshaled with ``call_from_thread``.
Scope resolution happens here so widgets can be written against the base
atoms.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable

from textual.css.query import NoMatches

from bansa.atom import Atom, _accepts
from bansa.scope import Scope

logger = logging.getLogger("bansa.textual")

# Keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bound callbacks during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, fn: Callable[..., None]) -> Callable[..., None]:
    main = threading.get_ident()

    def _safe(*args: Any) -> None:
        try:
            fn(*args)
        except NoMatches:
            logger.debug("widget query found nothing; skipped %r", fn)

    def _guarded(*args: Any) -> None:
        if not is_safe(app):
            return
        if threading.get_ident() != main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    return _guarded


def subscribe(app, atom: Atom, effect: Callable[..., None], *, scope: Scope | None = None) -> Callable[[], None]:
    """atom.subscribe() that safely bridges to Textual widgets.

    Returns the unsubscribe function; call it when the widget unmounts.
    """
    target = scope(atom) if scope is not None else atom
    if _accepts(effect, 2):
        return target.subscribe(_guard(app, effect))
    guarded = _guard(app, effect)
    return target.subscribe(lambda value: guarded(value))


def watch(app, atom: Atom, fn: Callable[[], None], *, scope: Scope | None = None) -> Callable[[], None]:
    """atom.watch() that safely bridges to Textual widgets.

    Returns the unwatch function.
    """
    target = scope(atom) if scope is not None else atom
    return target.watch(_guard(app, fn))
