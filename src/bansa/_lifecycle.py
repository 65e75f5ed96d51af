"""Activation and garbage collection of derived atoms.

Activation is implicit: watching, subscribing, or being read by an executing
atom. Deactivation is requested whenever an atom loses its last observer or
dependent, and carried out one GC tick later if that is still the case.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bansa import _scheduler

if TYPE_CHECKING:
    from bansa.atom import Atom, DerivedAtom

logger = logging.getLogger("bansa.lifecycle")


def request_activate(atom: DerivedAtom) -> None:
    """Schedule the first execution of an inactive atom."""
    if not atom._need_execute:
        atom._need_execute = True
        _scheduler.current().enqueue(atom)


def is_collectable(atom: Atom) -> bool:
    return (
        not atom._source
        and not atom._persist
        and not atom._children
        and not atom._watchers
        and not atom._subscribers
    )


def disable(atom: Atom) -> None:
    """Request deactivation if nothing observes or depends on atom."""
    if is_collectable(atom):
        _scheduler.current().collect_later(atom)


def deactivate(atom: DerivedAtom) -> None:
    """Reset atom to inactive and release its dependencies.

    Re-checks collectability: the atom may have been observed again since
    deactivation was requested.
    """
    if not is_collectable(atom):
        return
    logger.debug("deactivating %r", atom)
    atom._reset()
    if atom._token is not None:
        token, atom._token = atom._token, None
        token.cancel()
    released = dict(atom._dependencies)
    released.update(atom._next_dependencies)
    atom._dependencies = {}
    atom._next_dependencies = {}
    for dep in released:
        dep._children.pop(atom, None)
        disable(dep)
