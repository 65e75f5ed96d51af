"""Scheduler: the heart of bansa's update batching.

Every staged change (a ``set``, an async resolution, an activation request)
lands in one pending queue. The first one schedules a single deferred flush;
everything staged before it runs is processed together.

A flush commits the staged nodes, marks everything downstream of them in
post-order, then walks that list backwards so each node is settled after all
of its dirty ancestors and at most once.

Garbage collection rides on a second, later tick (``defer_gc``) so that an
observer detaching and re-attaching in the same burst does not tear the node
down in between.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from bansa.atom import Atom, DerivedAtom

logger = logging.getLogger("bansa.scheduler")

Defer = Callable[[Callable[[], None]], None]


class Scheduler:
    """Pending queue, flush flag, batch depth and GC queue for one process."""

    def __init__(self, defer: Defer | None = None, defer_gc: Defer | None = None) -> None:
        self._defer = defer or self._call_soon
        self._defer_gc = defer_gc or self._call_later
        self._queue: list[Atom] = []
        self._flush_scheduled = False
        self._batch_depth = 0
        # Insertion-ordered set of deactivation candidates.
        self._gc_candidates: dict[DerivedAtom, None] = {}
        self._gc_scheduled = False

    # --- Deferral primitives ---

    def _call_soon(self, callback: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the work waits for an explicit flush().
            self._flush_scheduled = False
            return
        loop.call_soon(callback)

    def _call_later(self, callback: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._gc_scheduled = False
            return
        loop.call_later(0, callback)

    # --- Batching ---

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> None:
        """Exit a batching scope. The outermost exit flushes synchronously."""
        self._batch_depth -= 1
        if self._batch_depth == 0 and self._queue:
            self.flush()

    # --- Propagation queue ---

    def enqueue(self, atom: Atom) -> None:
        """Stage atom for the next flush and make sure one is scheduled."""
        atom._need_propagate = True
        if atom._queued:
            return
        atom._queued = True
        self._queue.append(atom)
        if not self._flush_scheduled and self._batch_depth == 0:
            self._flush_scheduled = True
            self._defer(self.flush)

    def flush(self) -> None:
        """Process every staged atom now. A no-op when nothing is staged."""
        self._flush_scheduled = False
        if not self._queue:
            return
        staged, self._queue = self._queue, []
        # Writes from here on go to the next flush.
        for atom in staged:
            atom._queued = False

        order: list[Atom] = []
        try:
            for atom in staged:
                # Deactivated since it was staged.
                if not atom._need_propagate:
                    continue
                if atom._commit():
                    _mark(atom, order)
                else:
                    atom._need_propagate = False

            logger.debug("flush: %d staged, %d marked", len(staged), len(order))
            for atom in reversed(order):
                atom._marked = False
                if atom._need_execute:
                    atom._need_propagate = True
                    atom._execute()
                if atom._need_propagate:
                    atom._propagate()
        finally:
            # A raising equals aborts the flush; later flushes must still mark.
            for atom in order:
                atom._marked = False

    def pending_count(self) -> int:
        return len(self._queue)

    # --- Garbage collection ---

    def collect_later(self, atom: DerivedAtom) -> None:
        """Register a deactivation candidate for the next GC tick."""
        self._gc_candidates[atom] = None
        if not self._gc_scheduled:
            self._gc_scheduled = True
            self._defer_gc(self.collect)

    def collect(self) -> None:
        """Deactivate candidates that are still unobserved.

        Candidates added while collecting (released dependencies) are handled
        in the same pass.
        """
        while self._gc_candidates:
            atom = next(iter(self._gc_candidates))
            del self._gc_candidates[atom]
            atom._deactivate()
        self._gc_scheduled = False


def _mark(root: Atom, order: list[Atom]) -> None:
    """Post-order DFS through dependents, visiting each atom once."""
    if root._marked:
        return
    root._marked = True
    stack = [(root, iter(list(root._children)))]
    while stack:
        atom, children = stack[-1]
        for child in children:
            if not child._marked:
                child._marked = True
                stack.append((child, iter(list(child._children))))
                break
        else:
            stack.pop()
            order.append(atom)


_current = Scheduler()


def current() -> Scheduler:
    return _current


def set_scheduler(defer: Defer | None = None, defer_gc: Defer | None = None) -> Scheduler:
    """Install a fresh scheduler and return it.

    ``defer(callback)`` replaces the "run soon" primitive used for flushes and
    ``defer_gc(callback)`` the "run on a later tick" primitive used for garbage
    collection. Both default to the running asyncio loop. Tests inject
    manual queues here to step the engine deterministically:

        queue = []
        bansa.set_scheduler(defer=queue.append, defer_gc=queue.append)
    """
    global _current
    _current = Scheduler(defer, defer_gc)
    return _current


def flush() -> None:
    """Run the pending flush right away."""
    _current.flush()


def collect_garbage() -> None:
    """Run the pending garbage collection right away."""
    _current.collect()


def get_pending_count() -> int:
    """Number of atoms staged for the next flush. Useful for testing."""
    return _current.pending_count()
