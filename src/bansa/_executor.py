"""Executor: runs derived computations and delivers their results.

Each execution bumps the atom's generation. Reads made through the ``get``
callback and completion handlers of async results carry the generation they
were started under; once it has moved on they do nothing.

Dependencies are rebuilt from scratch on every execution. When an execution
settles, edges to atoms it no longer read are dropped and those atoms are
offered to the garbage collector.
"""

from __future__ import annotations

import asyncio
import inspect
from functools import partial
from typing import TYPE_CHECKING, Any

from bansa import _lifecycle, _scheduler
from bansa.errors import PendingError, _Expired, _Wrapped, report_error

if TYPE_CHECKING:
    from bansa.atom import Atom, DerivedAtom


def execute(atom: DerivedAtom) -> None:
    """Run atom's computation and record what it read.

    Reading an atom that is dirty in the running flush recomputes it first.
    Once-per-flush holds for edges that existed when the flush marked the
    graph. A reader that picks up a new edge to an atom that changes later in
    the same flush is re-run by a follow-up flush.
    """
    gen = atom._generation = atom._generation + 1
    atom._active = True
    atom._need_execute = False
    atom._silent = False
    state = atom.state
    state.future = None

    if atom._token is not None:
        token, atom._token = atom._token, None
        token.cancel()

    # Reads of a superseded in-flight run still hold edges; keep them as
    # unlink candidates for when this run settles.
    if atom._next_dependencies:
        for dep in atom._next_dependencies:
            atom._dependencies.setdefault(dep, None)
        atom._next_dependencies = {}

    def get(other: Atom, unwrap: bool = True) -> Any:
        if gen != atom._generation:
            raise _Expired()
        if other is not atom:
            if not other._active:
                execute(other)
                if other._need_propagate:
                    propagate(other)
            elif other._need_execute:
                # Dirty in the running flush: settle it before it is read.
                other._need_propagate = True
                execute(other)
                flagged, marked = atom._need_execute, atom._marked
                atom._marked = True
                if other._need_propagate:
                    propagate(other)
                atom._need_execute, atom._marked = flagged, marked
            atom._next_dependencies[other] = None
            other._children[atom] = None
        other_state = other.state
        if not unwrap:
            return other_state
        if other_state.error is not None:
            raise _Wrapped(error=other_state.error)
        if other_state.future is not None:
            raise _Wrapped(future=other_state.future)
        return other_state.value

    context = atom._new_context()
    try:
        result = atom._call(get, context)
    except _Expired:
        finalize(atom)
        atom._need_propagate = False
        return
    except _Wrapped as signal:
        finalize(atom)
        _fold(atom, signal)
        return
    except PendingError as e:
        finalize(atom)
        _adopt(atom, e.future)
        return
    except Exception as e:
        finalize(atom)
        report_error(e)
        state.error = atom._next_error = e
        return

    if inspect.isawaitable(result):
        try:
            future = _ensure_future(result)
        except RuntimeError as e:
            if inspect.iscoroutine(result):
                result.close()
            finalize(atom)
            report_error(e, "Async atom needs a running event loop")
            state.error = atom._next_error = e
            return
        state.future = future
        future.add_done_callback(partial(_settle, atom, gen))
        return

    finalize(atom)
    state.error = atom._next_error = None
    if atom._same(result):
        atom._need_propagate = False
    else:
        state._value = atom._next_value = result


def _ensure_future(awaitable: Any) -> asyncio.Future:
    if asyncio.isfuture(awaitable):
        return awaitable
    loop = asyncio.get_running_loop()
    if inspect.iscoroutine(awaitable):
        # Eager start: reads before the first await happen inside execute().
        return asyncio.Task(awaitable, loop=loop, eager_start=True)
    return asyncio.ensure_future(awaitable, loop=loop)


def _fold(atom: DerivedAtom, signal: _Wrapped) -> None:
    """Take on a dependency's pending/errored state without reporting it."""
    state = atom.state
    if signal.future is not None:
        state.future = signal.future
        state.error = atom._next_error = None
    else:
        state.error = atom._next_error = signal.error


def _adopt(atom: DerivedAtom, future: Any) -> None:
    """Wait on a foreign future and re-execute once it settles."""
    state = atom.state
    state.future = future
    state.error = atom._next_error = None
    if asyncio.isfuture(future):
        future.add_done_callback(partial(_retry, atom, atom._generation))


def _retry(atom: DerivedAtom, gen: int, future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
    if gen == atom._generation and atom._active:
        _lifecycle.request_activate(atom)


def _settle(atom: DerivedAtom, gen: int, future: asyncio.Future) -> None:
    """Completion handler of an async execution started under gen."""
    if future.cancelled():
        if gen == atom._generation:
            finalize(atom)
        return
    error = future.exception()
    if gen != atom._generation:
        return
    finalize(atom)
    state = atom.state
    scheduler = _scheduler.current()

    if error is None:
        value = future.result()
        if atom._same(value):
            # Unchanged: no watcher/subscriber notification, but readers that
            # were waiting on this future must re-run.
            state.future = None
            atom._next_value = state._value
            atom._next_error = None
            atom._silent = True
        else:
            atom._next_value = value
            atom._next_error = None
        scheduler.enqueue(atom)
        return

    if isinstance(error, _Wrapped):
        if error.future is not None:
            state.future = error.future
            state.error = atom._next_error = None
            return
        atom._next_error = error.error
    elif isinstance(error, PendingError):
        _adopt(atom, error.future)
        return
    else:
        report_error(error)
        atom._next_error = error
    scheduler.enqueue(atom)


def finalize(atom: DerivedAtom) -> None:
    """Close the current execution and drop edges it no longer uses."""
    atom._generation += 1
    old = atom._dependencies
    atom._dependencies = atom._next_dependencies
    atom._next_dependencies = {}
    for dep in old:
        if dep not in atom._dependencies:
            dep._children.pop(atom, None)
            _lifecycle.disable(dep)


def propagate(atom: Atom) -> None:
    """Notify observers and flag dependents for re-execution."""
    atom._need_propagate = False
    silent, atom._silent = atom._silent, False
    state = atom.state
    if not silent:
        for watcher in list(atom._watchers):
            if watcher not in atom._watchers:
                continue
            try:
                watcher()
            except Exception as e:
                report_error(e, "Error in atom watcher")
    if state.error is not None or state.future is not None:
        return
    if not silent:
        for subscription in list(atom._subscribers):
            if subscription not in atom._subscribers:
                continue
            subscription.deliver(state.value)
    for child in atom._children:
        child._need_execute = True
        if not child._marked:
            # Edge added after the running flush marked the graph.
            _scheduler.current().enqueue(child)
