"""Atoms: source state and derived computations.

A SourceAtom holds a value set from outside. A DerivedAtom wraps a function
that reads other atoms through a ``get`` callback; the reads become the
atom's dependencies and are rebuilt on every run.

Derived atoms are lazy: they start inactive, come alive when watched,
subscribed or read by another live atom, and are reset once nothing observes
them anymore (see ``_lifecycle``).

Usage:
    count = atom(0)
    doubled = atom(lambda get: get(count) * 2)

    doubled.get()      # 0
    count.set(5)
    bansa.flush()      # normally runs on the next loop iteration
    doubled.get()      # 10
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Generic, TypeVar, overload

from bansa import _executor, _lifecycle, _scheduler
from bansa.errors import PendingError, report_error
from bansa.token import CancelToken

T = TypeVar("T")

Equals = Callable[[Any, Any], bool]
Getter = Callable[..., Any]

_MISSING: Any = object()


class _Inactive:
    """Marker held in the pending slot of an atom that is not running."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "INACTIVE"


INACTIVE = _Inactive()


def _accepts(fn: Callable, count: int) -> bool:
    """Whether fn can be called with count positional arguments."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return True
    positional = 0
    for param in sig.parameters.values():
        if param.kind is param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= count


class AtomState(Generic[T]):
    """Snapshot slots of an atom.

    Exactly one of ``future`` (pending or INACTIVE), ``error`` or neither
    (success) is authoritative. ``value`` may lag behind as the last good
    result.
    """

    __slots__ = ("future", "error", "_value")

    def __init__(self, value: Any = _MISSING, future: Any = None) -> None:
        self.future = future
        self.error: BaseException | None = None
        self._value = value

    @property
    def value(self) -> T | None:
        return None if self._value is _MISSING else self._value

    @property
    def has_value(self) -> bool:
        return self._value is not _MISSING

    @property
    def status(self) -> str:
        if self.future is INACTIVE:
            return "inactive"
        if self.future is not None:
            return "pending"
        if self.error is not None:
            return "error"
        return "success"

    def __repr__(self) -> str:
        return f"AtomState({self.status}, value={self.value!r}, error={self.error!r})"


class AtomContext:
    """Second argument of computations and subscribers.

    ``token`` is created on first access and cancelled when the execution (or
    delivered value) it belongs to is superseded.
    """

    __slots__ = ("_owner", "_token")

    def __init__(self, owner: Any) -> None:
        self._owner = owner
        self._token: CancelToken | None = None

    @property
    def token(self) -> CancelToken:
        if self._token is None:
            self._token = CancelToken()
            if self._owner._context is self:
                self._owner._token = self._token
            else:
                self._token.cancel()
        return self._token


class _Subscription:
    __slots__ = ("callback", "_with_context", "_context", "_token")

    def __init__(self, callback: Callable) -> None:
        self.callback = callback
        self._with_context = _accepts(callback, 2)
        self._context = AtomContext(self)
        self._token: CancelToken | None = None

    def cancel(self) -> None:
        if self._token is not None:
            token, self._token = self._token, None
            token.cancel()
        self._context = AtomContext(self)

    def deliver(self, value: Any) -> None:
        """Cancel the previous delivery's token, then call the subscriber."""
        self.cancel()
        try:
            if self._with_context:
                self.callback(value, self._context)
            else:
                self.callback(value)
        except Exception as e:
            report_error(e, "Error in atom subscriber")


def _equals(value: Any, prev: Any, equals: Equals | None) -> bool:
    if value is prev:
        return True
    return equals is not None and prev is not _MISSING and equals(value, prev)


class Atom(Generic[T]):
    """Common behaviour of source and derived atoms."""

    __slots__ = (
        "state",
        "_equals",
        "_next_value",
        "_next_error",
        "_children",
        "_watchers",
        "_subscribers",
        "_need_propagate",
        "_queued",
        "_marked",
        "_silent",
        "__weakref__",
    )

    _source: bool
    _active: bool
    _need_execute: bool
    _persist: bool

    def __init__(self, equals: Equals | None = None) -> None:
        self._equals = equals
        self._next_value: Any = _MISSING
        self._next_error: BaseException | None = None
        self._children: dict[DerivedAtom, None] = {}
        self._watchers: dict[Callable[[], None], None] = {}
        self._subscribers: dict[_Subscription, None] = {}
        self._need_propagate = False
        self._queued = False
        self._marked = False
        self._silent = False

    def get(self) -> T:
        """Read the value, running an inactive atom once to produce it.

        Raises the stored error, or PendingError while a future is in flight.
        """
        if not self._active:
            _executor.execute(self)
            _lifecycle.disable(self)
        state = self.state
        if state.error is not None:
            raise state.error
        if state.future is not None:
            raise PendingError(state.future)
        return state._value

    def watch(self, watcher: Callable[[], None]) -> Callable[[], None]:
        """Call watcher on every propagation. Returns an unwatch function."""
        if not self._active:
            _lifecycle.request_activate(self)
        self._watchers[watcher] = None

        def unwatch() -> None:
            self._watchers.pop(watcher, None)
            if not self._watchers:
                _lifecycle.disable(self)

        return unwatch

    def subscribe(self, subscriber: Callable[..., None]) -> Callable[[], None]:
        """Call subscriber with each new value. Returns an unsubscribe function.

        The subscriber gets ``(value)`` or ``(value, ctx)`` depending on what
        it accepts; ``ctx.token`` is cancelled right before the next value is
        delivered and on unsubscribe.
        """
        subscription = _Subscription(subscriber)
        state = self.state
        if not self._active:
            _lifecycle.request_activate(self)
        elif state.error is None and state.future is None:
            subscription.deliver(state._value)
        self._subscribers[subscription] = None

        def unsubscribe() -> None:
            self._subscribers.pop(subscription, None)
            subscription.cancel()
            if not self._subscribers:
                _lifecycle.disable(self)

        return unsubscribe

    def _same(self, value: Any) -> bool:
        return _equals(value, self.state._value, self._equals)

    def _commit(self) -> bool:
        """Move the staged value/error into state. False if nothing changed."""
        state = self.state
        state.future = None
        state.error = self._next_error
        state._value = self._next_value
        return True

    def _propagate(self) -> None:
        _executor.propagate(self)


class SourceAtom(Atom[T]):
    """Externally settable state. Always active."""

    __slots__ = ()

    _source = True
    _active = True
    _need_execute = False
    _persist = True

    def __init__(self, value: T, *, equals: Equals | None = None) -> None:
        super().__init__(equals)
        self._next_value = value
        self.state: AtomState[T] = AtomState(value)

    def set(self, value: T | Callable[[T], T]) -> None:
        """Stage a new value, or a function of the currently staged one.

        The change is committed and propagated on the next flush. Setting a
        value equal to the current one does nothing.
        """
        next_value = value(self._next_value) if callable(value) else value
        self._next_value = next_value
        if not self._same(next_value):
            _scheduler.current().enqueue(self)

    def _commit(self) -> bool:
        if self._same(self._next_value):
            return False
        self.state._value = self._next_value
        return True

    def __repr__(self) -> str:
        return f"SourceAtom({self.state.value!r})"


class DerivedAtom(Atom[T]):
    """A computation over other atoms, memoized until a dependency changes."""

    __slots__ = (
        "_init",
        "_with_context",
        "_persist",
        "_active",
        "_need_execute",
        "_generation",
        "_dependencies",
        "_next_dependencies",
        "_context",
        "_token",
    )

    _source = False

    def __init__(self, fn: Getter, *, equals: Equals | None = None, persist: bool = False) -> None:
        super().__init__(equals)
        self._init = fn
        self._with_context = _accepts(fn, 2)
        self._persist = persist
        self._active = False
        self._need_execute = False
        self._generation = 0
        self._dependencies: dict[Atom, None] = {}
        self._next_dependencies: dict[Atom, None] = {}
        self._context: AtomContext | None = None
        self._token: CancelToken | None = None
        self.state: AtomState[T] = AtomState(future=INACTIVE)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def dependencies(self) -> frozenset[Atom]:
        return frozenset(self._dependencies)

    def _call(self, get: Callable, context: AtomContext) -> Any:
        if self._with_context:
            return self._init(get, context)
        return self._init(get)

    def _new_context(self) -> AtomContext:
        self._context = AtomContext(self)
        return self._context

    def _execute(self) -> None:
        _executor.execute(self)

    def _deactivate(self) -> None:
        _lifecycle.deactivate(self)

    def _reset(self) -> None:
        """Back to the inactive state. In-flight work is invalidated."""
        self._generation += 1
        self._active = False
        self._need_execute = False
        self._need_propagate = False
        self._silent = False
        self._context = None
        self._next_value = _MISSING
        self._next_error = None
        self.state.future = INACTIVE
        self.state.error = None
        self.state._value = _MISSING

    def __repr__(self) -> str:
        name = getattr(self._init, "__name__", type(self._init).__name__)
        state = self.state
        if state.status == "success":
            detail = f"value={state.value!r}"
        elif state.status == "error":
            detail = f"error={state.error!r}"
        else:
            detail = state.status
        return f"DerivedAtom({name}, {detail})"


@overload
def atom(init: Getter, *, equals: Equals | None = ..., persist: bool = ...) -> DerivedAtom[Any]: ...
@overload
def atom(init: T, *, equals: Equals | None = ..., persist: bool = ...) -> SourceAtom[T]: ...


def atom(init, *, equals=None, persist=False):
    """Create a DerivedAtom from a callable, otherwise a SourceAtom.

    Usage:
        user_id = atom(1)
        user = atom(lambda get: fetch_user(get(user_id)))
    """
    if callable(init):
        return DerivedAtom(init, equals=equals, persist=persist)
    return SourceAtom(init, equals=equals)


def derived(fn: Getter | None = None, *, equals: Equals | None = None, persist: bool = False):
    """Decorator/factory to create a DerivedAtom from a function.

    Usage:
        count = atom(3)

        @derived
        def doubled(get):
            return get(count) * 2

        @derived(persist=True)
        async def profile(get, ctx):
            return await load_profile(get(user_id))
    """
    if fn is None:
        return lambda f: DerivedAtom(f, equals=equals, persist=persist)
    return DerivedAtom(fn, equals=equals, persist=persist)


def is_atom(value: object) -> bool:
    return isinstance(value, Atom)


def is_source_atom(value: object) -> bool:
    return isinstance(value, SourceAtom)
