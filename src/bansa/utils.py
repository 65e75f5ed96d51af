"""Composition helpers built on the public atom API.

``combine`` reads several atoms independently: it waits for every pending
read at once instead of stopping at the first one. The tree helpers convert
between nested plain data and nested atoms.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from bansa.atom import Atom, DerivedAtom, SourceAtom, _accepts, is_atom
from bansa.errors import _Wrapped


class _Hollow:
    """Stand-in for a value that is not ready yet.

    Absorbs attribute access, calls, indexing and arithmetic so a computation
    can run to completion and reveal all of its pending reads.
    """

    __slots__ = ()

    def __getattr__(self, name: str) -> _Hollow:
        return self

    def __call__(self, *args: Any, **kwargs: Any) -> _Hollow:
        return self

    def __getitem__(self, key: Any) -> _Hollow:
        return self

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "<not ready>"


def _absorb(self: _Hollow, *args: Any) -> _Hollow:
    return self


for _name in (
    "add", "sub", "mul", "truediv", "floordiv", "mod", "pow",
    "radd", "rsub", "rmul", "rtruediv", "rfloordiv", "rmod", "rpow",
    "neg", "pos", "abs",
):
    setattr(_Hollow, f"__{_name}__", _absorb)

HOLLOW = _Hollow()


def shallow_equals(a: Any, b: Any) -> bool:
    """Same type, and items (lists/tuples) or entries (dicts) identical."""
    if type(a) is not type(b):
        return False
    if isinstance(a, (list, tuple)):
        return len(a) == len(b) and all(x is y for x, y in zip(a, b))
    if isinstance(a, dict):
        return len(a) == len(b) and all(k in b and v is b[k] for k, v in a.items())
    return False


def combine(init: Callable[..., Any] | Any) -> DerivedAtom[Any]:
    """Derived atom that waits for all of its pending reads together.

    Reads never interrupt the computation. A read of a pending atom returns a
    placeholder; once the computation finishes, the first errored read is
    raised, otherwise the atom waits until every pending read has settled.

    ``combine(tree)`` with a nested dict/list of atoms yields the same tree
    of values.

    Usage:
        page = combine(lambda get: {"user": get(user), "post": get(post)})
    """
    if not callable(init):
        tree = init
        return combine(lambda get: collect_atoms(tree, get))

    takes_context = _accepts(init, 2)

    def compute(get, ctx):
        futures: list[Any] = []
        errors: list[BaseException] = []

        def read(other: Atom) -> Any:
            state = get(other, False)
            if state.error is not None:
                errors.append(state.error)
            elif state.future is not None:
                futures.append(state.future)
            else:
                return state.value
            return HOLLOW

        try:
            result = init(read, ctx) if takes_context else init(read)
        except Exception:
            # Placeholders may break the computation; the unready reads win.
            if not errors and not futures:
                raise
            result = None
        if errors:
            raise _Wrapped(error=errors[0])
        if futures:
            if len(futures) == 1:
                raise _Wrapped(future=futures[0])
            raise _Wrapped(future=asyncio.gather(*futures, return_exceptions=True))
        return result

    compute.__name__ = getattr(init, "__name__", "combine")
    return DerivedAtom(compute, equals=shallow_equals)


def atomize(tree: Any) -> Any:
    """Turn every leaf of a nested dict/list/tuple into a SourceAtom."""
    if isinstance(tree, dict):
        return {key: atomize(value) for key, value in tree.items()}
    if isinstance(tree, (list, tuple)):
        return [atomize(value) for value in tree]
    return SourceAtom(tree)


def collect_atoms(tree: Any, get: Callable[[Atom], Any] = Atom.get) -> Any:
    """Replace every atom in a nested dict/list/tuple with its value."""
    if is_atom(tree):
        return get(tree)
    if isinstance(tree, dict):
        return {key: collect_atoms(value, get) for key, value in tree.items()}
    if isinstance(tree, (list, tuple)):
        return [collect_atoms(value, get) for value in tree]
    return tree


def set_atoms(tree: Any, values: Any) -> None:
    """Write a (partial) value tree into the source atoms of an atomized tree.

    Keys missing from ``values`` are left alone; derived atoms are skipped.
    """
    if is_atom(tree):
        if isinstance(tree, SourceAtom):
            tree.set(values)
    elif isinstance(tree, dict):
        for key, value in values.items():
            set_atoms(tree[key], value)
    elif isinstance(tree, (list, tuple)):
        for index, value in enumerate(values):
            set_atoms(tree[index], value)
