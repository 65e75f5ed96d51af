"""Scopes: shadow graphs with overridden atoms.

A scope maps atoms to substitutes. Overridden atoms map to their override;
derived atoms map to a memoized copy whose reads go through the scope, so an
override anywhere upstream is seen by everything downstream. Source atoms
without an override anywhere in the scope chain map to themselves.

Scopes never touch the atoms they wrap. A child scope asks its parent for
overrides and builds its own shadow copies on top.

Usage:
    x = atom(0)
    y = atom(lambda get: get(x) + 1)
    scope = create_scope(None, [(x, 100)])

    scope(y).get()  # 101
    y.get()         # 1
"""

from __future__ import annotations

import weakref
from typing import Any, Iterable, Mapping, Union

from bansa.atom import Atom, DerivedAtom, SourceAtom, is_atom

Overrides = Union[Mapping[Atom, Any], Iterable[tuple[Atom, Any]]]


class Scope:
    """Resolver from atoms to their scoped counterparts."""

    def __init__(self, parent: Scope | None = None, overrides: Overrides | None = None) -> None:
        self._parent = parent
        self._overrides: weakref.WeakKeyDictionary[Atom, Atom] = weakref.WeakKeyDictionary()
        # Shadow copies call into their base, so they live as long as the scope.
        self._shadows: dict[Atom, Atom] = {}
        if overrides is not None:
            pairs = overrides.items() if isinstance(overrides, Mapping) else overrides
            for base, value in pairs:
                self._overrides[base] = self(value) if is_atom(value) else SourceAtom(value)

    def __call__(self, base: Atom, strict: bool = False) -> Atom | None:
        """Resolve base in this scope.

        With ``strict``, only explicit overrides (here or in a parent) are
        returned and nothing is created; None means "not overridden".
        """
        scoped = self._overrides.get(base)
        if scoped is not None:
            return scoped
        if strict:
            return self._parent(base, True) if self._parent is not None else None

        scoped = self._shadows.get(base)
        if scoped is None:
            inherited = self._parent(base, True) if self._parent is not None else None
            if inherited is not None:
                scoped = inherited
            elif isinstance(base, DerivedAtom):
                scoped = self._shadow(base)
            else:
                return base
            self._shadows[base] = scoped
        return scoped

    def _shadow(self, base: DerivedAtom) -> DerivedAtom:
        def compute(get, ctx):
            return base._call(lambda other, unwrap=True: get(self(other), unwrap), ctx)

        compute.__name__ = getattr(base._init, "__name__", "compute")
        return DerivedAtom(compute, equals=base._equals, persist=base._persist)

    def __repr__(self) -> str:
        return f"Scope(overrides={len(self._overrides)}, shadows={len(self._shadows)})"


def create_scope(parent: Scope | None = None, overrides: Overrides | None = None) -> Scope:
    """Create a scope, optionally nested in parent, with explicit overrides.

    ``overrides`` is a mapping or an iterable of ``(atom, replacement)``
    pairs. A replacement atom is itself resolved through the new scope; any
    other replacement becomes a fresh SourceAtom holding it.
    """
    return Scope(parent, overrides)
