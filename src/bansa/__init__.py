"""bansa: incremental computation with async atoms and a garbage-collected graph."""

from importlib.metadata import version as _version

__version__ = _version("bansa")

from bansa._scheduler import (
    Scheduler,
    collect_garbage,
    flush,
    get_pending_count,
    set_scheduler,
)
from bansa.atom import (
    INACTIVE,
    Atom,
    AtomContext,
    AtomState,
    DerivedAtom,
    SourceAtom,
    atom,
    derived,
    is_atom,
    is_source_atom,
)
from bansa.token import CancelToken
from bansa.errors import BansaError, PendingError
from bansa.scope import Scope, create_scope
from bansa.utils import atomize, collect_atoms, combine, set_atoms, shallow_equals
from bansa.action import action, transaction
# textual is not imported here: the binding is opt-in

__all__ = [
    "Atom",
    "SourceAtom",
    "DerivedAtom",
    "AtomState",
    "AtomContext",
    "INACTIVE",
    "atom",
    "derived",
    "is_atom",
    "is_source_atom",
    "CancelToken",
    "BansaError",
    "PendingError",
    "Scope",
    "create_scope",
    "combine",
    "atomize",
    "collect_atoms",
    "set_atoms",
    "shallow_equals",
    "action",
    "transaction",
    "Scheduler",
    "set_scheduler",
    "flush",
    "collect_garbage",
    "get_pending_count",
]
