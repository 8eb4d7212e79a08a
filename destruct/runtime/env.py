"""
destruct.runtime.env - Binding environments produced by a match

An environment maps every variable of one pattern to the value it matched,
or to UNBOUND. Its shape is fixed when the pattern is compiled: each
pattern gets a subclass of Environment whose __slots__ are the pattern's
variable names, so reading and writing a binding is a plain attribute
access.

While a matcher runs, the environment-in-progress is one of:
- True: matched so far, nothing bound yet (no object allocated)
- an Environment instance
- a falsy value: the match failed

match_state() turns that raw value into a MatchState for code that wants
to tell the three cases apart explicitly.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Union

from destruct.runtime.types import UNBOUND

_SHAPES: dict[tuple, type] = {}
_SHAPES_LOCK = threading.Lock()


class Environment:
    """
    Base class for fixed-shape binding environments.

    Subclasses are created by make_env_class(); instantiate those, not this.
    Bindings are available as attributes (env.x), by subscription (env["x"])
    and through the usual mapping-style helpers. Unbound names raise
    KeyError on subscription and read as UNBOUND through attributes.
    """

    __slots__ = ()
    _fields: tuple = ()

    def __init__(self, **bindings):
        for name in self._fields:
            setattr(self, name, UNBOUND)
        for name, value in bindings.items():
            if name not in self._fields:
                raise TypeError(f"{type(self).__name__} has no variable {name!r}")
            setattr(self, name, value)

    def __bool__(self):
        return True

    def __getitem__(self, name: str) -> Any:
        value = getattr(self, name, UNBOUND) if name in self._fields else UNBOUND
        if value is UNBOUND:
            raise KeyError(name)
        return value

    def __contains__(self, name: str) -> bool:
        return self.is_bound(name)

    def __iter__(self) -> Iterator[str]:
        return (name for name in self._fields if getattr(self, name) is not UNBOUND)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __eq__(self, other):
        if isinstance(other, Environment):
            return self.to_dict() == other.to_dict()
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        inner = ", ".join(f"{k}={v!r}" for k, v in self.items())
        return f"Env({inner})"

    @property
    def names(self) -> tuple:
        """All variable names of the shape, bound or not."""
        return self._fields

    def is_bound(self, name: str) -> bool:
        return name in self._fields and getattr(self, name) is not UNBOUND

    def get(self, name: str, default: Any = None) -> Any:
        if self.is_bound(name):
            return getattr(self, name)
        return default

    def keys(self):
        return list(self)

    def items(self):
        return [(name, getattr(self, name)) for name in self]

    def to_dict(self) -> dict[str, Any]:
        """Return the bound variables as a plain dict."""
        return dict(self.items())


def make_env_class(names) -> type:
    """
    Return the Environment subclass for the given variable names.

    Shapes are shared: asking twice for the same names (in the same order)
    returns the same class.
    """
    key = tuple(dict.fromkeys(names))
    cls = _SHAPES.get(key)
    if cls is not None:
        return cls
    with _SHAPES_LOCK:
        cls = _SHAPES.get(key)
        if cls is None:
            cls = type(
                "Env_" + "_".join(key) if key else "Env",
                (Environment,),
                {"__slots__": key, "_fields": key},
            )
            _SHAPES[key] = cls
        return cls


# === Match state ===


class NotYetBound:
    """Matched so far, no environment materialized."""

    __slots__ = ()

    def __repr__(self):
        return "NOT_YET_BOUND"


class Failed:
    """The match failed."""

    __slots__ = ()

    def __repr__(self):
        return "FAILED"


@dataclass(frozen=True)
class Bound:
    """Matched, with a materialized environment."""

    env: Environment


NOT_YET_BOUND = NotYetBound()
FAILED = Failed()

MatchState = Union[NotYetBound, Bound, Failed]


def match_state(raw: Any) -> MatchState:
    """Classify a raw environment-in-progress value."""
    if raw is True:
        return NOT_YET_BOUND
    if isinstance(raw, Environment):
        return Bound(raw)
    if not raw:
        return FAILED
    raise TypeError(f"Not an environment-in-progress: {raw!r}")


def merge_envs(outer: Any, inner: Any) -> Any:
    """
    Merge the environment produced by a sub-match into the enclosing one.

    Both arguments are raw environments-in-progress (True, an Environment
    or a falsy failure). Returns the merged raw value:
    - failure on either side fails
    - a placeholder outer yields inner, a placeholder inner yields outer
    - otherwise every variable bound in inner is copied into outer when
      unbound there, and must be equal when already bound

    Variables of inner that outer's shape does not know are ignored.
    Mutates and returns outer when both are environments.
    """
    state = match_state(inner)
    if isinstance(state, Failed) or not outer:
        return None
    if outer is True:
        return inner
    if isinstance(state, NotYetBound):
        return outer
    fields = outer._fields
    for name, value in state.env.items():
        if name not in fields:
            continue
        current = getattr(outer, name)
        if current is UNBOUND:
            setattr(outer, name, value)
        elif current != value:
            return None
    return outer


def finish(raw: Any, env_class: type) -> Optional[Environment]:
    """Turn a matcher's raw result into the public result (env or None)."""
    state = match_state(raw)
    if isinstance(state, Bound):
        return state.env
    if isinstance(state, NotYetBound):
        return env_class()
    return None


__all__ = [
    "Environment",
    "make_env_class",
    "merge_envs",
    "match_state",
    "finish",
    "MatchState",
    "NotYetBound",
    "Bound",
    "Failed",
    "NOT_YET_BOUND",
    "FAILED",
]
