"""
destruct.runtime.types - Core type definitions for destruct

This module contains the fundamental types shared by the compiler and the
matchers it generates:
- Atom: Interned symbolic constants (usable as literals and mapping keys)
- Pattern and its variants: the tree the compiler consumes
- NOTHING / UNBOUND: sentinels for absent values and unassigned variables
- InvalidPattern, CompilerBug, MatchError: the package's exceptions

Patterns are immutable. They are normally built by a syntax front end, but
they are plain dataclasses and can be constructed by hand:

    Sequence([Literal(1), Splat("middle"), Var("last")])
"""

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Union


class InvalidPattern(ValueError):
    """Raised at compile time when a pattern tree is malformed."""

    pass


class CompilerBug(RuntimeError):
    """Raised when a compiler pass meets an IR shape it does not handle."""

    pass


class MatchError(Exception):
    """Raised when no clause matches in match_first."""

    pass


class _Sentinel:
    __slots__ = ("_name",)

    def __init__(self, name: str):
        self._name = name

    def __repr__(self):
        return self._name

    def __reduce__(self):
        return self._name


# Absent key, missing attribute or exhausted iterator. Never bound.
NOTHING = _Sentinel("NOTHING")

# Environment slot that has not been assigned yet.
UNBOUND = _Sentinel("UNBOUND")


class Atom:
    """
    Interned symbolic constant, like a Clojure keyword or a Ruby symbol.

    Atoms with the same name are the same object, so they compare by
    identity and hash cheaply. They print with a leading colon.
    """

    __slots__ = ("name", "__weakref__")

    _interned: dict[str, "Atom"] = {}
    _lock = threading.Lock()

    def __new__(cls, name: str):
        atom = cls._interned.get(name)
        if atom is not None:
            return atom
        with cls._lock:
            atom = cls._interned.get(name)
            if atom is None:
                atom = super().__new__(cls)
                atom.name = name
                cls._interned[name] = atom
            return atom

    def __repr__(self):
        return f":{self.name}"

    def __reduce__(self):
        return (Atom, (self.name,))


# Values a Literal pattern may hold
LITERAL_TYPES = (type(None), bool, int, float, complex, str, bytes, Atom)


class Pattern:
    """Base class for every pattern variant."""

    __slots__ = ()

    def __or__(self, other):
        return Or([self, other])


@dataclass(frozen=True, eq=False)
class Literal(Pattern):
    """Matches a value equal to `value`."""

    value: Any

    def __repr__(self):
        return f"Literal({self.value!r})"


class Wildcard(Pattern):
    """Matches anything and binds nothing. Use the ANY instance."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "ANY"


ANY = Wildcard()


@dataclass(frozen=True, eq=False)
class Var(Pattern):
    """Matches anything and binds it to `name`."""

    name: str

    def __repr__(self):
        return f"Var({self.name!r})"


@dataclass(frozen=True, eq=False)
class Splat(Pattern):
    """Binds the unmatched middle of a Sequence to `name`."""

    name: str

    def __repr__(self):
        return f"Splat({self.name!r})"


@dataclass(frozen=True, eq=False)
class Let(Pattern):
    """Matches `pattern`, then also binds the whole value to `name`."""

    name: str
    pattern: Pattern

    def __repr__(self):
        return f"Let({self.name!r}, {self.pattern!r})"


@dataclass(frozen=True, eq=False)
class TypedObject(Pattern):
    """
    Matches values accepted by `type_predicate` whose attributes match `fields`.

    Attributes:
        type_predicate: A class or tuple of classes (tested with isinstance),
            or any callable returning a truthy value for acceptable values
        fields: Attribute name -> Pattern
    """

    type_predicate: Union[type, tuple, Callable[[Any], Any]]
    fields: dict[str, Pattern] = field(default_factory=dict)

    def __repr__(self):
        pred = getattr(self.type_predicate, "__name__", repr(self.type_predicate))
        inner = ", ".join(f"{k}={v!r}" for k, v in self.fields.items())
        return f"TypedObject({pred}[{inner}])"


@dataclass(frozen=True, eq=False)
class Mapping(Pattern):
    """Matches mappings whose entries for each key match the given pattern."""

    entries: dict[Any, Pattern]

    def __repr__(self):
        return f"Mapping({self.entries!r})"


@dataclass(frozen=True, eq=False)
class Sequence(Pattern):
    """Matches ordered sequences element by element. May hold one Splat."""

    items: tuple

    def __init__(self, items):
        object.__setattr__(self, "items", tuple(items))

    def __repr__(self):
        return f"Sequence({list(self.items)!r})"

    @property
    def splat_index(self) -> int:
        """Index of the Splat item, or -1 when the sequence is closed."""
        for i, item in enumerate(self.items):
            if isinstance(item, Splat):
                return i
        return -1


@dataclass(frozen=True, eq=False)
class Or(Pattern):
    """Matches if any alternative matches. Nested Ors are flattened."""

    alternatives: tuple

    def __init__(self, alternatives):
        flat = []
        for alt in alternatives:
            if isinstance(alt, Or):
                flat.extend(alt.alternatives)
            else:
                flat.append(alt)
        object.__setattr__(self, "alternatives", tuple(flat))

    def __repr__(self):
        return " | ".join(repr(a) for a in self.alternatives)


@dataclass(frozen=True, eq=False)
class Regex(Pattern):
    """
    Matches text the regular expression finds a match in.

    Each named group becomes a bound variable. The expression may be given
    as a str/bytes source or as a compiled re.Pattern.
    """

    pattern: Any

    def __init__(self, pattern, flags: int = 0):
        if not isinstance(pattern, re.Pattern):
            try:
                pattern = re.compile(pattern, flags)
            except (re.error, TypeError) as e:
                raise InvalidPattern(
                    f"Invalid regular expression {pattern!r}: {e}"
                ) from e
        object.__setattr__(self, "pattern", pattern)

    @property
    def named_captures(self) -> tuple:
        return tuple(self.pattern.groupindex)

    def __repr__(self):
        return f"Regex({self.pattern.pattern!r})"


@dataclass(frozen=True, eq=False)
class DynamicRef(Pattern):
    """
    A sub-pattern resolved at match time by the external resolver.

    Attributes:
        expression: Opaque to the compiler, handed to the resolver
        names: Variables the resolved environment may contribute
    """

    expression: Any
    names: tuple = ()

    def __repr__(self):
        return f"DynamicRef({self.expression!r})"


PATTERN_TYPES = (
    Literal,
    Wildcard,
    Var,
    Splat,
    Let,
    TypedObject,
    Mapping,
    Sequence,
    Or,
    Regex,
    DynamicRef,
)


def var_names(pattern: Pattern) -> list[str]:
    """
    Return every variable occurrence in the pattern, in declaration order.

    Names appear once per occurrence, so the result can be used both for
    the environment shape and for counting repeated bindings.
    """
    if isinstance(pattern, (Var, Splat)):
        return [pattern.name]
    if isinstance(pattern, Let):
        return [pattern.name] + var_names(pattern.pattern)
    if isinstance(pattern, TypedObject):
        return [n for p in pattern.fields.values() for n in var_names(p)]
    if isinstance(pattern, Mapping):
        return [n for p in pattern.entries.values() for n in var_names(p)]
    if isinstance(pattern, Sequence):
        return [n for p in pattern.items for n in var_names(p)]
    if isinstance(pattern, Or):
        return [n for p in pattern.alternatives for n in var_names(p)]
    if isinstance(pattern, Regex):
        return list(pattern.named_captures)
    if isinstance(pattern, DynamicRef):
        return list(pattern.names)
    return []


__all__ = [
    "Atom",
    "Pattern",
    "Literal",
    "Wildcard",
    "ANY",
    "Var",
    "Splat",
    "Let",
    "TypedObject",
    "Mapping",
    "Sequence",
    "Or",
    "Regex",
    "DynamicRef",
    "PATTERN_TYPES",
    "LITERAL_TYPES",
    "NOTHING",
    "UNBOUND",
    "InvalidPattern",
    "CompilerBug",
    "MatchError",
    "var_names",
]
