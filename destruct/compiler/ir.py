"""
destruct.compiler.ir - Intermediate representation for matchers

A small expression language the builder lowers patterns into. Every node
is an expression with a value:

- Seq(items): evaluate in order, value of the last item
- Assign(target, expr): bind a compiler temporary
- Test(cond, then, orelse): branch on truthiness; a missing orelse means
  the failure value
- Equals(lhs, rhs): ==, coerced to bool wherever its value is kept
- Lambda(params, body) / Apply(fn, args): binding-site closures, removed by
  optimize.flatten before anything else looks at the tree
- Ident(name): a compiler temporary
- Literal(value): a constant
- Prim(op, args): a host operation from PRIMS

The IR is never executed; it is optimized and then emitted as Python.
"""

from dataclasses import dataclass
from typing import Any, Optional

from destruct.runtime.types import CompilerBug


@dataclass(frozen=True)
class Ident:
    name: str

    def __repr__(self):
        return self.name


@dataclass(frozen=True, eq=False)
class Literal:
    value: Any

    def __repr__(self):
        return repr(self.value)


@dataclass(frozen=True, eq=False)
class Seq:
    items: tuple


@dataclass(frozen=True, eq=False)
class Assign:
    target: Ident
    expr: Any


@dataclass(frozen=True, eq=False)
class Test:
    cond: Any
    then: Any
    orelse: Optional[Any] = None


@dataclass(frozen=True, eq=False)
class Equals:
    lhs: Any
    rhs: Any


@dataclass(frozen=True, eq=False)
class Lambda:
    params: tuple
    body: Any


@dataclass(frozen=True, eq=False)
class Apply:
    fn: Lambda
    args: tuple


@dataclass(frozen=True, eq=False)
class Prim:
    op: str
    args: tuple


@dataclass(frozen=True)
class PrimInfo:
    """
    Attributes:
        arity: Number of arguments
        pure: No side effects and no dependence on mutable state, so the
            call may be moved later or dropped when unused
        predicate: The value is always a bool
    """

    arity: int
    pure: bool
    predicate: bool = False


PRIMS: dict[str, PrimInfo] = {
    # type tests
    "isinstance": PrimInfo(2, True, True),
    "call": PrimInfo(2, False),
    "is_indexable": PrimInfo(1, True, True),
    "is_iterable": PrimInfo(1, True, True),
    "is_mapping": PrimInfo(1, True, True),
    # comparisons
    "ge": PrimInfo(2, True, True),
    "is": PrimInfo(2, True, True),
    "is_not": PrimInfo(2, True, True),
    "not": PrimInfo(1, True, True),
    # element access
    "len": PrimInfo(1, True),
    "index": PrimInfo(2, True),
    "slice": PrimInfo(3, True),
    "getattr": PrimInfo(3, True),
    "lookup": PrimInfo(3, True),
    # iterators
    "iter": PrimInfo(1, False),
    "next": PrimInfo(2, False),
    "drain": PrimInfo(1, False),
    "fork": PrimInfo(2, False),
    # regular expressions
    "search": PrimInfo(2, True),
    "group": PrimInfo(2, True),
    # environments
    "make_env": PrimInfo(1, False),
    "env_get": PrimInfo(2, False),
    "env_set": PrimInfo(3, False),
    "merge": PrimInfo(2, False),
    "resolve": PrimInfo(4, False),
}


def prim(op: str, *args) -> Prim:
    info = PRIMS.get(op)
    if info is None:
        raise CompilerBug(f"Unknown primitive: {op}")
    if len(args) != info.arity:
        raise CompilerBug(
            f"Primitive {op} takes {info.arity} arguments, got {len(args)}"
        )
    return Prim(op, tuple(args))


PRIMITIVE_TYPES = (type(None), bool, int, float, complex, str, bytes)


def is_primitive(value: Any) -> bool:
    """Primitive literals are written into emitted code; others are captured."""
    return type(value) in PRIMITIVE_TYPES


def is_true(node) -> bool:
    return isinstance(node, Literal) and node.value is True


def truthy_means_true(node) -> bool:
    """
    True when every truthy value node can produce is True itself.

    Equality tests (emitted as bool(lhs == rhs) when their value is kept)
    and predicate primitives qualify, and so does a test whose arms
    qualify or fail.
    """
    if isinstance(node, Equals):
        return True
    if isinstance(node, Prim):
        return PRIMS[node.op].predicate
    if isinstance(node, Literal):
        return isinstance(node.value, bool) or node.value is None
    if isinstance(node, Test):
        return truthy_means_true(node.then) and (
            node.orelse is None or truthy_means_true(node.orelse)
        )
    if isinstance(node, Seq):
        return bool(node.items) and truthy_means_true(node.items[-1])
    return False


def seq(items) -> Any:
    """
    Build a Seq, flattening nested sequences and dropping items that have
    no effect (idents and literals before the last position).
    """
    flat = []
    for item in items:
        if isinstance(item, Seq):
            flat.extend(item.items)
        else:
            flat.append(item)
    kept = [
        item
        for i, item in enumerate(flat)
        if i == len(flat) - 1 or not isinstance(item, (Ident, Literal))
    ]
    if len(kept) == 1:
        return kept[0]
    return Seq(tuple(kept))


class Namer:
    """Produces unique temporary names for one compilation."""

    def __init__(self):
        self._counter = 0

    def fresh(self, prefix: str = "t") -> Ident:
        self._counter += 1
        return Ident(f"_{prefix}{self._counter}")


def dump(node, indent: int = 0) -> str:
    """Render an IR tree as indented text, for debugging and tests."""
    pad = "  " * indent
    if node is None:
        return f"{pad}<fail>"
    if isinstance(node, (Ident, Literal)):
        return f"{pad}{node!r}"
    if isinstance(node, Seq):
        return "\n".join([f"{pad}seq"] + [dump(x, indent + 1) for x in node.items])
    if isinstance(node, Assign):
        return f"{pad}{node.target!r} =\n{dump(node.expr, indent + 1)}"
    if isinstance(node, Test):
        return "\n".join(
            [
                f"{pad}if",
                dump(node.cond, indent + 1),
                f"{pad}then",
                dump(node.then, indent + 1),
                f"{pad}else",
                dump(node.orelse, indent + 1),
            ]
        )
    if isinstance(node, Equals):
        return "\n".join(
            [f"{pad}==", dump(node.lhs, indent + 1), dump(node.rhs, indent + 1)]
        )
    if isinstance(node, Prim):
        return "\n".join([f"{pad}{node.op}"] + [dump(a, indent + 1) for a in node.args])
    if isinstance(node, Lambda):
        params = ", ".join(repr(p) for p in node.params)
        return f"{pad}lambda {params}:\n{dump(node.body, indent + 1)}"
    if isinstance(node, Apply):
        return "\n".join(
            [f"{pad}apply", dump(node.fn, indent + 1)]
            + [dump(a, indent + 1) for a in node.args]
        )
    raise CompilerBug(f"dump: unexpected {type(node).__name__}")


__all__ = [
    "Ident",
    "Literal",
    "Seq",
    "Assign",
    "Test",
    "Equals",
    "Lambda",
    "Apply",
    "Prim",
    "PRIMS",
    "prim",
    "seq",
    "is_primitive",
    "is_true",
    "truthy_means_true",
    "Namer",
    "dump",
]
