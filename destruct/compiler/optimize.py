"""
destruct.compiler.optimize - IR rewriting passes

flatten() removes the binder applications produced by the builder. The
three optimization passes then run in order:

1. remove_redundant_assignments: copy and constant propagation
2. remove_redundant_tests: drop tests whose outcome is already the result
3. inline_single_use: move single-use pure definitions to their use

Each pass is a function from IR to IR that takes its working state as an
explicit argument, so it can be run alone on a hand-built tree. Each pass
is sound on its own; the order only affects how small the result is.

The passes rely on the builder's invariants: every identifier is assigned
exactly once, and identifiers assigned inside a branch are only used in
that branch.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from destruct.compiler.ir import (
    PRIMS,
    Apply,
    Assign,
    Equals,
    Ident,
    Lambda,
    Literal,
    Namer,
    Prim,
    Seq,
    Test,
    dump,
    is_primitive,
    is_true,
    seq,
    truthy_means_true,
)
from destruct.runtime.types import Atom, CompilerBug

_TEMP_PREFIX = re.compile(r"^_(\D+)\d*$")

# Values whose identity comparison can be decided at compile time
_SINGLETON_TYPES = (bool, type(None), Atom)


def _bug(pass_name: str, node) -> CompilerBug:
    return CompilerBug(
        f"{pass_name}: unexpected IR node {type(node).__name__}: {node!r}"
    )


# === Flatten ===


def _rename(node, mapping: dict):
    if node is None or isinstance(node, Literal):
        return node
    if isinstance(node, Ident):
        return mapping.get(node, node)
    if isinstance(node, Seq):
        return Seq(tuple(_rename(x, mapping) for x in node.items))
    if isinstance(node, Assign):
        target = mapping.get(node.target, node.target)
        return Assign(target, _rename(node.expr, mapping))
    if isinstance(node, Test):
        return Test(
            _rename(node.cond, mapping),
            _rename(node.then, mapping),
            _rename(node.orelse, mapping),
        )
    if isinstance(node, Equals):
        return Equals(_rename(node.lhs, mapping), _rename(node.rhs, mapping))
    if isinstance(node, Prim):
        return Prim(node.op, tuple(_rename(a, mapping) for a in node.args))
    if isinstance(node, Apply):
        return Apply(node.fn, tuple(_rename(a, mapping) for a in node.args))
    raise _bug("rename", node)


def _assigned(node, out: list) -> list:
    """Collect identifiers assigned anywhere in node."""
    if isinstance(node, Seq):
        for x in node.items:
            _assigned(x, out)
    elif isinstance(node, Assign):
        out.append(node.target)
        _assigned(node.expr, out)
    elif isinstance(node, Test):
        _assigned(node.cond, out)
        _assigned(node.then, out)
        _assigned(node.orelse, out)
    return out


def _prefix(ident: Ident) -> str:
    m = _TEMP_PREFIX.match(ident.name)
    return m.group(1) if m else "t"


def flatten(node, namer: Namer):
    """
    Replace every Apply with assignments of its arguments followed by the
    closure body. Parameters and the body's own temporaries are renamed so
    the same closure can be applied any number of times.
    """
    if node is None or isinstance(node, (Ident, Literal)):
        return node
    if isinstance(node, Seq):
        return seq([flatten(x, namer) for x in node.items])
    if isinstance(node, Assign):
        return Assign(node.target, flatten(node.expr, namer))
    if isinstance(node, Test):
        return Test(
            flatten(node.cond, namer),
            flatten(node.then, namer),
            flatten(node.orelse, namer),
        )
    if isinstance(node, Equals):
        return Equals(flatten(node.lhs, namer), flatten(node.rhs, namer))
    if isinstance(node, Prim):
        return Prim(node.op, tuple(flatten(a, namer) for a in node.args))
    if isinstance(node, Apply):
        fn = node.fn
        if not isinstance(fn, Lambda) or len(fn.params) != len(node.args):
            raise _bug("flatten", node)
        local = list(fn.params) + _assigned(fn.body, [])
        mapping = {ident: namer.fresh(_prefix(ident)) for ident in local}
        args = [flatten(a, namer) for a in node.args]
        body = flatten(_rename(fn.body, mapping), namer)
        return seq([Assign(mapping[p], a) for p, a in zip(fn.params, args)] + [body])
    raise _bug("flatten", node)


# === Pass 1: redundant assignments ===


@dataclass
class PropagationContext:
    """
    Attributes:
        subst: Identifier -> the identifier or literal it stands for
        booleans: Identifiers whose truthy value is always True
    """

    subst: dict = field(default_factory=dict)
    booleans: set = field(default_factory=set)

    def branch(self) -> "PropagationContext":
        return PropagationContext(dict(self.subst), set(self.booleans))


def remove_redundant_assignments(node, ctx: Optional[PropagationContext] = None):
    """
    Delete assignments of a bare identifier or literal, substituting the
    right-hand side for the target downstream.

    Inside the "then" arm of a test on an identifier whose truthy value is
    always True, that identifier is replaced by the literal True.
    """
    if ctx is None:
        ctx = PropagationContext()
    if node is None or isinstance(node, Literal):
        return node
    if isinstance(node, Ident):
        return ctx.subst.get(node, node)
    if isinstance(node, Seq):
        return seq([remove_redundant_assignments(x, ctx) for x in node.items])
    if isinstance(node, Assign):
        expr = remove_redundant_assignments(node.expr, ctx)
        if isinstance(expr, (Ident, Literal)):
            ctx.subst[node.target] = expr
            return Seq(())
        if truthy_means_true(expr):
            ctx.booleans.add(node.target)
        return Assign(node.target, expr)
    if isinstance(node, Test):
        cond = remove_redundant_assignments(node.cond, ctx)
        then_ctx = ctx.branch()
        if isinstance(cond, Ident) and cond in ctx.booleans:
            then_ctx.subst[cond] = Literal(True)
        then = remove_redundant_assignments(node.then, then_ctx)
        orelse = remove_redundant_assignments(node.orelse, ctx.branch())
        return Test(cond, then, orelse)
    if isinstance(node, Equals):
        return Equals(
            remove_redundant_assignments(node.lhs, ctx),
            remove_redundant_assignments(node.rhs, ctx),
        )
    if isinstance(node, Prim):
        args = tuple(remove_redundant_assignments(a, ctx) for a in node.args)
        return Prim(node.op, args)
    raise _bug("remove_redundant_assignments", node)


# === Pass 2: redundant tests ===


def _fold_prim(node: Prim):
    if node.op in ("is", "is_not") and all(isinstance(a, Literal) for a in node.args):
        a, b = node.args[0].value, node.args[1].value
        if a is b:
            same = True
        elif isinstance(a, _SINGLETON_TYPES) and isinstance(b, _SINGLETON_TYPES):
            same = False
        else:
            return node
        return Literal(same if node.op == "is" else not same)
    if node.op == "not" and isinstance(node.args[0], Literal):
        if is_primitive(node.args[0].value):
            return Literal(not node.args[0].value)
    return node


def remove_redundant_tests(node):
    """
    Simplify tests whose outcome is already known or already the result:
    - a constant condition selects its arm
    - Test(c, True) with no else is c itself when c's truthy value is True
    - Test(i, i) with no else is i
    """
    if node is None or isinstance(node, (Ident, Literal)):
        return node
    if isinstance(node, Seq):
        return seq([remove_redundant_tests(x) for x in node.items])
    if isinstance(node, Assign):
        return Assign(node.target, remove_redundant_tests(node.expr))
    if isinstance(node, Equals):
        return Equals(
            remove_redundant_tests(node.lhs), remove_redundant_tests(node.rhs)
        )
    if isinstance(node, Prim):
        args = tuple(remove_redundant_tests(a) for a in node.args)
        return _fold_prim(Prim(node.op, args))
    if isinstance(node, Test):
        cond = remove_redundant_tests(node.cond)
        if isinstance(cond, Literal) and is_primitive(cond.value):
            if cond.value:
                return remove_redundant_tests(node.then)
            if node.orelse is None:
                return Literal(None)
            return remove_redundant_tests(node.orelse)
        then = remove_redundant_tests(node.then)
        orelse = remove_redundant_tests(node.orelse)
        if orelse is None:
            if is_true(then) and truthy_means_true(cond):
                return cond
            if isinstance(cond, Ident) and cond == then:
                return cond
        return Test(cond, then, orelse)
    raise _bug("remove_redundant_tests", node)


# === Pass 3: inlining ===


@dataclass
class InlineContext:
    """
    Attributes:
        counts: Identifier -> number of uses
        defs: Identifier -> right-hand side of its assignment
        inlined: Identifiers whose assignment is removed
    """

    counts: dict = field(default_factory=dict)
    defs: dict = field(default_factory=dict)
    inlined: dict = field(default_factory=dict)


def is_pure(node) -> bool:
    """True when node can be evaluated later, or not at all, with no difference."""
    if isinstance(node, (Ident, Literal)):
        return True
    if isinstance(node, Equals):
        return is_pure(node.lhs) and is_pure(node.rhs)
    if isinstance(node, Prim):
        return PRIMS[node.op].pure and all(is_pure(a) for a in node.args)
    return False


def count_refs(node, ctx: InlineContext) -> InlineContext:
    """Count identifier uses and record definitions."""
    if node is None or isinstance(node, Literal):
        pass
    elif isinstance(node, Ident):
        ctx.counts[node] = ctx.counts.get(node, 0) + 1
    elif isinstance(node, Seq):
        for x in node.items:
            count_refs(x, ctx)
    elif isinstance(node, Assign):
        if node.target in ctx.defs:
            raise CompilerBug(f"{node.target!r} assigned twice")
        ctx.defs[node.target] = node.expr
        count_refs(node.expr, ctx)
    elif isinstance(node, Test):
        count_refs(node.cond, ctx)
        count_refs(node.then, ctx)
        count_refs(node.orelse, ctx)
    elif isinstance(node, Equals):
        count_refs(node.lhs, ctx)
        count_refs(node.rhs, ctx)
    elif isinstance(node, Prim):
        for a in node.args:
            count_refs(a, ctx)
    else:
        raise _bug("count_refs", node)
    return ctx


def _inline(node, ctx: InlineContext):
    if node is None or isinstance(node, Literal):
        return node
    if isinstance(node, Ident):
        if node in ctx.inlined:
            return _inline(ctx.inlined[node], ctx)
        return node
    if isinstance(node, Seq):
        return seq([_inline(x, ctx) for x in node.items])
    if isinstance(node, Assign):
        if node.target in ctx.inlined:
            return Seq(())
        return Assign(node.target, _inline(node.expr, ctx))
    if isinstance(node, Test):
        return Test(
            _inline(node.cond, ctx), _inline(node.then, ctx), _inline(node.orelse, ctx)
        )
    if isinstance(node, Equals):
        return Equals(_inline(node.lhs, ctx), _inline(node.rhs, ctx))
    if isinstance(node, Prim):
        return Prim(node.op, tuple(_inline(a, ctx) for a in node.args))
    raise _bug("inline_single_use", node)


def inline_single_use(node, ctx: Optional[InlineContext] = None):
    """
    Substitute the definition of every identifier used exactly once at its
    use site, and drop definitions that are never used. Only pure
    definitions move; identifiers used more than once stay named.
    """
    if ctx is None:
        ctx = count_refs(node, InlineContext())
    for ident, expr in ctx.defs.items():
        if ctx.counts.get(ident, 0) <= 1 and is_pure(expr):
            ctx.inlined[ident] = expr
    return _inline(node, ctx)


# === Driver ===

MAX_ROUNDS = 8


def optimize(node, fixpoint: bool = False):
    """
    Run the three passes in order. With fixpoint=True, repeat them until
    the tree stops changing.
    """
    rounds = MAX_ROUNDS if fixpoint else 1
    before = None
    for _ in range(rounds):
        node = remove_redundant_assignments(node)
        node = remove_redundant_tests(node)
        node = inline_single_use(node)
        if not fixpoint:
            break
        after = dump(node)
        if after == before:
            break
        before = after
    return node
