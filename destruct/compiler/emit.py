"""
destruct.compiler.emit - Code generation (IR -> Python AST -> function)

The optimized IR is linearized into one Python function

    def _matcher(<subject>, <context>): ...

and compiled with the builtin compile(). Tests in tail position become
guard clauses (`if not cond: return None`) so the common case reads as
straight-line code; tests whose value is stored become if/else blocks.
An equality whose value is returned or stored is wrapped in bool(), so a
user __eq__ returning some other truthy object never leaks out as an
environment-in-progress.

Literals that Python source cannot spell (classes, predicates, compiled
regexes, sentinels, environment shapes) are not serialized: each is stored
once in a side table under a generated name, and the side table is the
function's global namespace.
"""

import ast
import collections.abc
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from destruct.compiler.ir import (
    Assign,
    Equals,
    Ident,
    Literal,
    Namer,
    Prim,
    Seq,
    Test,
    is_primitive,
)
from destruct.runtime.core import fork, take_slice
from destruct.runtime.env import merge_envs
from destruct.runtime.types import CompilerBug

logger = logging.getLogger(__name__)

TEXT_TYPES = (str, bytes, bytearray)
NOT_SEQUENCES = (str, bytes, bytearray, collections.abc.Mapping)


@dataclass
class GeneratedMatcher:
    """
    Attributes:
        fn: The compiled matcher, fn(subject, context) -> raw env-in-progress
        source: Python source of the generated function
        refs: Side table of captured objects, by generated name
    """

    fn: Callable[[Any, Any], Any]
    source: str
    refs: dict[str, Any] = field(default_factory=dict)


def _load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def _store(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Store())


def _call(func: ast.expr, *args: ast.expr) -> ast.Call:
    return ast.Call(func=func, args=list(args), keywords=[])


def _method(obj: ast.expr, name: str, *args: ast.expr) -> ast.Call:
    return _call(ast.Attribute(value=obj, attr=name, ctx=ast.Load()), *args)


def _compare(left: ast.expr, op: ast.cmpop, right: ast.expr) -> ast.Compare:
    return ast.Compare(left=left, ops=[op], comparators=[right])


def _not(expr: ast.expr) -> ast.expr:
    return ast.UnaryOp(op=ast.Not(), operand=expr)


def _return(expr: ast.expr) -> ast.Return:
    return ast.Return(value=expr)


class Emitter:
    """Linearizes one optimized IR tree into a Python function definition."""

    def __init__(self, namer: Namer):
        self.namer = namer
        self.refs: dict[str, Any] = {}
        self._ref_names: dict[int, str] = {}

    # === Captured references ===

    def ref(self, value: Any) -> ast.Name:
        """Name under which value is reachable from the generated code."""
        name = self._ref_names.get(id(value))
        if name is None:
            name = f"_ref{len(self.refs) + 1}"
            self._ref_names[id(value)] = name
            self.refs[name] = value
        return _load(name)

    def literal(self, value: Any) -> ast.expr:
        if is_primitive(value):
            return ast.Constant(value=value)
        return self.ref(value)

    # === Statements ===

    def tail(self, node) -> list[ast.stmt]:
        """Statements that compute node and return its value."""
        if node is None:
            return [_return(ast.Constant(value=None))]
        if isinstance(node, Seq):
            if not node.items:
                return [_return(ast.Constant(value=None))]
            stmts = []
            for item in node.items[:-1]:
                stmts.extend(self.effect(item))
            return stmts + self.tail(node.items[-1])
        if isinstance(node, Test):
            stmts, cond = self.expr(node.cond)
            if node.orelse is None:
                guard = ast.If(
                    test=_not(cond), body=[_return(ast.Constant(value=None))], orelse=[]
                )
                return stmts + [guard] + self.tail(node.then)
            return stmts + [
                ast.If(
                    test=cond,
                    body=self.tail(node.then),
                    orelse=self.tail(node.orelse),
                )
            ]
        if isinstance(node, Assign):
            return self.effect(node) + [_return(_load(node.target.name))]
        stmts, value = self.value(node)
        return stmts + [_return(value)]

    def effect(self, node) -> list[ast.stmt]:
        """Statements that evaluate node for its side effects only."""
        if node is None or isinstance(node, (Ident, Literal)):
            return []
        if isinstance(node, Seq):
            stmts = []
            for item in node.items:
                stmts.extend(self.effect(item))
            return stmts
        if isinstance(node, Assign):
            return self.into(node.expr, node.target.name)
        if isinstance(node, Test):
            stmts, cond = self.expr(node.cond)
            body = self.effect(node.then) or [ast.Pass()]
            orelse = self.effect(node.orelse)
            return stmts + [ast.If(test=cond, body=body, orelse=orelse)]
        if isinstance(node, Prim) and node.op == "env_set":
            env, name, value = node.args
            stmts, env_expr = self.expr(env)
            value_stmts, value_expr = self.expr(value)
            target = ast.Attribute(value=env_expr, attr=name.value, ctx=ast.Store())
            assign = ast.Assign(targets=[target], value=value_expr)
            return stmts + value_stmts + [assign]
        stmts, value = self.expr(node)
        return stmts + [ast.Expr(value=value)]

    def into(self, node, target: str) -> list[ast.stmt]:
        """Statements that store node's value in the variable target."""
        if node is None:
            return [
                ast.Assign(targets=[_store(target)], value=ast.Constant(value=None))
            ]
        if isinstance(node, Seq):
            if not node.items:
                return self.into(None, target)
            stmts = []
            for item in node.items[:-1]:
                stmts.extend(self.effect(item))
            return stmts + self.into(node.items[-1], target)
        if isinstance(node, Test):
            stmts, cond = self.expr(node.cond)
            return stmts + [
                ast.If(
                    test=cond,
                    body=self.into(node.then, target),
                    orelse=self.into(node.orelse, target),
                )
            ]
        if isinstance(node, Assign):
            return self.effect(node) + [
                ast.Assign(targets=[_store(target)], value=_load(node.target.name))
            ]
        stmts, value = self.value(node)
        return stmts + [ast.Assign(targets=[_store(target)], value=value)]

    # === Expressions ===

    def value(self, node) -> tuple[list[ast.stmt], ast.expr]:
        """Like expr, for a value that is returned or stored."""
        stmts, value = self.expr(node)
        if isinstance(node, Equals):
            value = _call(_load("bool"), value)
        return stmts, value

    def expr(self, node) -> tuple[list[ast.stmt], ast.expr]:
        """Return (statements to run first, expression for node's value)."""
        if node is None:
            return [], ast.Constant(value=None)
        if isinstance(node, Ident):
            return [], _load(node.name)
        if isinstance(node, Literal):
            return [], self.literal(node.value)
        if isinstance(node, Equals):
            lhs_stmts, lhs = self.expr(node.lhs)
            rhs_stmts, rhs = self.expr(node.rhs)
            return lhs_stmts + rhs_stmts, _compare(lhs, ast.Eq(), rhs)
        if isinstance(node, Prim):
            stmts = []
            args = []
            for a in node.args:
                a_stmts, a_expr = self.expr(a)
                stmts.extend(a_stmts)
                args.append(a_expr)
            return stmts, self.prim(node, args)
        if isinstance(node, (Seq, Test, Assign)):
            temp = self.namer.fresh("v")
            return self.into(node, temp.name), _load(temp.name)
        raise CompilerBug(f"emit: unexpected IR node {type(node).__name__}: {node!r}")

    def prim(self, node: Prim, args: list[ast.expr]) -> ast.expr:
        op = node.op
        if op == "isinstance":
            return _call(_load("isinstance"), *args)
        if op == "call":
            return _call(args[0], args[1])
        if op == "is_indexable":
            return ast.BoolOp(
                op=ast.And(),
                values=[
                    _call(
                        _load("isinstance"),
                        args[0],
                        self.ref(collections.abc.Sequence),
                    ),
                    _not(_call(_load("isinstance"), args[0], self.ref(TEXT_TYPES))),
                ],
            )
        if op == "is_iterable":
            return ast.BoolOp(
                op=ast.And(),
                values=[
                    _call(
                        _load("isinstance"),
                        args[0],
                        self.ref(collections.abc.Iterable),
                    ),
                    _not(_call(_load("isinstance"), args[0], self.ref(NOT_SEQUENCES))),
                ],
            )
        if op == "is_mapping":
            return _call(
                _load("isinstance"), args[0], self.ref(collections.abc.Mapping)
            )
        if op == "ge":
            return _compare(args[0], ast.GtE(), args[1])
        if op == "is":
            return _compare(args[0], ast.Is(), args[1])
        if op == "is_not":
            return _compare(args[0], ast.IsNot(), args[1])
        if op == "not":
            return _not(args[0])
        if op == "len":
            return _call(_load("len"), args[0])
        if op == "index":
            return ast.Subscript(value=args[0], slice=args[1], ctx=ast.Load())
        if op == "slice":
            return _call(self.ref(take_slice), *args)
        if op == "fork":
            return _call(self.ref(fork), args[0], args[1])
        if op == "getattr":
            return _call(_load("getattr"), *args)
        if op == "lookup":
            return _method(args[0], "get", args[1], args[2])
        if op == "iter":
            return _call(_load("iter"), args[0])
        if op == "next":
            return _call(_load("next"), args[0], args[1])
        if op == "drain":
            return _call(_load("list"), args[0])
        if op == "search":
            return _method(args[0], "search", args[1])
        if op == "group":
            return _method(args[0], "group", args[1])
        if op == "make_env":
            return _call(args[0])
        if op == "env_get":
            return ast.Attribute(value=args[0], attr=node.args[1].value, ctx=ast.Load())
        if op == "merge":
            return _call(self.ref(merge_envs), args[0], args[1])
        if op == "resolve":
            return _call(args[0], args[1], args[2], args[3])
        raise CompilerBug(f"emit: primitive {op} cannot be used as an expression")


def emit(
    node,
    subject: Ident,
    context: Ident,
    namer: Namer,
    name: str = "_matcher",
    label: str = "",
    filename: str = "<destruct>",
    debug: bool = False,
) -> GeneratedMatcher:
    """
    Emit node as the body of a function taking (subject, context) and load it.

    Args:
        node: Optimized (or at least flattened) IR
        subject: Identifier the IR uses for the matched value
        context: Identifier the IR uses for the external context
        namer: The compilation's namer, for emitter temporaries
        name: Name of the generated function
        label: Docstring of the generated function
        filename: Filename recorded in the code object
        debug: Log the generated source
    """
    emitter = Emitter(namer)
    body: list[ast.stmt] = []
    if label:
        body.append(ast.Expr(value=ast.Constant(value=label)))
    body.extend(emitter.tail(node))

    func = ast.FunctionDef(
        name=name,
        args=ast.arguments(
            posonlyargs=[],
            args=[ast.arg(arg=subject.name), ast.arg(arg=context.name)],
            vararg=None,
            kwonlyargs=[],
            kw_defaults=[],
            kwarg=None,
            defaults=[ast.Constant(value=None)],
        ),
        body=body,
        decorator_list=[],
        returns=None,
    )
    mod = ast.Module(body=[func], type_ignores=[])
    ast.fix_missing_locations(mod)
    source = ast.unparse(mod)

    code = compile(mod, filename, "exec")
    namespace = dict(emitter.refs)
    exec(code, namespace)
    if debug:
        logger.debug("Generated matcher %s:\n%s", label or name, source)
    return GeneratedMatcher(fn=namespace[name], source=source, refs=emitter.refs)
