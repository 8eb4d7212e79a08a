"""
destruct.compiler.cache - Compiled-pattern cache and the public match API

This module handles:
- The compilation pipeline: validate -> build -> flatten -> optimize -> emit
- CompiledPattern, the loaded matcher plus what is needed to interpret
  its result
- PatternCache, which compiles each pattern object at most once
- A process-wide default cache behind compile(), match() and match_first()

Cache entries are keyed by pattern identity, never evicted, and hold a
reference to the pattern so its id cannot be reused while cached.
"""

import builtins
import functools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from destruct.compiler.builder import build
from destruct.compiler.emit import emit
from destruct.compiler.optimize import flatten, optimize
from destruct.compiler.validate import validate
from destruct.config import CompilerOptions
from destruct.runtime.env import Environment, finish
from destruct.runtime.types import MatchError, Pattern

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class CompiledPattern:
    """
    A pattern compiled to a Python function.

    Attributes:
        pattern: The source pattern
        fn: Generated matcher, fn(subject, context) -> raw env-in-progress
        var_names: Variables of the pattern, in first-occurrence order
        env_class: Environment shape of successful matches
        source: Python source of fn
        refs: Objects captured by fn, by the name it uses for them
    """

    pattern: Pattern
    fn: Callable[[Any, Any], Any]
    var_names: tuple
    env_class: type
    source: str
    refs: dict[str, Any] = field(default_factory=dict)

    def match(self, subject: Any, context: Any = None) -> Optional[Environment]:
        """Match subject, returning the bound environment or None."""
        return finish(self.fn(subject, context), self.env_class)

    def show_code(self) -> str:
        return self.source

    def __repr__(self):
        return f"<CompiledPattern {self.pattern!r}>"


def compile_pattern(
    pattern: Pattern,
    options: Optional[CompilerOptions] = None,
    resolver: Optional[Callable] = None,
) -> CompiledPattern:
    """
    Compile one pattern, bypassing any cache.

    Args:
        pattern: The pattern tree
        options: Compiler options (defaults to CompilerOptions())
        resolver: Capability called for DynamicRef nodes at match time

    Raises:
        InvalidPattern: The pattern is malformed
    """
    if options is None:
        options = CompilerOptions()

    validate(pattern)
    builder, tree = build(pattern, resolver)
    logger.debug(
        "Compiling %r (variables: %s)", pattern, ", ".join(builder.var_names) or "-"
    )

    tree = flatten(tree, builder.namer)
    if options.optimize:
        tree = optimize(tree, fixpoint=options.fixpoint)

    generated = emit(
        tree,
        builder.subject,
        builder.context,
        builder.namer,
        label=f"Matcher for: {pattern!r}",
        filename=options.filename,
        debug=options.debug,
    )
    return CompiledPattern(
        pattern=pattern,
        fn=generated.fn,
        var_names=builder.var_names,
        env_class=builder.env_class,
        source=generated.source,
        refs=generated.refs,
    )


def resolve_in_context(
    expression: Any, context: Any, subject: Any, cache: Optional["PatternCache"] = None
) -> Any:
    """
    Default resolver for DynamicRef nodes.

    The expression is evaluated against the context: callables are called
    with it, strings are evaluated as Python expressions with the context
    mapping as namespace, anything else stands for itself. A resulting
    Pattern is matched against the subject (through cache, or the default
    cache); any other value must equal the subject.

    String expressions run with the full builtins available, so they can
    do anything Python code can. Only use them with trusted pattern
    sources; pass a callable or a custom resolver otherwise.

    Returns:
        An environment, True (matched, nothing bound) or None
    """
    if callable(expression):
        value = expression(context)
    elif isinstance(expression, str):
        namespace = dict(context) if context is not None else {}
        value = eval(expression, {"__builtins__": builtins}, namespace)
    else:
        value = expression

    if isinstance(value, Pattern):
        if cache is None:
            cache = _default_cache
        return cache.match(value, subject, context)
    return True if value == subject else None


class PatternCache:
    """
    Compiles patterns on first use and remembers the result.

    Lookups of completed entries take no lock. Inserts are double-checked
    under a lock so each pattern object is compiled exactly once. The lock
    is shared by all entries: first uses of different patterns compile one
    at a time.
    """

    def __init__(
        self,
        options: Optional[CompilerOptions] = None,
        resolver: Optional[Callable] = None,
    ):
        self.options = options if options is not None else CompilerOptions()
        if resolver is None:
            resolver = functools.partial(resolve_in_context, cache=self)
        self.resolver = resolver
        self._entries: dict[int, tuple[Pattern, CompiledPattern]] = {}
        self._lock = threading.RLock()

    def compile(self, pattern: Union[Pattern, CompiledPattern]) -> CompiledPattern:
        """Return the compiled form of pattern, compiling it on first use."""
        if isinstance(pattern, CompiledPattern):
            return pattern

        entry = self._entries.get(id(pattern))
        if entry is not None and entry[0] is pattern:
            return entry[1]

        with self._lock:
            entry = self._entries.get(id(pattern))
            if entry is not None and entry[0] is pattern:
                return entry[1]
            compiled = compile_pattern(pattern, self.options, self.resolver)
            self._entries[id(pattern)] = (pattern, compiled)
            return compiled

    def match(
        self,
        pattern: Union[Pattern, CompiledPattern],
        subject: Any,
        context: Any = None,
    ) -> Optional[Environment]:
        return self.compile(pattern).match(subject, context)

    def match_first(
        self,
        subject: Any,
        clauses: Iterable[tuple[Any, Callable[..., Any]]],
        context: Any = None,
    ) -> Any:
        """
        Try (pattern, handler) clauses in order.

        The first clause whose pattern matches has its handler called with
        the bound variables as keyword arguments; its return value is
        returned.

        Raises:
            MatchError: No clause matched
        """
        for pattern, handler in clauses:
            env = self.match(pattern, subject, context)
            if env is not None:
                return handler(**env.to_dict())
        raise MatchError(f"No clause matched {subject!r}")

    def clear(self) -> None:
        """Forget every compiled pattern (useful for testing)."""
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, pattern):
        entry = self._entries.get(id(pattern))
        return entry is not None and entry[0] is pattern


_default_cache = PatternCache(CompilerOptions.from_env())


def default_cache() -> PatternCache:
    return _default_cache


def compile(pattern: Union[Pattern, CompiledPattern]) -> CompiledPattern:
    """Compile pattern through the default cache."""
    return _default_cache.compile(pattern)


def match(
    pattern: Union[Pattern, CompiledPattern], subject: Any, context: Any = None
) -> Optional[Environment]:
    """Match subject against pattern using the default cache."""
    return _default_cache.match(pattern, subject, context)


def match_first(
    subject: Any, clauses: Iterable[tuple[Any, Callable[..., Any]]], context: Any = None
) -> Any:
    return _default_cache.match_first(subject, clauses, context)


def clear_cache() -> None:
    """Clear the default cache."""
    _default_cache.clear()
