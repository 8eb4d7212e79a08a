"""
destruct - Structural pattern compiler for Python values

Patterns describe the shape of a value (literals, typed objects, sequences
with splats, mappings, alternatives, regular expressions) and name the
parts to extract. destruct compiles each pattern once into a specialized
Python function and runs it to match values:

    >>> from destruct import Sequence, Literal, Splat, match
    >>> env = match(Sequence([Literal(1), Splat("rest")]), [1, 2, 3])
    >>> env.rest
    [2, 3]
"""

from destruct.compiler.cache import (
    CompiledPattern,
    PatternCache,
    clear_cache,
    compile,
    match,
    match_first,
    resolve_in_context,
)
from destruct.config import CompilerOptions
from destruct.runtime.env import Environment
from destruct.runtime.types import (
    ANY,
    NOTHING,
    UNBOUND,
    Atom,
    CompilerBug,
    DynamicRef,
    InvalidPattern,
    Let,
    Literal,
    Mapping,
    MatchError,
    Or,
    Pattern,
    Regex,
    Sequence,
    Splat,
    TypedObject,
    Var,
    Wildcard,
)

__version__ = "0.1.0"
