"""
destruct.runtime - Types the compiler and the generated matchers share

Submodules:
- types: Pattern tree, Atom, sentinels and exceptions
- env: Fixed-shape binding environments and the merge protocol
- core: Helpers the generated matchers call (slicing, iterator forks)

Generated matchers only depend on this package, never on the compiler.
"""

from destruct.runtime.core import fork, take_slice

from destruct.runtime.env import (
    FAILED,
    NOT_YET_BOUND,
    Bound,
    Environment,
    Failed,
    MatchState,
    NotYetBound,
    finish,
    make_env_class,
    match_state,
    merge_envs,
)
from destruct.runtime.types import (
    ANY,
    LITERAL_TYPES,
    NOTHING,
    PATTERN_TYPES,
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
    var_names,
)
