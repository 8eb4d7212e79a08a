"""
destruct.compiler - The pattern compiler

Phases:
1. Validate (validate.py): reject malformed pattern trees
2. Build (builder.py): Pattern -> IR
3. Flatten and optimize (optimize.py): IR -> smaller IR
4. Emit (emit.py): IR -> Python AST -> function (via Python's compile())

cache.py ties the phases together and memoizes the result per pattern.
"""

from destruct.compiler.builder import MatcherBuilder, build
from destruct.compiler.cache import (
    CompiledPattern,
    PatternCache,
    clear_cache,
    compile,
    compile_pattern,
    default_cache,
    match,
    match_first,
    resolve_in_context,
)
from destruct.compiler.emit import GeneratedMatcher, emit
from destruct.compiler.optimize import (
    flatten,
    inline_single_use,
    optimize,
    remove_redundant_assignments,
    remove_redundant_tests,
)
from destruct.compiler.validate import validate
