"""
destruct.compiler.validate - Structural checks on pattern trees

Patterns are built outside the compiler, so the tree is checked once before
lowering. Every problem is a construction error: validate() raises
InvalidPattern and compilation stops.
"""

import keyword
import math

from destruct.runtime.env import Environment
from destruct.runtime.types import (
    LITERAL_TYPES,
    Atom,
    DynamicRef,
    InvalidPattern,
    Let,
    Literal,
    Mapping,
    Or,
    Pattern,
    Regex,
    Sequence,
    Splat,
    TypedObject,
    Var,
    Wildcard,
)


def check_var_name(name) -> None:
    """Variable names become environment attributes and must be usable as such."""
    if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
        raise InvalidPattern(f"Invalid variable name: {name!r}")
    if name.startswith("_") or hasattr(Environment, name):
        raise InvalidPattern(f"Reserved variable name: {name!r}")


def validate(pattern, in_sequence: bool = False) -> None:
    """
    Validate a pattern tree, raising InvalidPattern on the first problem.

    Args:
        pattern: The pattern to check
        in_sequence: True when pattern is a direct item of a Sequence
            (the only place a Splat may appear)
    """
    if not isinstance(pattern, Pattern):
        raise InvalidPattern(f"Not a pattern: {pattern!r}")

    if isinstance(pattern, Literal):
        value = pattern.value
        if not isinstance(value, LITERAL_TYPES):
            raise InvalidPattern(
                f"Unsupported literal {value!r} of type {type(value).__name__}"
            )
        if isinstance(value, float) and math.isnan(value):
            raise InvalidPattern("NaN literal can never match")
    elif isinstance(pattern, Wildcard):
        pass
    elif isinstance(pattern, Splat):
        if not in_sequence:
            raise InvalidPattern(f"Splat outside of a sequence pattern: {pattern!r}")
        check_var_name(pattern.name)
    elif isinstance(pattern, Var):
        check_var_name(pattern.name)
    elif isinstance(pattern, Let):
        check_var_name(pattern.name)
        validate(pattern.pattern)
    elif isinstance(pattern, TypedObject):
        pred = pattern.type_predicate
        if not (isinstance(pred, (type, tuple)) or callable(pred)):
            raise InvalidPattern(f"Type predicate must be a type or callable: {pred!r}")
        if isinstance(pred, tuple) and not all(isinstance(t, type) for t in pred):
            raise InvalidPattern(f"Type predicate tuple must hold types: {pred!r}")
        for name, sub in pattern.fields.items():
            if not isinstance(name, str) or not name.isidentifier():
                raise InvalidPattern(f"Invalid field name {name!r} in {pattern!r}")
            validate(sub)
    elif isinstance(pattern, Mapping):
        for key, sub in pattern.entries.items():
            if not isinstance(key, (str, Atom)):
                raise InvalidPattern(
                    f"Mapping pattern keys must be str or Atom, got {key!r}"
                )
            validate(sub)
    elif isinstance(pattern, Sequence):
        splats = [p for p in pattern.items if isinstance(p, Splat)]
        if len(splats) > 1:
            raise InvalidPattern(
                f"A sequence pattern cannot have more than one splat: {pattern!r}"
            )
        for item in pattern.items:
            validate(item, in_sequence=True)
    elif isinstance(pattern, Or):
        if not pattern.alternatives:
            raise InvalidPattern("Or pattern needs at least one alternative")
        for alt in pattern.alternatives:
            validate(alt)
    elif isinstance(pattern, Regex):
        for name in pattern.named_captures:
            check_var_name(name)
    elif isinstance(pattern, DynamicRef):
        for name in pattern.names:
            check_var_name(name)
    else:
        raise InvalidPattern(f"Unsupported pattern type: {type(pattern).__name__}")
