"""
destruct.runtime.core - Functions generated matchers call at runtime

Categories:
- Slicing: the unmatched middle of an indexable value
- Iterators: independent copies of a one-shot subject for alternatives
"""

import collections.abc
import itertools
from typing import Any, Optional

# Types whose slices are known to be cheap and to keep the type
SLICEABLE = (list, tuple, range)


def take_slice(value: Any, start: int, stop: Optional[int]) -> Any:
    """
    value[start:stop] for an indexable value.

    Sequences that cannot be sliced (collections.deque, or a Sequence whose
    __getitem__ only takes integers) give a list of the same elements.
    """
    if isinstance(value, SLICEABLE):
        return value[start:stop]
    try:
        return value[start:stop]
    except TypeError:
        end = None if stop is None else len(value) + stop
        return list(itertools.islice(value, start, end))


def fork(value: Any, n: int) -> tuple:
    """
    n values that can each be matched on their own.

    An iterator is split with itertools.tee so every copy starts at the
    current position; any other value is shared.
    """
    if isinstance(value, collections.abc.Iterator):
        return itertools.tee(value, n)
    return (value,) * n


__all__ = ["SLICEABLE", "take_slice", "fork"]
