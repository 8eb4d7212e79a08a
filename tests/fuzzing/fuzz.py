"""Fuzzing harness for destruct.

Random patterns over a small variable pool, random values, and values
built to fit a given pattern. fuzz_patterns.py matches them with caches
under every compiler option set and checks the results against a
reference interpreter; FuzzRunner drives it.
"""

import random
import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Optional

from destruct.runtime.types import (
    ANY,
    Let,
    Literal,
    Mapping,
    Or,
    Pattern,
    Sequence,
    Splat,
    TypedObject,
    Var,
)

VAR_NAMES = ["a", "b", "c", "rest"]
KEYS = ["k", "m", "n", "p"]
TYPES = [int, str, dict, (list, tuple)]

# === Values ===


def random_scalar() -> Any:
    """Small ints, short strings, None and booleans.

    Booleans are included because 1 == True: a numeric literal must still
    refuse them while a repeated variable accepts them.
    """
    choice = random.randint(0, 3)
    if choice == 0:
        return random.randint(-3, 3)
    elif choice == 1:
        return random.choice(["", "a", "b", "ab"])
    elif choice == 2:
        return random.choice([True, False])
    return None


def random_sequence(items: list) -> Any:
    """items as a list, a tuple, or a deque (indexable but not sliceable)."""
    kind = random.random()
    if kind < 0.45:
        return items
    elif kind < 0.9:
        return tuple(items)
    return deque(items)


def random_value(depth: int = 2) -> Any:
    """Scalars, sequences and str-keyed dicts nested up to depth."""
    if depth <= 0 or random.random() < 0.5:
        return random_scalar()
    size = random.randint(0, 4)
    if random.random() < 0.7:
        return random_sequence([random_value(depth - 1) for _ in range(size)])
    keys = random.sample(KEYS, k=size)
    return {key: random_value(depth - 1) for key in keys}


# === Patterns ===


def random_literal() -> Literal:
    return Literal(random_scalar())


def random_var() -> Var:
    return Var(random.choice(VAR_NAMES))


def random_pattern(depth: int = 3) -> Pattern:
    """A random valid pattern. TypedObjects carry no fields."""
    if depth <= 0:
        return random.choice([random_literal, lambda: ANY, random_var])()

    choice = random.randint(0, 8)
    if choice == 0:
        return random_literal()
    elif choice == 1:
        return ANY
    elif choice in (2, 3):
        return random_var()
    elif choice in (4, 5):
        items = [random_pattern(depth - 1) for _ in range(random.randint(0, 4))]
        if random.random() < 0.4:
            splat = Splat(random.choice(VAR_NAMES))
            items.insert(random.randint(0, len(items)), splat)
        return Sequence(items)
    elif choice == 6:
        keys = random.sample(KEYS, k=random.randint(0, 3))
        return Mapping({key: random_pattern(depth - 1) for key in keys})
    elif choice == 7:
        return Or([random_pattern(depth - 1) for _ in range(random.randint(1, 3))])
    elif random.random() < 0.5:
        return Let(random.choice(VAR_NAMES), random_pattern(depth - 1))
    return TypedObject(random.choice(TYPES))


def fitting_value(pattern: Pattern, env: dict[str, Any]) -> Any:
    """A value with a good chance of matching pattern.

    env collects the values chosen for variables so that repeated
    variables get the same value.
    """
    if isinstance(pattern, Literal):
        return pattern.value
    if isinstance(pattern, Var):
        if pattern.name not in env:
            env[pattern.name] = random_value(1)
        return env[pattern.name]
    if isinstance(pattern, Let):
        value = fitting_value(pattern.pattern, env)
        env.setdefault(pattern.name, value)
        return value
    if isinstance(pattern, Sequence):
        items = []
        for item in pattern.items:
            if isinstance(item, Splat):
                items.extend(random_scalar() for _ in range(random.randint(0, 2)))
            else:
                items.append(fitting_value(item, env))
        return random_sequence(items)
    if isinstance(pattern, Mapping):
        value = {
            key: fitting_value(sub, env)
            for key, sub in pattern.entries.items()
            # a wildcard entry also matches a missing key
            if not (sub is ANY and random.random() < 0.3)
        }
        if random.random() < 0.3:
            value.setdefault(random.choice(KEYS), random_scalar())
        return value
    if isinstance(pattern, Or):
        return fitting_value(random.choice(pattern.alternatives), env)
    if isinstance(pattern, TypedObject):
        return {int: 1, str: "a", dict: {}}.get(pattern.type_predicate, [])
    return random_value()


# === Results ===


def normalize(env) -> Optional[dict[str, Any]]:
    """Bindings of env as a dict, with bound iterators read into lists."""
    if env is None:
        return None
    return {
        name: list(value) if isinstance(value, Iterator) else value
        for name, value in env.items()
    }


class Disagreement(AssertionError):
    """A matcher returned something other than the expected bindings."""

    def __init__(self, label: str, pattern: Pattern, value: Any, expected, got):
        super().__init__(
            f"{label} matcher disagrees:\n"
            f"  Pattern: {pattern!r}\n"
            f"  Value: {value!r}\n"
            f"  Expected: {expected!r}\n"
            f"  Got: {got!r}"
        )
        self.pattern = pattern
        self.value = value


def check_agreement(pattern: Pattern, value: Any, expected, results: dict):
    """Raise Disagreement for the first result that differs from expected."""
    for label, got in results.items():
        if got != expected:
            raise Disagreement(label, pattern, value, expected, got)


# === Runner ===


@dataclass
class FuzzStats:
    examples: int = 0
    operations: int = 0
    matches: int = 0
    op_counts: dict[str, int] = field(default_factory=dict)

    def record(self, op: str, matched: bool = False):
        self.operations += 1
        self.matches += matched
        self.op_counts[op] = self.op_counts.get(op, 0) + 1


class FuzzRunner:
    """Runs a fuzzer's examples and reports the outcome.

    A fuzzer provides reset() (start an example), step() (one random
    operation, raising AssertionError on a wrong result), check_example()
    and a stats attribute holding a FuzzStats.
    """

    def __init__(self, examples: int = 1000, steps: int = 50, seed=None):
        self.examples = examples
        self.steps = steps
        self.seed = seed if seed is not None else random.randint(0, 2**32)
        random.seed(self.seed)

    def run(self, fuzzer) -> bool:
        """Returns True if every example passed."""
        print(f"Fuzz: {fuzzer.name}")
        print(f"  Examples: {self.examples:,}, steps: {self.steps}")
        print(f"  Seed: {self.seed}")
        print()

        start = last_print = time.time()
        example = step = 0
        try:
            for example in range(self.examples):
                fuzzer.reset()
                for step in range(self.steps):
                    fuzzer.step()
                fuzzer.check_example()

                now = time.time()
                if now - last_print >= 1.0:
                    stats = fuzzer.stats
                    print(
                        f"[{now - start:6.1f}s] "
                        f"ex:{example + 1:>6,} | "
                        f"ops:{stats.operations:>8,} | "
                        f"matches:{stats.matches:>8,}"
                    )
                    last_print = now
        except AssertionError as e:
            print()
            print(f"FAILED at example {example + 1}, step {step + 1}!")
            print(f"  Seed: {self.seed}")
            print(f"  Error: {e}")
            return False
        except KeyboardInterrupt:
            print()
            print(f"Interrupted at example {example + 1}")
            return False

        stats = fuzzer.stats
        print()
        print(
            f"Completed {stats.examples:,} examples, "
            f"{stats.operations:,} operations in {time.time() - start:.1f}s"
        )
        print(f"  Operations: {stats.op_counts}")
        print(f"  Successful matches: {stats.matches:,}")
        print()
        print("  PASSED")
        return True
