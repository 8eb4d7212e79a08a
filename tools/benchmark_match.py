#!/usr/bin/env python3
"""
destruct Match Benchmark Suite
------------------------------
Compares compiled matchers (with and without the optimizer) against
Python's own match statement on the same shapes of data, and measures
how long compiling a pattern takes.

Usage:
    python3 tools/benchmark_match.py --size 10000 --iter 20
"""

import argparse
import gc
import random
import time
from typing import Callable

from destruct import (
    ANY,
    CompilerOptions,
    Literal,
    Mapping,
    Or,
    PatternCache,
    Sequence,
    Splat,
    TypedObject,
    Var,
)
from destruct.compiler.cache import compile_pattern

# --- Utilities ---


class Colors:
    HEADER = "\033[95m"
    GREEN = "\033[92m"  # Fastest
    YELLOW = "\033[93m"  # Comparable (up to 1.5x)
    ORANGE = "\033[38;5;208m"  # Moderately slower (1.5x - 3x)
    RED = "\033[91m"  # Slow (3x+)
    ENDC = "\033[0m"
    BOLD = "\033[1m"


def format_time(seconds: float) -> str:
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.2f} µs"
    elif seconds < 1.0:
        return f"{seconds * 1000:.2f} ms"
    else:
        return f"{seconds:.4f} s"


def run_benchmark(func: Callable, iterations: int) -> float:
    # Warmup
    func()

    # Collect garbage and disable GC during timing for fairness
    gc.collect()
    gc.disable()

    try:
        start = time.perf_counter()
        for _ in range(iterations):
            func()
        end = time.perf_counter()
    finally:
        gc.enable()

    return (end - start) / iterations


def format_ratio(baseline_time: float, challenger_time: float) -> tuple[str, str]:
    """Returns (color, verdict_string) for a timing comparison."""
    ratio = challenger_time / baseline_time
    if ratio <= 1.1:
        return Colors.GREEN, "~same"
    elif ratio <= 1.5:
        return Colors.YELLOW, f"{ratio:.2f}x slower"
    elif ratio <= 3.0:
        return Colors.ORANGE, f"{ratio:.2f}x slower"
    return Colors.RED, f"{ratio:.1f}x slower"


def print_group(title: str, results: list[tuple[str, float]]):
    """
    Print a group of benchmark results sorted fastest to slowest.

    Args:
        title: Section title
        results: List of (name, time) tuples
    """
    print(f"{Colors.BOLD}--- {title} ---{Colors.ENDC}")
    if not results:
        return

    sorted_results = sorted(results, key=lambda x: x[1])
    baseline_time = sorted_results[0][1]
    col_width = max(max(len(name) for name, _ in results) + 2, 28)

    for i, (name, time_val) in enumerate(sorted_results):
        time_str = format_time(time_val)
        if i == 0:
            print(
                f"  {Colors.GREEN}{name:<{col_width}} {time_str:>12}"
                f"  (fastest){Colors.ENDC}"
            )
        else:
            color, verdict = format_ratio(baseline_time, time_val)
            print(
                f"  {color}{name:<{col_width}} {time_str:>12}"
                f"  ({verdict}){Colors.ENDC}"
            )
    print()


# --- Benchmark Implementations ---


class Benchmarks:
    def __init__(self, size: int, iterations: int):
        self.N = size
        self.ITERS = iterations
        self.optimized = PatternCache(CompilerOptions())
        self.unoptimized = PatternCache(CompilerOptions(optimize=False))

        rng = random.Random(42)
        print(f"generating subjects (N={self.N})...", end="", flush=True)
        self.points = [
            rng.choice([(x, x), (x, x + 1), (x, x, x), [x, x], "point"])
            for x in range(self.N)
        ]
        self.events = [
            rng.choice(
                [
                    {"type": "click", "pos": [x, x + 1]},
                    {"type": "key", "code": x},
                    {"type": "scroll"},
                    {"kind": "other"},
                ]
            )
            for x in range(self.N)
        ]
        self.commands = [
            rng.choice([("add", x, 1), ("neg", x), ("sum", *range(x % 6)), "quit"])
            for x in range(self.N)
        ]
        print(" done.\n")

    def compare(self, title: str, pattern, subjects, native: Callable):
        """Time the compiled matchers and a native match function on subjects."""
        results = []
        for name, cache in [
            ("destruct (optimized)", self.optimized),
            ("destruct (unoptimized)", self.unoptimized),
        ]:
            compiled = cache.compile(pattern)

            def run(compiled=compiled):
                for subject in subjects:
                    compiled.match(subject)

            results.append((name, run_benchmark(run, self.ITERS)))

        def run_cached():
            for subject in subjects:
                self.optimized.match(pattern, subject)

        def run_native():
            for subject in subjects:
                native(subject)

        cached_time = run_benchmark(run_cached, self.ITERS)
        results.append(("destruct (cache lookup)", cached_time))
        results.append(("match statement", run_benchmark(run_native, self.ITERS)))
        print_group(title, results)

    def bench_repeated_variable(self):
        pattern = Sequence([Var("x"), Var("x")])

        def native(subject):
            match subject:
                case [x, y] if x == y:
                    return {"x": x}
            return None

        self.compare("Repeated variable [x, x]", pattern, self.points, native)

    def bench_mapping(self):
        pattern = Mapping(
            {"type": Literal("click"), "pos": Sequence([Var("x"), Var("y")])}
        )

        def native(subject):
            match subject:
                case {"type": "click", "pos": [x, y]}:
                    return {"x": x, "y": y}
            return None

        self.compare("Mapping with nested sequence", pattern, self.events, native)

    def bench_alternatives(self):
        pattern = Or(
            [
                Sequence([Literal("add"), Var("a"), Var("b")]),
                Sequence([Literal("neg"), Var("a")]),
                Sequence([Literal("sum"), Splat("rest")]),
            ]
        )

        def native(subject):
            match subject:
                case ("add", a, b):
                    return {"a": a, "b": b}
                case ("neg", a):
                    return {"a": a}
                case ("sum", *rest):
                    return {"rest": rest}
            return None

        self.compare("Alternatives with splat", pattern, self.commands, native)

    def bench_typed(self):
        pattern = TypedObject(tuple) | TypedObject(list)

        def native(subject):
            match subject:
                case tuple() | list():
                    return {}
            return None

        self.compare("Type tests", pattern, self.points, native)

    def bench_compile(self):
        patterns = {
            "Var": lambda: Var("x"),
            "Sequence with splat": lambda: Sequence([Var("a"), Splat("r"), Var("z")]),
            "Nested mapping": lambda: Mapping(
                {"a": Mapping({"b": Sequence([Var("x"), ANY])}), "c": Var("x")}
            ),
        }
        for options_name, options in [
            ("optimized", CompilerOptions()),
            ("unoptimized", CompilerOptions(optimize=False)),
            ("fixpoint", CompilerOptions(fixpoint=True)),
        ]:
            results = [
                (name, run_benchmark(lambda f=make: compile_pattern(f(), options), 50))
                for name, make in patterns.items()
            ]
            print_group(f"Compile time ({options_name})", results)


def main():
    parser = argparse.ArgumentParser(description="destruct Match Benchmark Suite")
    parser.add_argument(
        "--size", type=int, default=10000, help="Number of subjects per benchmark"
    )
    parser.add_argument(
        "--iter", type=int, default=20, help="Number of iterations for timing"
    )
    args = parser.parse_args()

    print(f"{Colors.BOLD}destruct Match Performance Benchmark{Colors.ENDC}")
    print(f"Size: {args.size}, Iterations: {args.iter}")
    print("-" * 60)

    b = Benchmarks(args.size, args.iter)

    print(f"\n{Colors.HEADER}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.HEADER}  MATCH BENCHMARKS{Colors.ENDC}")
    print(f"{Colors.HEADER}{'=' * 60}{Colors.ENDC}\n")

    b.bench_repeated_variable()
    b.bench_mapping()
    b.bench_alternatives()
    b.bench_typed()

    print(f"\n{Colors.HEADER}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.HEADER}  COMPILE BENCHMARKS{Colors.ENDC}")
    print(f"{Colors.HEADER}{'=' * 60}{Colors.ENDC}\n")

    b.bench_compile()

    print(f"\n{Colors.BOLD}Benchmark complete!{Colors.ENDC}")


if __name__ == "__main__":
    main()
