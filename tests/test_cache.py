"""
Test suite for the pattern cache and the public match API.

This module tests:
- Identity keying and compile-once behavior of PatternCache
- Concurrent first use of one pattern, and of different patterns
- match_first dispatch
- The module-level API backed by the default cache
- The default DynamicRef resolver
- Compiler options and debug logging
"""

import threading
import time
import unittest
from unittest import mock

import destruct
from destruct.compiler import cache as cache_module
from destruct.compiler.cache import (
    CompiledPattern,
    PatternCache,
    compile_pattern,
    resolve_in_context,
)
from destruct.config import CompilerOptions
from destruct.runtime.types import (
    ANY,
    InvalidPattern,
    Literal,
    MatchError,
    Sequence,
    Splat,
    Var,
)


class TestPatternCache(unittest.TestCase):
    """Test compile-once caching."""

    def setUp(self):
        self.cache = PatternCache()

    def test_compiles_once(self):
        pattern = Sequence([Var("a"), Var("b")])
        first = self.cache.compile(pattern)
        self.assertIs(self.cache.compile(pattern), first)
        self.assertIn(pattern, self.cache)
        self.assertEqual(len(self.cache), 1)

    def test_keyed_by_identity(self):
        """Test that structurally identical patterns get separate entries."""
        p1, p2 = Var("x"), Var("x")
        self.assertIsNot(self.cache.compile(p1), self.cache.compile(p2))
        self.assertEqual(len(self.cache), 2)

    def test_compiled_pattern_passthrough(self):
        compiled = compile_pattern(Var("x"))
        self.assertIs(self.cache.compile(compiled), compiled)
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.cache.match(compiled, 5).x, 5)

    def test_clear(self):
        pattern = Var("x")
        self.cache.compile(pattern)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertNotIn(pattern, self.cache)

    def test_invalid_pattern_not_cached(self):
        pattern = Sequence([Splat("a"), Splat("b")])
        with self.assertRaises(InvalidPattern):
            self.cache.compile(pattern)
        self.assertNotIn(pattern, self.cache)

    def test_compile_pattern_result(self):
        compiled = compile_pattern(Sequence([Var("a"), Splat("rest")]))
        self.assertIsInstance(compiled, CompiledPattern)
        self.assertEqual(compiled.var_names, ("a", "rest"))
        self.assertEqual(compiled.show_code(), compiled.source)
        self.assertEqual(compiled.match([1, 2, 3]).to_dict(), {"a": 1, "rest": [2, 3]})
        self.assertIsNone(compiled.match([]))

    def test_concurrent_first_use(self):
        """Test that threads racing on a new pattern compile it exactly once."""
        pattern = Sequence([Var("a"), Var("b"), Splat("rest")])
        n_threads = 8
        barrier = threading.Barrier(n_threads)
        results = []

        def worker():
            barrier.wait()
            results.append(self.cache.compile(pattern))

        with mock.patch.object(
            cache_module, "compile_pattern", wraps=cache_module.compile_pattern
        ) as spy:
            threads = [threading.Thread(target=worker) for _ in range(n_threads)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        self.assertEqual(spy.call_count, 1)
        self.assertEqual(len(results), n_threads)
        self.assertTrue(all(r is results[0] for r in results))

    def test_distinct_patterns_compile_one_at_a_time(self):
        """Test that first uses of different patterns share the cache lock."""
        patterns = [Var("a"), Var("b"), Var("c"), Var("d")]
        barrier = threading.Barrier(len(patterns))
        guard = threading.Lock()
        running = []
        overlap = []
        real_compile = cache_module.compile_pattern

        def slow_compile(*args, **kwargs):
            with guard:
                running.append(None)
                overlap.append(len(running))
            time.sleep(0.01)
            with guard:
                running.pop()
            return real_compile(*args, **kwargs)

        def worker(pattern):
            barrier.wait()
            self.cache.compile(pattern)

        with mock.patch.object(cache_module, "compile_pattern", slow_compile):
            threads = [threading.Thread(target=worker, args=(p,)) for p in patterns]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        self.assertEqual(len(overlap), len(patterns))
        self.assertEqual(max(overlap), 1)
        self.assertEqual(len(self.cache), len(patterns))


class TestMatchFirst(unittest.TestCase):
    """Test clause dispatch."""

    def setUp(self):
        self.cache = PatternCache()
        self.clauses = [
            (Sequence([Literal("add"), Var("a"), Var("b")]), lambda a, b: a + b),
            (Sequence([Literal("neg"), Var("a")]), lambda a: -a),
            (Literal("zero"), lambda: 0),
        ]

    def test_first_matching_clause_wins(self):
        self.assertEqual(self.cache.match_first(("add", 2, 3), self.clauses), 5)
        self.assertEqual(self.cache.match_first(["neg", 4], self.clauses), -4)
        self.assertEqual(self.cache.match_first("zero", self.clauses), 0)

    def test_order_matters(self):
        clauses = [(ANY, lambda: "any"), (Literal(1), lambda: "one")]
        self.assertEqual(self.cache.match_first(1, clauses), "any")

    def test_no_clause_matches(self):
        with self.assertRaises(MatchError):
            self.cache.match_first(("mul", 2, 3), self.clauses)


class TestDefaultCache(unittest.TestCase):
    """Test the module-level API."""

    def tearDown(self):
        destruct.clear_cache()

    def test_compile_uses_default_cache(self):
        pattern = Var("x")
        compiled = destruct.compile(pattern)
        self.assertIs(destruct.compile(pattern), compiled)
        self.assertIn(pattern, cache_module.default_cache())

    def test_match(self):
        env = destruct.match(Sequence([Var("a"), Var("b")]), (1, 2))
        self.assertEqual(env.to_dict(), {"a": 1, "b": 2})
        self.assertIsNone(destruct.match(Literal(1), 2))

    def test_match_first(self):
        clauses = [(Literal(1), lambda: "one"), (Var("n"), lambda n: n * 2)]
        self.assertEqual(destruct.match_first(1, clauses), "one")
        self.assertEqual(destruct.match_first(4, clauses), 8)

    def test_clear_cache(self):
        pattern = Var("x")
        destruct.compile(pattern)
        destruct.clear_cache()
        self.assertNotIn(pattern, cache_module.default_cache())


class TestResolveInContext(unittest.TestCase):
    """Test the default DynamicRef resolver."""

    def setUp(self):
        self.cache = PatternCache()

    def test_string_expression(self):
        context = {"limit": 3}
        self.assertIs(resolve_in_context("limit", context, 3, self.cache), True)
        self.assertIsNone(resolve_in_context("limit + 1", context, 3, self.cache))

    def test_builtins_available(self):
        result = resolve_in_context("len(items)", {"items": [1, 2]}, 2, self.cache)
        self.assertIs(result, True)

    def test_string_expression_can_import(self):
        """Test that string expressions are not sandboxed."""
        expression = "__import__('math').floor(x)"
        self.assertIs(resolve_in_context(expression, {"x": 2.5}, 2, self.cache), True)

    def test_callable_expression(self):
        result = resolve_in_context(lambda ctx: ctx["want"], {"want": "x"}, "x")
        self.assertIs(result, True)

    def test_plain_value(self):
        self.assertIs(resolve_in_context(5, None, 5, self.cache), True)
        self.assertIsNone(resolve_in_context(5, None, 6, self.cache))

    def test_pattern_result(self):
        """Test that a resolved pattern is matched through the given cache."""
        pattern = Sequence([Var("a"), Splat("rest")])
        env = resolve_in_context(lambda ctx: pattern, None, [1, 2], self.cache)
        self.assertEqual(env.to_dict(), {"a": 1, "rest": [2]})
        self.assertIn(pattern, self.cache)

    def test_empty_cache_is_still_used(self):
        pattern = Var("y")
        resolve_in_context(lambda ctx: pattern, None, 1, self.cache)
        self.assertIn(pattern, self.cache)
        self.assertNotIn(pattern, cache_module.default_cache())


class TestCompilerOptions(unittest.TestCase):
    """Test option parsing and debug output."""

    def test_defaults(self):
        options = CompilerOptions.from_env({})
        self.assertEqual(options, CompilerOptions())
        self.assertTrue(options.optimize)
        self.assertFalse(options.fixpoint)
        self.assertFalse(options.debug)

    def test_from_env(self):
        options = CompilerOptions.from_env(
            {
                "DESTRUCT_OPTIMIZE": "0",
                "DESTRUCT_FIXPOINT": "yes",
                "DESTRUCT_DEBUG": "1",
            }
        )
        self.assertFalse(options.optimize)
        self.assertTrue(options.fixpoint)
        self.assertTrue(options.debug)

    def test_false_spellings(self):
        for value in ["", "0", "false", "No", " off "]:
            with self.subTest(value=value):
                options = CompilerOptions.from_env({"DESTRUCT_OPTIMIZE": value})
                self.assertFalse(options.optimize)

    def test_compile_logs(self):
        with self.assertLogs("destruct.compiler.cache", level="DEBUG") as logs:
            PatternCache().compile(Sequence([Var("a")]))
        self.assertTrue(any("Compiling" in line for line in logs.output))

    def test_debug_logs_source(self):
        """Test that debug mode logs the generated function."""
        cache = PatternCache(CompilerOptions(debug=True))
        with self.assertLogs("destruct.compiler.emit", level="DEBUG") as logs:
            cache.compile(Var("x"))
        self.assertTrue(any("def _matcher" in line for line in logs.output))

    def test_unoptimized_still_matches(self):
        cache = PatternCache(CompilerOptions(optimize=False))
        env = cache.match(Sequence([Var("a"), Var("a")]), [7, 7])
        self.assertEqual(env.a, 7)
        self.assertIsNone(cache.match(Sequence([Var("a"), Var("a")]), [7, 8]))

    def test_filename_recorded(self):
        cache = PatternCache(CompilerOptions(filename="<patterns>"))
        compiled = cache.compile(Var("x"))
        self.assertEqual(compiled.fn.__code__.co_filename, "<patterns>")


if __name__ == "__main__":
    unittest.main()
