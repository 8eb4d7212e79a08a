"""
Test suite for binding environments.

This module tests:
- Environment shapes (make_env_class)
- Mapping-style access to bindings
- Classification of raw match results (match_state, finish)
- The environment merge protocol (merge_envs)
"""

import unittest

from destruct.runtime.env import (
    FAILED,
    NOT_YET_BOUND,
    Bound,
    Environment,
    finish,
    make_env_class,
    match_state,
    merge_envs,
)
from destruct.runtime.types import UNBOUND


class TestEnvironmentShape(unittest.TestCase):
    """Test per-pattern environment classes."""

    def test_shape_is_cached(self):
        """Test that asking for the same names twice returns the same class."""
        self.assertIs(make_env_class(("a", "b")), make_env_class(["a", "b"]))
        self.assertIsNot(make_env_class(("a", "b")), make_env_class(("b", "a")))

    def test_duplicate_names_collapse(self):
        self.assertIs(make_env_class(("a", "b", "a")), make_env_class(("a", "b")))

    def test_fixed_slots(self):
        """Test that only the pattern's variables can be assigned."""
        env = make_env_class(("a",))()
        env.a = 1
        with self.assertRaises(AttributeError):
            env.b = 2

    def test_subclass_of_environment(self):
        cls = make_env_class(("a",))
        self.assertTrue(issubclass(cls, Environment))
        self.assertEqual(cls._fields, ("a",))

    def test_empty_shape(self):
        env = make_env_class(())()
        self.assertEqual(len(env), 0)
        self.assertTrue(env)

    def test_unbound_by_default(self):
        env = make_env_class(("a", "b"))()
        self.assertIs(env.a, UNBOUND)
        self.assertFalse(env.is_bound("a"))

    def test_init_bindings(self):
        cls = make_env_class(("a", "b"))
        env = cls(a=1)
        self.assertEqual(env.a, 1)
        with self.assertRaises(TypeError):
            cls(c=3)


class TestEnvironmentAccess(unittest.TestCase):
    """Test mapping-style helpers."""

    def setUp(self):
        self.env = make_env_class(("a", "b", "c"))(a=1, c=None)

    def test_getitem(self):
        self.assertEqual(self.env["a"], 1)
        self.assertIsNone(self.env["c"])

    def test_getitem_unbound(self):
        with self.assertRaises(KeyError):
            self.env["b"]
        with self.assertRaises(KeyError):
            self.env["missing"]

    def test_contains(self):
        self.assertIn("a", self.env)
        self.assertIn("c", self.env)
        self.assertNotIn("b", self.env)
        self.assertNotIn("missing", self.env)

    def test_iteration_skips_unbound(self):
        self.assertEqual(list(self.env), ["a", "c"])
        self.assertEqual(len(self.env), 2)
        self.assertEqual(self.env.keys(), ["a", "c"])

    def test_get(self):
        self.assertEqual(self.env.get("a"), 1)
        self.assertEqual(self.env.get("b", "default"), "default")

    def test_to_dict(self):
        self.assertEqual(self.env.to_dict(), {"a": 1, "c": None})

    def test_names_includes_unbound(self):
        self.assertEqual(self.env.names, ("a", "b", "c"))

    def test_equality_across_shapes(self):
        """Test that environments compare by their bindings."""
        other = make_env_class(("c", "a"))(a=1, c=None)
        self.assertEqual(self.env, other)
        self.assertNotEqual(self.env, make_env_class(("a",))(a=2))

    def test_repr(self):
        self.assertEqual(repr(self.env), "Env(a=1, c=None)")


class TestMatchState(unittest.TestCase):
    """Test classification of raw environments-in-progress."""

    def test_placeholder(self):
        self.assertIs(match_state(True), NOT_YET_BOUND)

    def test_failure(self):
        for raw in (None, False, 0):
            with self.subTest(raw=raw):
                self.assertIs(match_state(raw), FAILED)

    def test_bound(self):
        env = make_env_class(("a",))(a=1)
        state = match_state(env)
        self.assertIsInstance(state, Bound)
        self.assertIs(state.env, env)

    def test_not_an_environment(self):
        with self.assertRaises(TypeError):
            match_state("something")

    def test_finish(self):
        cls = make_env_class(("a",))
        env = cls(a=1)
        self.assertIs(finish(env, cls), env)
        self.assertIsNone(finish(None, cls))
        self.assertIsNone(finish(False, cls))

        fresh = finish(True, cls)
        self.assertIsInstance(fresh, cls)
        self.assertEqual(len(fresh), 0)


class TestMergeEnvs(unittest.TestCase):
    """Test the environment merge protocol."""

    def setUp(self):
        self.cls = make_env_class(("a", "b"))

    def test_failure_on_either_side(self):
        env = self.cls(a=1)
        self.assertIsNone(merge_envs(None, env))
        self.assertIsNone(merge_envs(env, None))
        self.assertIsNone(merge_envs(env, False))
        self.assertIsNone(merge_envs(True, None))

    def test_placeholder_outer(self):
        inner = self.cls(a=1)
        self.assertIs(merge_envs(True, inner), inner)
        self.assertIs(merge_envs(True, True), True)

    def test_placeholder_inner(self):
        outer = self.cls(a=1)
        self.assertIs(merge_envs(outer, True), outer)

    def test_copies_unbound(self):
        outer = self.cls(a=1)
        result = merge_envs(outer, self.cls(b=2))
        self.assertIs(result, outer)
        self.assertEqual(result.to_dict(), {"a": 1, "b": 2})

    def test_compares_bound(self):
        self.assertIsNotNone(merge_envs(self.cls(a=1), self.cls(a=1, b=2)))
        self.assertIsNone(merge_envs(self.cls(a=1), self.cls(a=2)))

    def test_ignores_unknown_names(self):
        """Test that names outside the outer shape are dropped."""
        outer = self.cls(a=1)
        inner = make_env_class(("a", "z"))(a=1, z=26)
        result = merge_envs(outer, inner)
        self.assertEqual(result.to_dict(), {"a": 1})


if __name__ == "__main__":
    unittest.main()
