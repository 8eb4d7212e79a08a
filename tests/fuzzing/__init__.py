"""Fuzz testing suite for destruct."""

from .fuzz import FuzzRunner, fitting_value, random_pattern, random_value

__all__ = ["FuzzRunner", "fitting_value", "random_pattern", "random_value"]
