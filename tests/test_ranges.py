"""Tests for the bar and beat range value types."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine.ranges import EMPTY_FLOAT_RANGE, FloatRange, IntRange  # noqa: E402


def test_int_range_is_inclusive():
    """``IntRange(0, 3)`` covers four bars including both bounds."""

    rng = IntRange(0, 3)
    assert rng.size() == 4
    assert rng.contains(0) and rng.contains(3)
    assert not rng.contains(4)
    assert list(rng) == [0, 1, 2, 3]


def test_int_range_intersection():
    """Disjoint ranges intersect to ``None``."""

    assert IntRange(0, 7).intersection(IntRange(4, 10)) == IntRange(4, 7)
    assert IntRange(0, 3).intersection(IntRange(4, 10)) is None
    assert IntRange(0, 7).contains_range(IntRange(2, 5))


def test_int_range_rejects_invalid_bounds():
    """Negative or reversed bounds raise ``ValueError``."""

    with pytest.raises(ValueError):
        IntRange(-1, 3)
    with pytest.raises(ValueError):
        IntRange(4, 3)


def test_float_range_contains_upper_bound_optionally():
    """The upper bound can be treated as open."""

    rng = FloatRange(0, 4)
    assert rng.contains(4)
    assert not rng.contains(4, exclude_upper=True)
    assert rng.contains(0, exclude_upper=True)


def test_float_range_intersection_and_empty():
    """Touching ranges have an empty intersection."""

    assert FloatRange(0, 16).intersection(FloatRange(8, 24)) == FloatRange(8, 16)
    assert FloatRange(0, 8).intersection(FloatRange(8, 16)).is_empty
    assert not FloatRange(0, 8).intersects(FloatRange(8, 16))
    assert EMPTY_FLOAT_RANGE.size() == 0
    assert not EMPTY_FLOAT_RANGE.contains(0)


def test_float_range_shifted():
    assert FloatRange(2, 6).shifted(4) == FloatRange(6, 10)
    assert EMPTY_FLOAT_RANGE.shifted(4).is_empty
