"""Tests for the caller-owned ``Quantizer``.

Covers full-strength snapping, the carry into the next bar, the clamp on the
last allowed bar, partial strengths and the flat beat helpers.
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine.position import FOUR_FOUR, SIX_EIGHT, THREE_FOUR, Position, TimeSignature  # noqa: E402
from phrase_engine.quantizer import Quantization, Quantizer, default_quantization  # noqa: E402


def test_half_beat_snaps_to_nearest_point():
    """``(2, 0.6)`` on a half-beat grid lands on ``(2, 0.5)``."""

    q = Quantizer()
    assert q.quantize(Quantization.HALF_BEAT, Position(2, 0.6), FOUR_FOUR, 8) == Position(2, 0.5)
    assert q.quantize(Quantization.HALF_BEAT, Position(2, 0.9), FOUR_FOUR, 8) == Position(2, 1.0)


def test_ties_round_up():
    """A fraction half way between two points moves to the upper one."""

    q = Quantizer()
    assert q.quantize(Quantization.HALF_BEAT, Position(0, 1.25), FOUR_FOUR, 8) == Position(0, 1.5)


def test_carry_into_next_bar():
    """Rounding past the end of the bar moves to beat 0 of the next bar."""

    q = Quantizer()
    assert q.quantize(Quantization.HALF_BEAT, Position(2, 3.9), FOUR_FOUR, 3) == Position(3, 0)


def test_clamp_on_last_bar():
    """Without a next bar the position stays on the last grid point."""

    q = Quantizer()
    assert q.quantize(Quantization.HALF_BEAT, Position(2, 3.9), FOUR_FOUR, 2) == Position(2, 3.5)
    assert q.quantize(Quantization.BEAT, Position(2, 3.9), FOUR_FOUR, 2) == Position(2, 3.0)


def test_clamp_in_fractional_bar():
    """In ``7/8`` (3.5 beats) the clamp never produces an invalid beat."""

    ts = TimeSignature(7, 8)
    q = Quantizer()
    result = q.quantize(Quantization.HALF_BEAT, Position(0, 3.4), ts, 0)
    assert result.is_valid(ts)
    assert result == Position(0, 3.0)


def test_half_bar_grid():
    """``HALF_BAR`` only knows beat 0 and the half-bar beat."""

    q = Quantizer()
    assert q.quantize(Quantization.HALF_BAR, Position(1, 0.9), FOUR_FOUR, 4) == Position(1, 0)
    assert q.quantize(Quantization.HALF_BAR, Position(1, 2.7), FOUR_FOUR, 4) == Position(1, 2)
    assert q.quantize(Quantization.HALF_BAR, Position(1, 3.2), FOUR_FOUR, 4) == Position(2, 0)
    assert q.quantize(Quantization.HALF_BAR, Position(4, 3.2), FOUR_FOUR, 4) == Position(4, 2)


def test_off_is_identity():
    pos = Position(1, 1.37)
    assert Quantizer().quantize(Quantization.OFF, pos, FOUR_FOUR, 4) == pos


def test_triplet_grid():
    q = Quantizer()
    result = q.quantize(Quantization.ONE_THIRD_BEAT, Position(0, 1.7), FOUR_FOUR, 4)
    assert math.isclose(result.beat, 1 + 2 / 3)


def test_partial_strength_moves_part_of_the_way():
    """Strength ``0.15`` pulls a note 0.0375 beat towards the half-beat grid."""

    q = Quantizer()
    result = q.quantize_iteratively(Quantization.HALF_BEAT, Position(0, 0.3), FOUR_FOUR, 4)
    assert result.bar == 0
    assert math.isclose(result.beat, 0.3375)


def test_partial_strength_snaps_inside_window():
    """Landing close enough to a grid point snaps exactly onto it."""

    q = Quantizer(strength=0.5)
    assert q.quantize(Quantization.HALF_BEAT, Position(0, 0.4), FOUR_FOUR, 4) == Position(0, 0.5)


def test_invalid_arguments_raise():
    """Invalid beat, bar or strength raise ``ValueError``."""

    q = Quantizer()
    with pytest.raises(ValueError):
        q.quantize(Quantization.BEAT, Position(0, 3.5), THREE_FOUR, 4)
    with pytest.raises(ValueError):
        q.quantize(Quantization.BEAT, Position(5, 0), FOUR_FOUR, 4)
    with pytest.raises(ValueError):
        q.quantize(Quantization.BEAT, Position(0, 0.2), FOUR_FOUR, 4, strength=0)
    with pytest.raises(ValueError):
        Quantizer(strength=1.5)


def test_flat_beat_helpers():
    """``quantize_beat``, ``quantize_next`` and ``quantize_previous``."""

    assert Quantizer.quantize_beat(Quantization.HALF_BEAT, 5.3) == 5.5
    assert Quantizer.quantize_beat(Quantization.BEAT, 5.3) == 5.0
    assert Quantizer.quantize_next(Quantization.BEAT, 5.3) == 6.0
    assert Quantizer.quantize_next(Quantization.BEAT, 5.0) == 5.0
    assert Quantizer.quantize_previous(Quantization.HALF_BEAT, 5.3) == 5.0
    assert Quantizer.quantize_beat(Quantization.OFF, 5.3) == 5.3
    with pytest.raises(ValueError):
        Quantizer.quantize_beat(Quantization.BEAT, -1)


def test_grid_points_and_defaults():
    assert Quantization.HALF_BEAT.is_valid_point(2.5)
    assert not Quantization.HALF_BEAT.is_valid_point(2.25)
    assert Quantization.ONE_THIRD_BEAT.is_valid_point(1 + 1 / 3)
    assert default_quantization(FOUR_FOUR) is Quantization.HALF_BEAT
    assert default_quantization(SIX_EIGHT) is Quantization.BEAT


GRIDS = [g for g in Quantization if g is not Quantization.OFF]


@pytest.mark.parametrize("ts", [FOUR_FOUR, THREE_FOUR, SIX_EIGHT, TimeSignature(7, 8)], ids=str)
@pytest.mark.parametrize("grid", GRIDS, ids=lambda g: g.value)
def test_results_are_grid_points_and_stable(grid, ts):
    """Quantizing twice changes nothing and never leaves ``[bar, max_bar_index]``."""

    q = Quantizer()
    max_bar = 3
    for bar in range(max_bar + 1):
        for i in range(int(ts.natural_beats / 0.013) + 1):
            beat = i * 0.013
            if not ts.is_valid_beat(beat):
                continue
            result = q.quantize(grid, Position(bar, beat), ts, max_bar)
            assert bar <= result.bar <= max_bar
            assert result.is_valid(ts)
            if grid is Quantization.HALF_BAR:
                assert result.beat in (0, ts.half_bar_beat(False))
            else:
                assert grid.is_valid_point(result.beat)
            assert q.quantize(grid, result, ts, max_bar) == result


@pytest.mark.parametrize("grid", GRIDS[1:], ids=lambda g: g.value)
def test_flat_helpers_on_every_grid(grid):
    half_gap = max(b - a for a, b in zip(grid.points, grid.points[1:])) / 2
    for i in range(800):
        beat = i * 0.011
        snapped = Quantizer.quantize_beat(grid, beat)
        assert grid.is_valid_point(snapped)
        assert abs(snapped - beat) <= half_gap + 1e-9
        assert Quantizer.quantize_beat(grid, snapped) == pytest.approx(snapped)
        assert Quantizer.quantize_previous(grid, beat) <= beat <= Quantizer.quantize_next(grid, beat)
