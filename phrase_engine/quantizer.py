"""Snap bar/beat positions onto musical grids.

The :class:`Quantizer` is a plain, caller-owned object: there is no global
instance and no hidden preference store. Code that needs quantization creates
one (or receives one) and passes it along.

Algorithm
---------
For a fixed grid the beat is split into its integer part ``beat_int`` and the
fractional part ``beat_dec``. Consecutive grid points ``[lower, upper]``
bracketing ``beat_dec`` are located and the fraction moves towards the nearer
one (ties go up). With a strength of ``1`` the move always reaches the grid
point. Smaller strengths ("iterative quantize") move the fraction by at most
``(upper - lower) / 2 * strength`` and only snap when the result lands within
``ROUND_BEAT_WINDOW`` of the point.

When ``beat_int + beat_dec`` no longer fits in the bar the position carries to
beat 0 of the next bar, unless that bar is past ``max_bar_index``. In that case
the result is clamped to the last grid point of the current bar.

The ``HALF_BAR`` grid only knows two points, ``0`` and the half-bar beat, and
applies the same carry/clamp policy. ``OFF`` is the identity.

Example
-------
>>> from phrase_engine.position import FOUR_FOUR, Position
>>> Quantizer().quantize(Quantization.HALF_BEAT, Position(2, 0.6), FOUR_FOUR, 8)
Position(bar=2, beat=0.5)
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, Optional, Tuple

from .position import FOUR_FOUR, THREE_FOUR, Position, TimeSignature

__all__ = [
    "Quantization",
    "Quantizer",
    "default_quantization",
    "ROUND_BEAT_WINDOW",
    "DEFAULT_ITERATIVE_STRENGTH",
]

# Fractions closer than this to a grid point are snapped exactly.
ROUND_BEAT_WINDOW = 0.01
DEFAULT_ITERATIVE_STRENGTH = 0.15


class Quantization(Enum):
    """Named quantization grids."""

    OFF = "off"
    HALF_BAR = "half_bar"
    BEAT = "beat"
    HALF_BEAT = "half_beat"
    ONE_THIRD_BEAT = "one_third_beat"
    ONE_QUARTER_BEAT = "one_quarter_beat"
    ONE_SIXTH_BEAT = "one_sixth_beat"

    @property
    def points(self) -> Tuple[float, ...]:
        """Grid points within one beat, ``0`` and ``1`` included.

        ``OFF`` and ``HALF_BAR`` return an empty tuple because they are not
        defined per beat.
        """

        return _GRID_POINTS[self]

    def is_valid_point(self, beat: float) -> bool:
        """Return ``True`` when the fractional part of ``beat`` is on the grid."""

        if self is Quantization.OFF:
            return True
        if self is Quantization.HALF_BAR:
            raise ValueError("HALF_BAR grid points depend on the time signature")
        fraction = beat - math.floor(beat)
        return any(math.isclose(fraction, p, abs_tol=1e-6) for p in self.points)


_GRID_POINTS: Dict[Quantization, Tuple[float, ...]] = {
    Quantization.OFF: (),
    Quantization.HALF_BAR: (),
    Quantization.BEAT: (0.0, 1.0),
    Quantization.HALF_BEAT: (0.0, 0.5, 1.0),
    Quantization.ONE_THIRD_BEAT: (0.0, 1 / 3, 2 / 3, 1.0),
    Quantization.ONE_QUARTER_BEAT: (0.0, 0.25, 0.5, 0.75, 1.0),
    Quantization.ONE_SIXTH_BEAT: (0.0, 1 / 6, 1 / 3, 0.5, 2 / 3, 5 / 6, 1.0),
}


def default_quantization(ts: TimeSignature) -> Quantization:
    """Return the grid usually appropriate for ``ts``."""

    if ts in (THREE_FOUR, FOUR_FOUR):
        return Quantization.HALF_BEAT
    return Quantization.BEAT


class Quantizer:
    """Quantize positions with an optional strength.

    Parameters
    ----------
    strength:
        Default strength in ``(0, 1]`` used by :meth:`quantize`.
    iterative_strength:
        Strength used by :meth:`quantize_iteratively`, typically small so
        repeated calls pull notes gradually towards the grid.
    """

    def __init__(
        self,
        strength: float = 1.0,
        iterative_strength: float = DEFAULT_ITERATIVE_STRENGTH,
    ) -> None:
        _check_strength(strength)
        _check_strength(iterative_strength)
        self.strength = strength
        self.iterative_strength = iterative_strength

    def quantize(
        self,
        grid: Quantization,
        pos: Position,
        ts: TimeSignature,
        max_bar_index: int,
        strength: Optional[float] = None,
    ) -> Position:
        """Return ``pos`` snapped onto ``grid``.

        Raises
        ------
        ValueError
            If ``pos.beat`` is not valid for ``ts``, ``pos.bar`` exceeds
            ``max_bar_index`` or ``strength`` is outside ``(0, 1]``.
        """

        strength = self.strength if strength is None else strength
        _check_strength(strength)
        if not pos.is_valid(ts):
            raise ValueError(f"Beat {pos.beat} is not valid for time signature {ts}")
        if pos.bar > max_bar_index:
            raise ValueError(f"Bar {pos.bar} exceeds max_bar_index {max_bar_index}")

        if grid is Quantization.OFF:
            return pos
        if grid is Quantization.HALF_BAR:
            return _quantize_half_bar(pos, ts, max_bar_index)
        return _quantize_fixed(pos, ts, max_bar_index, strength, grid.points)

    def quantize_iteratively(
        self, grid: Quantization, pos: Position, ts: TimeSignature, max_bar_index: int
    ) -> Position:
        """Move ``pos`` a small step towards ``grid`` using ``iterative_strength``."""

        return self.quantize(grid, pos, ts, max_bar_index, self.iterative_strength)

    @staticmethod
    def quantize_beat(grid: Quantization, beat_pos: float) -> float:
        """Snap a flat beat position to the nearest grid point.

        ``OFF`` and ``HALF_BAR`` leave the value untouched since there is no
        bar context to work with.
        """

        if beat_pos < 0:
            raise ValueError(f"beat_pos must be >= 0, got {beat_pos}")
        if grid in (Quantization.OFF, Quantization.HALF_BAR):
            return beat_pos
        lower, upper, beat_int = _bracket(grid.points, beat_pos)
        fraction = beat_pos - beat_int
        if fraction < (lower + upper) / 2:
            return beat_int + lower
        return beat_int + upper

    @staticmethod
    def quantize_next(grid: Quantization, beat_pos: float) -> float:
        """Return the first grid point at or after ``beat_pos``."""

        if beat_pos < 0:
            raise ValueError(f"beat_pos must be >= 0, got {beat_pos}")
        if grid in (Quantization.OFF, Quantization.HALF_BAR):
            return beat_pos
        lower, upper, beat_int = _bracket(grid.points, beat_pos)
        if beat_pos - beat_int == lower:
            return beat_int + lower
        return beat_int + upper

    @staticmethod
    def quantize_previous(grid: Quantization, beat_pos: float) -> float:
        """Return the last grid point at or before ``beat_pos``."""

        if beat_pos < 0:
            raise ValueError(f"beat_pos must be >= 0, got {beat_pos}")
        if grid in (Quantization.OFF, Quantization.HALF_BAR):
            return beat_pos
        lower, _upper, beat_int = _bracket(grid.points, beat_pos)
        return beat_int + lower


def _check_strength(strength: float) -> None:
    if not 0 < strength <= 1:
        raise ValueError(f"Quantize strength must be in (0, 1], got {strength}")


def _bracket(points: Tuple[float, ...], beat_pos: float) -> Tuple[float, float, int]:
    """Return ``(lower, upper, beat_int)`` with ``lower <= fraction < upper``."""

    beat_int = math.floor(beat_pos)
    fraction = beat_pos - beat_int
    for lower, upper in zip(points, points[1:]):
        if lower <= fraction < upper:
            return lower, upper, beat_int
    # fraction is always < 1 so this is unreachable for well formed grids
    raise RuntimeError(f"No grid interval found for fraction {fraction}")


def _quantize_half_bar(pos: Position, ts: TimeSignature, max_bar_index: int) -> Position:
    half = ts.half_bar_beat(False)
    if pos.beat < half / 2:
        return Position(pos.bar, 0)
    if pos.beat < 3 * half / 2:
        return Position(pos.bar, half)
    if pos.bar < max_bar_index:
        return Position(pos.bar + 1, 0)
    return Position(pos.bar, half)


def _quantize_fixed(
    pos: Position,
    ts: TimeSignature,
    max_bar_index: int,
    strength: float,
    points: Tuple[float, ...],
) -> Position:
    beat_int = math.floor(pos.beat)
    fraction = pos.beat - beat_int

    for lower, upper in zip(points, points[1:]):
        if fraction == lower or fraction == upper:
            break
        if fraction < upper:
            to_upper = upper - fraction
            to_lower = fraction - lower
            step = (upper - lower) / 2 * strength
            if to_lower < to_upper:
                fraction -= step
                if fraction - lower <= ROUND_BEAT_WINDOW:
                    fraction = lower
            else:
                fraction += step
                if upper - fraction <= ROUND_BEAT_WINDOW:
                    fraction = upper
            break

    beat = beat_int + fraction
    if ts.is_valid_beat(beat):
        return Position(pos.bar, beat)
    if pos.bar + 1 <= max_bar_index:
        return Position(pos.bar + 1, 0)
    # Can't carry: stay on the last grid point of the current bar
    last = [p for p in points if ts.is_valid_beat(beat_int + p)][-1]
    return Position(pos.bar, beat_int + last)
