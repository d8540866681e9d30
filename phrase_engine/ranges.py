"""Bar and beat range value types.

Two tiny immutable helpers are shared by every other module:

* :class:`IntRange` describes an inclusive range of bar indexes such as the
  bars covered by a song part (``IntRange(0, 7)`` is eight bars).
* :class:`FloatRange` describes a range of positions expressed in beats. The
  upper bound is treated as exclusive by most callers (a note ending exactly
  on ``to`` is still inside the range) but :meth:`FloatRange.contains` lets
  the caller decide.

Example
-------
>>> IntRange(0, 3).size()
4
>>> FloatRange(0, 16).intersection(FloatRange(8, 24))
FloatRange(from_=8.0, to=16.0)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

__all__ = ["IntRange", "FloatRange", "EMPTY_FLOAT_RANGE"]


@dataclass(frozen=True)
class IntRange:
    """Inclusive ``[from_, to]`` range of integers."""

    from_: int
    to: int

    def __post_init__(self) -> None:
        if self.from_ < 0 or self.to < self.from_:
            raise ValueError(f"Invalid IntRange [{self.from_}, {self.to}]")

    def size(self) -> int:
        return self.to - self.from_ + 1

    def contains(self, value: int) -> bool:
        return self.from_ <= value <= self.to

    def contains_range(self, other: "IntRange") -> bool:
        return self.from_ <= other.from_ and other.to <= self.to

    def intersection(self, other: "IntRange") -> Optional["IntRange"]:
        """Return the overlapping bars or ``None`` when the ranges are disjoint."""

        lo = max(self.from_, other.from_)
        hi = min(self.to, other.to)
        if lo > hi:
            return None
        return IntRange(lo, hi)

    def __iter__(self):
        return iter(range(self.from_, self.to + 1))


@dataclass(frozen=True)
class FloatRange:
    """Range of beat positions ``[from_, to]``.

    An empty range is represented by ``from_ == to == -1`` (see
    :data:`EMPTY_FLOAT_RANGE`) so "no beats" never gets confused with a zero
    length range starting at beat 0.
    """

    from_: float
    to: float

    def __post_init__(self) -> None:
        if self.from_ == -1 and self.to == -1:
            return
        if self.from_ < 0 or self.to < self.from_:
            raise ValueError(f"Invalid FloatRange [{self.from_}, {self.to}]")
        object.__setattr__(self, "from_", float(self.from_))
        object.__setattr__(self, "to", float(self.to))

    @property
    def is_empty(self) -> bool:
        return self.from_ == -1 and self.to == -1

    def size(self) -> float:
        return 0.0 if self.is_empty else self.to - self.from_

    def contains(self, value: float, exclude_upper: bool = False) -> bool:
        """Return ``True`` when ``value`` lies inside the range.

        @param value (float): Position in beats.
        @param exclude_upper (bool): Treat ``to`` as an open bound.
        @returns bool: Whether the position is covered.
        """

        if self.is_empty:
            return False
        if exclude_upper:
            return self.from_ <= value < self.to
        return self.from_ <= value <= self.to

    def contains_range(self, other: "FloatRange", exclude_upper: bool = False) -> bool:
        if self.is_empty or other.is_empty:
            return False
        if exclude_upper:
            return self.from_ <= other.from_ and other.to < self.to
        return self.from_ <= other.from_ and other.to <= self.to

    def intersects(self, other: "FloatRange") -> bool:
        return not self.intersection(other).is_empty

    def intersection(self, other: "FloatRange") -> "FloatRange":
        if self.is_empty or other.is_empty:
            return EMPTY_FLOAT_RANGE
        lo = max(self.from_, other.from_)
        hi = min(self.to, other.to)
        if lo >= hi:
            return EMPTY_FLOAT_RANGE
        return FloatRange(lo, hi)

    def shifted(self, offset: float) -> "FloatRange":
        if self.is_empty:
            return self
        return FloatRange(self.from_ + offset, self.to + offset)


EMPTY_FLOAT_RANGE = FloatRange(-1, -1)
