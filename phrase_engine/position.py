"""Time signatures and bar/beat positions.

All positional math in the engine is expressed in *natural beats*: the beat a
musician taps along with. For simple meters (``4/4``, ``3/4``, ``2/2``) this is
the numerator. Compound meters group eighth notes by three so ``6/8`` has two
natural beats and ``12/8`` has four. Odd eighth meters such as ``7/8`` use
quarter-note beats and therefore end on a fractional beat count (``3.5``).

Design Notes
------------
- :class:`TimeSignature` and :class:`Position` are frozen dataclasses so they
  can be used as dictionary keys and shared freely between song parts.
- ``Position`` only validates what it can check on its own (non-negative bar
  and beat). Checking the beat against a time signature is the caller's job
  via :meth:`Position.is_valid`, which the quantizer uses to reject invalid
  input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict

__all__ = [
    "TimeSignature",
    "Position",
    "TWO_FOUR",
    "THREE_FOUR",
    "FOUR_FOUR",
    "FIVE_FOUR",
    "SIX_FOUR",
    "SEVEN_FOUR",
    "THREE_EIGHT",
    "SIX_EIGHT",
    "NINE_EIGHT",
    "TWELVE_EIGHT",
]

_VALID_LOWER = {2, 4, 8}


@dataclass(frozen=True)
class TimeSignature:
    """Immutable time signature such as ``4/4`` or ``6/8``."""

    upper: int
    lower: int

    def __post_init__(self) -> None:
        if self.upper <= 0 or self.lower not in _VALID_LOWER:
            raise ValueError(
                f"Unsupported time signature {self.upper}/{self.lower}: numerator must be > 0 "
                "and denominator one of 2, 4 or 8"
            )

    @property
    def natural_beats(self) -> float:
        """Number of natural beats in one bar."""

        if self.lower != 8:
            return float(self.upper)
        if self.upper % 3 == 0:
            return float(self.upper // 3)
        return self.upper / 2

    def half_bar_beat(self, swing: bool = False) -> float:
        """Return the beat where the second half of the bar starts.

        @param swing (bool): When ``True`` odd beat counts round the half-bar
            point up to the next whole beat (``3/4`` -> beat 2 instead of 1.5).
        @returns float: Beat offset within the bar.
        """

        half = self.natural_beats / 2
        if swing:
            return float(math.ceil(half))
        return half

    def is_valid_beat(self, beat: float) -> bool:
        return 0 <= beat < self.natural_beats

    @classmethod
    def parse(cls, text: str) -> "TimeSignature":
        """Parse ``"NUM/DEN"`` text, raising ``ValueError`` when malformed."""

        parts = text.strip().split("/")
        if len(parts) != 2:
            raise ValueError("Time signature must be in the form 'numerator/denominator'.")
        try:
            upper = int(parts[0])
            lower = int(parts[1])
        except ValueError as exc:
            raise ValueError(
                "Time signature must contain integer numerator and denominator."
            ) from exc
        return _KNOWN.get((upper, lower)) or cls(upper, lower)

    def __str__(self) -> str:
        return f"{self.upper}/{self.lower}"


TWO_FOUR = TimeSignature(2, 4)
THREE_FOUR = TimeSignature(3, 4)
FOUR_FOUR = TimeSignature(4, 4)
FIVE_FOUR = TimeSignature(5, 4)
SIX_FOUR = TimeSignature(6, 4)
SEVEN_FOUR = TimeSignature(7, 4)
THREE_EIGHT = TimeSignature(3, 8)
SIX_EIGHT = TimeSignature(6, 8)
NINE_EIGHT = TimeSignature(9, 8)
TWELVE_EIGHT = TimeSignature(12, 8)

_KNOWN: Dict[tuple, TimeSignature] = {
    (ts.upper, ts.lower): ts
    for ts in (
        TWO_FOUR,
        THREE_FOUR,
        FOUR_FOUR,
        FIVE_FOUR,
        SIX_FOUR,
        SEVEN_FOUR,
        THREE_EIGHT,
        SIX_EIGHT,
        NINE_EIGHT,
        TWELVE_EIGHT,
    )
}


@dataclass(frozen=True, order=True)
class Position:
    """A ``(bar, beat)`` location, ordered by bar then beat."""

    bar: int
    beat: float = 0.0

    def __post_init__(self) -> None:
        if self.bar < 0 or self.beat < 0:
            raise ValueError(f"Invalid position bar={self.bar} beat={self.beat}")
        object.__setattr__(self, "beat", float(self.beat))

    def is_valid(self, ts: TimeSignature) -> bool:
        return ts.is_valid_beat(self.beat)

    def is_first_bar_beat(self) -> bool:
        return self.beat == 0

    def is_half_bar_beat(self, ts: TimeSignature, swing: bool = False) -> bool:
        return self.beat == ts.half_bar_beat(swing)

    def get_position_in_beats(self, ts: TimeSignature) -> float:
        """Absolute beat position assuming every bar uses ``ts``."""

        return self.bar * ts.natural_beats + self.beat

    def __str__(self) -> str:
        return f"[{self.bar}:{self.beat:g}]"
