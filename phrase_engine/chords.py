"""Chord symbols and chord sequences used by the accent pass.

The generator does not care about harmony: it only needs to know *where*
chords change and whether a chord carries an interpretation feature such as
an accent or a shot. A :class:`ChordSequence` is therefore a sorted list of
positioned :class:`ChordSymbol` objects plus the bar range and time signature
they belong to.

Lead-sheet text
---------------
:meth:`ChordSequence.from_text` accepts a compact chart format::

    "C7 F7 | Bb7! | F7~ | C7^ G7"

Bars are separated by ``|`` and the chords of a bar are spread evenly over
its natural beats. Suffix markers attach features to a chord:

======  ===================================
``!``   accent (``!!`` for a stronger accent)
``^``   shot (``^^`` for an extended shot)
``_``   hold (``__`` for an extended hold)
``*``   force a crash cymbal on the accent
``~``   never add a crash cymbal
======  ===================================
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterator, List, Optional, Sequence, Tuple

from .errors import UserErrorGenerationError
from .position import Position, TimeSignature
from .ranges import FloatRange, IntRange

__all__ = ["ChordFeature", "ChordSymbol", "ChordSequence"]

_CHORD_NAME = re.compile(r"^[A-G][b#]?[A-Za-z0-9#b+\-()°ø]*(/[A-G][b#]?)?$")
_MARKERS = "!^_*~"


class ChordFeature(Enum):
    ACCENT = "accent"
    ACCENT_STRONGER = "accent_stronger"
    HOLD = "hold"
    SHOT = "shot"
    EXTENDED_HOLD_SHOT = "extended_hold_shot"
    CRASH = "crash"
    NO_CRASH = "no_crash"


@dataclass(frozen=True)
class ChordSymbol:
    """A chord name at a bar/beat position with optional features."""

    position: Position
    name: str
    features: FrozenSet[ChordFeature] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", frozenset(self.features))
        if ChordFeature.CRASH in self.features and ChordFeature.NO_CRASH in self.features:
            raise ValueError(f"Chord {self.name} can't have both CRASH and NO_CRASH")

    @property
    def accent_feature(self) -> Optional[ChordFeature]:
        """``ACCENT_STRONGER``, ``ACCENT`` or ``None``."""

        if ChordFeature.ACCENT_STRONGER in self.features:
            return ChordFeature.ACCENT_STRONGER
        if ChordFeature.ACCENT in self.features:
            return ChordFeature.ACCENT
        return None

    def has_any(self, *features: ChordFeature) -> bool:
        return any(f in self.features for f in features)

    def moved(self, position: Position) -> "ChordSymbol":
        return ChordSymbol(position, self.name, self.features)


class ChordSequence:
    """Chords of a bar range, sorted by position.

    Parameters
    ----------
    bar_range:
        Bars covered by the sequence (absolute song bar indexes).
    time_signature:
        Time signature of those bars.
    chords:
        Chord symbols; each must lie inside ``bar_range`` with a beat valid for
        ``time_signature``.
    """

    def __init__(
        self,
        bar_range: IntRange,
        time_signature: TimeSignature,
        chords: Sequence[ChordSymbol] = (),
    ) -> None:
        for chord in chords:
            if not bar_range.contains(chord.position.bar) or not chord.position.is_valid(time_signature):
                raise ValueError(f"Chord {chord.name} at {chord.position} is outside {bar_range}/{time_signature}")
        self.bar_range = bar_range
        self.time_signature = time_signature
        self._chords: Tuple[ChordSymbol, ...] = tuple(sorted(chords, key=lambda c: c.position))

    def __iter__(self) -> Iterator[ChordSymbol]:
        return iter(self._chords)

    def __len__(self) -> int:
        return len(self._chords)

    def __getitem__(self, index: int) -> ChordSymbol:
        return self._chords[index]

    def is_empty(self) -> bool:
        return not self._chords

    def position_in_beats(self, pos: Position, start_beat: float = 0.0) -> float:
        """Beat position of ``pos`` when ``bar_range.from_`` starts at ``start_beat``."""

        return start_beat + (pos.bar - self.bar_range.from_) * self.time_signature.natural_beats + pos.beat

    def get_beat_range(self, start_beat: float = 0.0) -> FloatRange:
        return FloatRange(start_beat, start_beat + self.bar_range.size() * self.time_signature.natural_beats)

    def subsequence(self, bar_range: IntRange, time_signature: Optional[TimeSignature] = None) -> "ChordSequence":
        """Return the chords of ``bar_range``.

        When no chord sits on the first beat of ``bar_range`` the last chord
        before it (if any) is copied there, without its features, so the
        result always describes the harmony from the first beat.
        """

        inter = self.bar_range.intersection(bar_range)
        if inter is None:
            return ChordSequence(bar_range, time_signature or self.time_signature)
        chords: List[ChordSymbol] = [c for c in self._chords if inter.contains(c.position.bar)]
        start = Position(inter.from_, 0)
        if not chords or chords[0].position != start:
            previous = [c for c in self._chords if c.position < start]
            if previous:
                chords.insert(0, ChordSymbol(start, previous[-1].name))
        return ChordSequence(inter, time_signature or self.time_signature, chords)

    @classmethod
    def from_text(cls, text: str, ts: TimeSignature, start_bar: int = 0) -> "ChordSequence":
        """Parse lead-sheet text (see the module docstring).

        Raises
        ------
        UserErrorGenerationError
            If a chord token can't be understood.
        """

        text = text.strip().strip("|")
        if not text.strip():
            raise UserErrorGenerationError("The chord chart is empty.")
        bars = text.split("|")
        chords: List[ChordSymbol] = []
        for offset, bar_text in enumerate(bars):
            tokens = bar_text.split()
            for i, token in enumerate(tokens):
                name, features = _parse_token(token, start_bar + offset)
                beat = i * ts.natural_beats / len(tokens)
                chords.append(ChordSymbol(Position(start_bar + offset, beat), name, features))
        return cls(IntRange(start_bar, start_bar + len(bars) - 1), ts, chords)

    def __repr__(self) -> str:
        names = " ".join(f"{c.name}{c.position}" for c in self._chords)
        return f"ChordSequence({self.bar_range}, {self.time_signature}, {names})"


def _parse_token(token: str, bar: int) -> Tuple[str, FrozenSet[ChordFeature]]:
    end = len(token)
    while end > 0 and token[end - 1] in _MARKERS:
        end -= 1
    name, markers = token[:end], token[end:]
    if not _CHORD_NAME.match(name):
        raise UserErrorGenerationError(
            f"Bar {bar + 1}: '{token}' is not a chord symbol (expected something like C7, Bbm7 or F#m7b5)."
        )
    features = set()
    bangs = markers.count("!")
    if bangs == 1:
        features.add(ChordFeature.ACCENT)
    elif bangs >= 2:
        features.add(ChordFeature.ACCENT_STRONGER)
    shots = markers.count("^")
    holds = markers.count("_")
    if shots and holds:
        raise UserErrorGenerationError(f"Bar {bar + 1}: '{token}' can't be both a hold and a shot.")
    if shots:
        features.add(ChordFeature.SHOT)
    if holds:
        features.add(ChordFeature.HOLD)
    if shots >= 2 or holds >= 2:
        features.add(ChordFeature.EXTENDED_HOLD_SHOT)
    if "*" in markers and "~" in markers:
        raise UserErrorGenerationError(f"Bar {bar + 1}: '{token}' can't force and forbid a crash.")
    if "*" in markers:
        features.add(ChordFeature.CRASH)
    if "~" in markers:
        features.add(ChordFeature.NO_CRASH)
    return name, frozenset(features)
