"""Align a drums phrase with the accents of a chord sequence.

Chord symbols may carry interpretation features (see
:class:`~phrase_engine.chords.ChordFeature`). This module adjusts a generated
drums phrase so those features are heard:

* **accent**: the chord position gets an accent note (kick, snare...) whose
  velocity stands out from the surrounding notes, possibly with a crash
  cymbal. The cell just before and the cells up to the next beat are cleared
  of accent notes so the accent is not smeared.
* **hold / shot**: after the chord the accent, crash and open hi-hat notes
  are removed for a tempo-dependent number of grid cells (the whole chord
  duration for *extended* holds/shots) so the band "stops" together.

The phrase is viewed through a grid of ``nb_cells_per_beat`` cells per beat.
A note slightly ahead of a cell (within ``pre_cell_window`` beats) belongs to
that cell, so unquantized or humanized notes are handled.

Everything is computed from bar/beat math; the pass never needs to know which
pattern fragment a note came from.
"""

from __future__ import annotations

import logging
import math
import random
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from .chords import ChordFeature, ChordSequence, ChordSymbol
from .phrase import NoteEvent, Phrase
from .rhythm import HoldShotMode

__all__ = ["DrumKit", "DEFAULT_KIT", "AccentProcessor", "TEMPO_MIN", "TEMPO_MAX"]

TEMPO_MIN = 10
TEMPO_MAX = 400

ACCENT_THRESHOLD_VEL_MIN = 40
ACCENT_NOTE_DURATION = 0.1
NOTE_WINDOW_SIZE = 10

CRASH_THRESHOLD_MIN = 0.2
CRASH_THRESHOLD_NORMAL = 0.6
CRASH_THRESHOLD_MAX = 0.8
SLIDING_WINDOW_CRASH_COUNT_NORMAL = 1
SLIDING_WINDOW_BEAT_SIZE = 4


@dataclass(frozen=True)
class DrumKit:
    """Pitches playing a role in the accent pass."""

    accent_pitches: FrozenSet[int] = frozenset({35, 36, 38, 40})
    crash_pitches: Tuple[int, ...] = (49, 57, 55)
    open_hihat_pitches: FrozenSet[int] = frozenset({46})
    default_accent_pitch: int = 36


DEFAULT_KIT = DrumKit()


def _tempo_factor(tempo: int, slow: float, medium_slow: float, medium: float, medium_fast: float, fast: float) -> float:
    if tempo <= 75:
        return slow
    if tempo <= 105:
        return medium_slow
    if tempo <= 135:
        return medium
    if tempo <= 180:
        return medium_fast
    return fast


class AccentProcessor:
    """Apply accent and hold/shot features of ``chords`` to drums phrases.

    Parameters
    ----------
    chords:
        Chords of one song part. Must not be empty.
    start_beat:
        Absolute beat position of the first bar of ``chords``.
    tempo:
        Tempo in BPM (10-400), used to size hold/shot silences.
    rng:
        Random source for the crash cymbal decisions.
    nb_cells_per_beat:
        ``3`` for ternary feels, ``4`` for binary ones.
    pre_cell_window:
        Notes up to this many beats before a cell belong to it. Must be in
        ``[0, 1 / nb_cells_per_beat)``.
    """

    def __init__(
        self,
        chords: ChordSequence,
        start_beat: float,
        tempo: int,
        rng: Optional[random.Random] = None,
        nb_cells_per_beat: int = 3,
        pre_cell_window: float = 0.1,
    ) -> None:
        if chords.is_empty():
            raise ValueError("The chord sequence must not be empty")
        if not TEMPO_MIN <= tempo <= TEMPO_MAX:
            raise ValueError(f"tempo must be between {TEMPO_MIN} and {TEMPO_MAX}, got {tempo}")
        if nb_cells_per_beat not in (3, 4):
            raise ValueError(f"nb_cells_per_beat must be 3 or 4, got {nb_cells_per_beat}")
        if not 0 <= pre_cell_window < 1 / nb_cells_per_beat:
            raise ValueError(f"pre_cell_window out of range: {pre_cell_window}")
        self.chords = chords
        self.start_beat = start_beat
        self.tempo = tempo
        self.rng = rng or random.Random()
        self.nb_cells_per_beat = nb_cells_per_beat
        self.pre_cell_window = pre_cell_window
        self.beat_range = chords.get_beat_range(start_beat)
        self.last_cell = int(round(self.beat_range.size() * nb_cells_per_beat)) - 1
        self._crash_window: Deque[int] = deque()

    # ------------------------------------------------------------------
    # Grid helpers
    # ------------------------------------------------------------------
    def cell_of(self, position: float) -> Optional[int]:
        """Grid cell of ``position``, ``None`` when outside the sequence."""

        rel = position - self.start_beat + self.pre_cell_window
        cell = int(math.floor(rel * self.nb_cells_per_beat + 1e-9))
        if cell < 0 or cell > self.last_cell:
            return None
        return cell

    def chord_cell(self, position: float) -> int:
        """Grid cell of a chord position, the last cell for a chord near the end.

        A chord less than ``pre_cell_window`` before the end of the sequence
        would fall past the grid; it is kept on the last cell.
        """

        if not self.beat_range.contains(position, exclude_upper=True):
            raise RuntimeError(f"Chord position {position} is outside {self.beat_range}")
        rel = position - self.start_beat + self.pre_cell_window
        cell = int(math.floor(rel * self.nb_cells_per_beat + 1e-9))
        return max(0, min(cell, self.last_cell))

    def _cell_start(self, cell: int) -> float:
        return self.start_beat + cell / self.nb_cells_per_beat

    def _items(self, phrase: Phrase, pitches, first: int, last: int, min_velocity: int = 0) -> List[Tuple[int, NoteEvent]]:
        result = []
        for handle, note in phrase.items():
            if note.pitch not in pitches or note.velocity < min_velocity:
                continue
            cell = self.cell_of(note.position)
            if cell is not None and first <= cell <= last:
                result.append((handle, note))
        return result

    def _remove(self, phrase: Phrase, pitches, first: int, last: int, min_velocity: int = 0) -> int:
        items = self._items(phrase, pitches, first, last, min_velocity)
        for handle, _ in items:
            phrase.remove(handle)
        return len(items)

    def _around_notes(self, phrase: Phrase, pitches, cell: int, nb_notes: int, min_velocity: int = 0) -> List[NoteEvent]:
        """Up to ``nb_notes`` notes at or before ``cell``, completed with later ones."""

        notes = [n for _, n in self._items(phrase, pitches, 0, cell, min_velocity)]
        if len(notes) < nb_notes:
            after = [n for _, n in self._items(phrase, pitches, cell + 1, self.last_cell, min_velocity)]
            notes.extend(after[: nb_notes - len(notes)])
        return notes[-nb_notes:] if len(notes) > nb_notes else notes

    def _chord_context(self, index: int) -> Tuple[ChordSymbol, float, int, int, int]:
        """Return ``(chord, position, cell, previous_cell, next_cell)``.

        ``previous_cell`` is ``-1`` for the first chord and ``next_cell`` is
        ``last_cell + 1`` for the last one.
        """

        chord = self.chords[index]
        pos = self.chords.position_in_beats(chord.position, self.start_beat)
        cell = self.chord_cell(pos)
        prev_cell = -1
        if index > 0:
            prev_pos = self.chords.position_in_beats(self.chords[index - 1].position, self.start_beat)
            prev_cell = self.chord_cell(prev_pos)
        next_cell = self.last_cell + 1
        if index + 1 < len(self.chords):
            next_pos = self.chords.position_in_beats(self.chords[index + 1].position, self.start_beat)
            next_cell = self.chord_cell(next_pos)
        return chord, pos, cell, prev_cell, next_cell

    # ------------------------------------------------------------------
    # Accents
    # ------------------------------------------------------------------
    def process_accent_drums(self, phrase: Phrase, kit: DrumKit = DEFAULT_KIT) -> None:
        """Add or strengthen the accent notes of accented chords."""

        if phrase.is_empty():
            logging.debug("process_accent_drums(): empty phrase")
            return
        # Velocity/pitch statistics use the phrase as it was before any change
        reference = phrase.shifted_copy(0)

        for index in range(len(self.chords)):
            chord, pos, cell, prev_cell, next_cell = self._chord_context(index)
            feature = chord.accent_feature
            if feature is None:
                continue

            existing = self._items(phrase, kit.accent_pitches, cell, cell, ACCENT_THRESHOLD_VEL_MIN)
            duration = min(ACCENT_NOTE_DURATION, self._room_after(pos))
            if existing:
                handle, old = existing[-1]
                velocity = self._existing_accent_velocity(chord, old)
                accent = NoteEvent(old.pitch, velocity, old.position, duration, phrase.channel)
                phrase.replace(handle, accent)
            else:
                pitch = self._accent_pitch(reference, kit, cell)
                velocities = [
                    n.velocity
                    for n in self._around_notes(reference, kit.accent_pitches, cell, NOTE_WINDOW_SIZE, ACCENT_THRESHOLD_VEL_MIN)
                    if n.pitch == pitch
                ]
                velocity = velocity_from_stats(velocities, feature, 55)
                accent = NoteEvent(pitch, velocity, pos, duration, phrase.channel)
                phrase.add(accent)

            if chord.has_any(ChordFeature.NO_CRASH):
                self._remove(phrase, kit.crash_pitches, cell, cell)
            elif self._need_crash(cell, chord):
                self._add_crash(phrase, reference, kit, cell, accent.position, chord)

            # Clean the cell just before, unless it belongs to the previous chord
            if cell - 1 > prev_cell:
                self._remove(phrase, kit.accent_pitches, cell - 1, cell - 1, ACCENT_THRESHOLD_VEL_MIN)
                self._remove(phrase, kit.open_hihat_pitches, cell - 1, cell - 1)

            # Clean the cells up to the next beat
            next_beat_cell = (cell // self.nb_cells_per_beat + 1) * self.nb_cells_per_beat - 1
            last = min(next_beat_cell, next_cell - 1)
            if last > cell:
                self._remove(phrase, kit.accent_pitches, cell + 1, last, ACCENT_THRESHOLD_VEL_MIN)

    def _room_after(self, pos: float) -> float:
        return max(self.beat_range.to - pos, 1e-3)

    def _existing_accent_velocity(self, chord: ChordSymbol, note: NoteEvent) -> int:
        offset = 12 if chord.accent_feature is ChordFeature.ACCENT else 25
        ts = self.chords.time_signature
        pos = chord.position
        downbeat = pos.is_first_bar_beat() or pos.is_half_bar_beat(ts, True) or pos.is_half_bar_beat(ts, False)
        extra = 5 if downbeat else 0
        return min(120, note.velocity + offset + extra)

    def _accent_pitch(self, reference: Phrase, kit: DrumKit, cell: int) -> int:
        notes = self._around_notes(reference, kit.accent_pitches, cell, NOTE_WINDOW_SIZE, ACCENT_THRESHOLD_VEL_MIN)
        if not notes:
            return kit.default_accent_pitch
        counts = Counter(n.pitch for n in notes)
        return counts.most_common(1)[0][0]

    def _need_crash(self, cell: int, chord: ChordSymbol) -> bool:
        if chord.has_any(ChordFeature.NO_CRASH):
            return False
        if chord.has_any(ChordFeature.CRASH):
            return True
        window = SLIDING_WINDOW_BEAT_SIZE * self.nb_cells_per_beat
        while self._crash_window and self._crash_window[-1] < cell - window:
            self._crash_window.pop()
        nb_crashes = len(self._crash_window)
        threshold = CRASH_THRESHOLD_NORMAL
        if nb_crashes < SLIDING_WINDOW_CRASH_COUNT_NORMAL:
            threshold += 0.1 * (SLIDING_WINDOW_CRASH_COUNT_NORMAL - nb_crashes)
        elif nb_crashes > SLIDING_WINDOW_CRASH_COUNT_NORMAL:
            threshold -= 0.15 * (nb_crashes - SLIDING_WINDOW_CRASH_COUNT_NORMAL)
        if chord.accent_feature is ChordFeature.ACCENT_STRONGER:
            threshold *= 1.3
        threshold = max(CRASH_THRESHOLD_MIN, min(CRASH_THRESHOLD_MAX, threshold))
        return self.rng.random() < threshold

    def _add_crash(self, phrase: Phrase, reference: Phrase, kit: DrumKit, cell: int, pos: float, chord: ChordSymbol) -> None:
        if not kit.crash_pitches or self._items(phrase, kit.crash_pitches, cell, cell):
            return
        pitch = self.rng.choice(kit.crash_pitches)
        velocities = [
            n.velocity for n in self._around_notes(reference, kit.crash_pitches, cell, 5) if n.pitch == pitch
        ]
        velocity = velocity_from_stats(velocities, chord.accent_feature, 60)
        phrase.add(NoteEvent(pitch, velocity, pos, min(ACCENT_NOTE_DURATION, self._room_after(pos)), phrase.channel))
        self._crash_window.appendleft(cell)

    # ------------------------------------------------------------------
    # Hold / shot
    # ------------------------------------------------------------------
    def process_hold_shot_drums(
        self, phrase: Phrase, mode: HoldShotMode = HoldShotMode.NORMAL, kit: DrumKit = DEFAULT_KIT
    ) -> None:
        """Silence accent, crash and open hi-hat notes after hold/shot chords."""

        if phrase.is_empty():
            logging.debug("process_hold_shot_drums(): empty phrase")
            return
        for index in range(len(self.chords)):
            chord, _pos, cell, _prev, next_cell = self._chord_context(index)
            if not is_hold_shot(chord, mode):
                continue
            last = min(cell + self._post_silence_cells(chord), next_cell - 1)
            if last <= cell:
                continue
            removed = self._remove(phrase, kit.accent_pitches, cell + 1, last, ACCENT_THRESHOLD_VEL_MIN)
            removed += self._remove(phrase, kit.open_hihat_pitches, cell + 1, last)
            removed += self._remove(phrase, kit.crash_pitches, cell + 1, last)
            logging.debug("Hold/shot %s at %s: removed %d note(s)", chord.name, chord.position, removed)

    def _post_silence_cells(self, chord: ChordSymbol) -> int:
        if chord.has_any(ChordFeature.EXTENDED_HOLD_SHOT):
            return self.last_cell + 1
        nb_cells = self.nb_cells_per_beat * 2 - 1
        return int(round(nb_cells * _tempo_factor(self.tempo, 1.0, 1.2, 1.4, 1.6, 2.0)))


def is_hold_shot(chord: ChordSymbol, mode: HoldShotMode) -> bool:
    """Whether ``chord`` must be processed as a hold/shot in ``mode``."""

    if mode is HoldShotMode.IGNORE or not chord.has_any(ChordFeature.HOLD, ChordFeature.SHOT):
        return False
    if mode is HoldShotMode.EXTENDED:
        return chord.has_any(ChordFeature.EXTENDED_HOLD_SHOT)
    return True


def velocity_from_stats(velocities: Sequence[int], accent: Optional[ChordFeature], default: int) -> int:
    """Velocity for a new note given the velocities of nearby notes.

    Without accent the median is used. With an accent the reference is
    ``median + standard deviation`` (capped at the loudest neighbour) plus an
    offset of 14 (accent) or 30 (stronger accent). The result is kept within
    ``[10, 120]``.
    """

    if not velocities:
        ref = default
    else:
        values = np.asarray(velocities, dtype=float)
        median = float(np.median(values))
        if accent is None:
            ref = int(round(median))
        else:
            std = float(values.std(ddof=1)) if values.size > 1 else 0.0
            ref = min(int(values.max()), int(round(median + std)))
    if accent is ChordFeature.ACCENT:
        ref += 14
    elif accent is ChordFeature.ACCENT_STRONGER:
        ref += 30
    return max(10, min(120, ref))
