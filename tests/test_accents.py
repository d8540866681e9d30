"""Tests for the accent and hold/shot passes of ``AccentProcessor``.

Phrases are hand built so every expected velocity can be derived from the
grid: three cells per beat, notes up to 0.1 beat early belong to the next
cell.
"""

from __future__ import annotations

import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine.accents import AccentProcessor, DEFAULT_KIT, is_hold_shot, velocity_from_stats  # noqa: E402
from phrase_engine.chords import ChordFeature, ChordSequence, ChordSymbol  # noqa: E402
from phrase_engine.phrase import NoteEvent, Phrase  # noqa: E402
from phrase_engine.position import FOUR_FOUR, Position  # noqa: E402
from phrase_engine.ranges import FloatRange, IntRange  # noqa: E402
from phrase_engine.rhythm import HoldShotMode  # noqa: E402

KICK, SNARE, HIHAT, OPEN_HIHAT, RIDE = 36, 38, 42, 46, 51


def _phrase(*notes):
    phrase = Phrase(9, FloatRange(0, 8))
    for pitch, velocity, position in notes:
        phrase.add(NoteEvent(pitch, velocity, position, 0.25, 9))
    return phrase


def _summary(phrase):
    return sorted((n.pitch, n.velocity, round(n.position, 3)) for n in phrase.notes())


def test_cell_of():
    """Notes slightly ahead of a cell belong to it."""

    proc = AccentProcessor(ChordSequence.from_text("C7 | F7", FOUR_FOUR), 0, 120)
    assert proc.cell_of(0.0) == 0
    assert proc.cell_of(1.95) == 6
    assert proc.cell_of(2 / 3) == 2
    assert proc.cell_of(8.0) is None


def test_existing_accent_note_is_strengthened():
    """A kick on an accented downbeat gets +12 and +5 for the downbeat."""

    phrase = _phrase((KICK, 60, 0.0), (HIHAT, 70, 0.0))
    proc = AccentProcessor(ChordSequence.from_text("C7!~ | F7", FOUR_FOUR), 0, 120, random.Random(1))
    proc.process_accent_drums(phrase)
    assert _summary(phrase) == [(KICK, 77, 0.0), (HIHAT, 70, 0.0)]


def test_new_accent_note_with_forced_crash():
    """Without an accent note in the cell a kick is added from nearby velocities."""

    phrase = _phrase((HIHAT, 70, 0.0), (SNARE, 50, 2 / 3), (KICK, 50, 2.0), (KICK, 60, 6.0))
    proc = AccentProcessor(ChordSequence.from_text("C7!* | F7", FOUR_FOUR), 0, 120, random.Random(1))
    proc.process_accent_drums(phrase)

    notes = phrase.notes()
    kicks = [n for n in notes if n.pitch == KICK and n.position == 0.0]
    assert len(kicks) == 1 and kicks[0].velocity == 74
    crashes = [n for n in notes if n.pitch in DEFAULT_KIT.crash_pitches]
    assert len(crashes) == 1 and crashes[0].position == 0.0 and crashes[0].velocity == 74
    # The snare in the cells following the accent is cleared
    assert not [n for n in notes if n.pitch == SNARE]
    assert [n.position for n in notes if n.pitch == KICK] == [0.0, 2.0, 6.0]


def test_no_crash_feature_removes_crashes():
    phrase = _phrase((KICK, 60, 0.0), (49, 80, 0.0))
    proc = AccentProcessor(ChordSequence.from_text("C7!~ | F7", FOUR_FOUR), 0, 120)
    proc.process_accent_drums(phrase)
    assert all(n.pitch != 49 for n in phrase.notes())


def test_chords_without_accent_change_nothing():
    phrase = _phrase((KICK, 60, 0.0), (SNARE, 50, 2 / 3))
    before = _summary(phrase)
    proc = AccentProcessor(ChordSequence.from_text("C7 | F7", FOUR_FOUR), 0, 120)
    proc.process_accent_drums(phrase)
    proc.process_hold_shot_drums(phrase)
    assert _summary(phrase) == before


def _hold_shot_phrase():
    return _phrase(
        (KICK, 60, 1.0),
        (KICK, 30, 1.0),
        (RIDE, 70, 1.0),
        (OPEN_HIHAT, 60, 2.0),
        (KICK, 60, 3.0),
    )


def test_shot_silences_the_following_cells():
    """At 120 BPM a shot silences 7 cells (a bit more than two beats)."""

    phrase = _hold_shot_phrase()
    proc = AccentProcessor(ChordSequence.from_text("C7^ | F7", FOUR_FOUR), 0, 120)
    proc.process_hold_shot_drums(phrase, HoldShotMode.NORMAL)
    assert _summary(phrase) == [(KICK, 30, 1.0), (KICK, 60, 3.0), (RIDE, 70, 1.0)]


def test_extended_shot_silences_until_next_chord():
    phrase = _hold_shot_phrase()
    proc = AccentProcessor(ChordSequence.from_text("C7^^ | F7", FOUR_FOUR), 0, 120)
    proc.process_hold_shot_drums(phrase, HoldShotMode.EXTENDED)
    assert _summary(phrase) == [(KICK, 30, 1.0), (RIDE, 70, 1.0)]


@pytest.mark.parametrize("mode", [HoldShotMode.IGNORE, HoldShotMode.EXTENDED])
def test_hold_shot_modes_can_skip_plain_shots(mode):
    phrase = _hold_shot_phrase()
    before = _summary(phrase)
    proc = AccentProcessor(ChordSequence.from_text("C7^ | F7", FOUR_FOUR), 0, 120)
    proc.process_hold_shot_drums(phrase, mode)
    assert _summary(phrase) == before


def test_is_hold_shot():
    plain = ChordSymbol(Position(0), "C7", {ChordFeature.HOLD})
    extended = ChordSymbol(Position(0), "C7", {ChordFeature.HOLD, ChordFeature.EXTENDED_HOLD_SHOT})
    assert is_hold_shot(plain, HoldShotMode.NORMAL)
    assert not is_hold_shot(plain, HoldShotMode.EXTENDED)
    assert is_hold_shot(extended, HoldShotMode.EXTENDED)
    assert not is_hold_shot(extended, HoldShotMode.IGNORE)
    assert not is_hold_shot(ChordSymbol(Position(0), "C7"), HoldShotMode.NORMAL)


def test_velocity_from_stats():
    """Median without accent, median plus deviation and offset with one."""

    assert velocity_from_stats([], None, 55) == 55
    assert velocity_from_stats([50, 60, 70], None, 55) == 60
    assert velocity_from_stats([50, 60, 70], ChordFeature.ACCENT_STRONGER, 55) == 100
    assert velocity_from_stats([115], ChordFeature.ACCENT, 55) == 120
    assert velocity_from_stats([3], None, 55) == 10


def test_invalid_arguments():
    chords = ChordSequence.from_text("C7", FOUR_FOUR)
    with pytest.raises(ValueError):
        AccentProcessor(chords, 0, 500)
    with pytest.raises(ValueError):
        AccentProcessor(chords, 0, 120, nb_cells_per_beat=5)
    with pytest.raises(ValueError):
        AccentProcessor(ChordSequence(chords.bar_range, FOUR_FOUR), 0, 120)


def test_chord_in_the_last_cell_window():
    """A chord less than a cell window before the end stays on the last cell."""

    chords = ChordSequence(
        IntRange(0, 1),
        FOUR_FOUR,
        [
            ChordSymbol(Position(0, 0), "C7"),
            ChordSymbol(Position(1, 3.95), "F7", {ChordFeature.ACCENT, ChordFeature.NO_CRASH, ChordFeature.SHOT}),
        ],
    )
    proc = AccentProcessor(chords, 0, 120, random.Random(1))
    assert proc.chord_cell(7.95) == proc.last_cell == 23
    with pytest.raises(RuntimeError):
        proc.chord_cell(8.0)

    phrase = _phrase((KICK, 60, 7.0))
    proc.process_accent_drums(phrase)
    proc.process_hold_shot_drums(phrase)
    accents = [n for n in phrase.notes() if n.position == pytest.approx(7.95)]
    assert len(accents) == 1
    assert accents[0].end_position <= 8.0 + 1e-9
