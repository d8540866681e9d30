"""Tests for ``TimeSignature`` and ``Position``.

Natural beats follow the counting a musician would use: quarter notes in
``x/4``, half notes in ``x/2`` and dotted quarters in compound ``x/8``
meters.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine.position import (  # noqa: E402
    FOUR_FOUR,
    SIX_EIGHT,
    THREE_FOUR,
    TWELVE_EIGHT,
    Position,
    TimeSignature,
)


def test_natural_beats():
    """Compound meters count dotted quarters."""

    assert FOUR_FOUR.natural_beats == 4
    assert THREE_FOUR.natural_beats == 3
    assert SIX_EIGHT.natural_beats == 2
    assert TWELVE_EIGHT.natural_beats == 4
    assert TimeSignature(2, 2).natural_beats == 2
    assert TimeSignature(7, 8).natural_beats == 3.5


def test_half_bar_beat_with_swing():
    """Odd beat counts round the half bar up when ``swing`` is set."""

    assert FOUR_FOUR.half_bar_beat() == 2
    assert THREE_FOUR.half_bar_beat() == 1.5
    assert THREE_FOUR.half_bar_beat(swing=True) == 2


def test_parse_returns_known_constants():
    """Parsing ``"4/4"`` gives the shared constant."""

    assert TimeSignature.parse("4/4") is FOUR_FOUR
    assert TimeSignature.parse(" 6/8 ") is SIX_EIGHT
    assert str(TimeSignature.parse("5/4")) == "5/4"


@pytest.mark.parametrize("text", ["4", "4/x", "4/3", "0/4"])
def test_parse_rejects_invalid_text(text):
    """Malformed or unsupported signatures raise ``ValueError``."""

    with pytest.raises(ValueError):
        TimeSignature.parse(text)


def test_position_validity_and_order():
    """Positions sort by bar then beat and validate against a signature."""

    assert Position(1, 3.5).is_valid(FOUR_FOUR)
    assert not Position(1, 4.0).is_valid(FOUR_FOUR)
    assert not Position(1, 3.0).is_valid(THREE_FOUR)
    assert sorted([Position(2, 0), Position(1, 3), Position(1, 0.5)]) == [
        Position(1, 0.5),
        Position(1, 3),
        Position(2, 0),
    ]


def test_position_helpers():
    assert Position(3).is_first_bar_beat()
    assert Position(3, 2).is_half_bar_beat(FOUR_FOUR)
    assert Position(3, 2).get_position_in_beats(FOUR_FOUR) == 14
    assert str(Position(3, 1.5)) == "[3:1.5]"


def test_position_rejects_negative_values():
    with pytest.raises(ValueError):
        Position(-1, 0)
    with pytest.raises(ValueError):
        Position(0, -0.5)
