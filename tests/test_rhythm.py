"""Tests for rhythm descriptions and their parameters."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine.position import SIX_EIGHT  # noqa: E402
from phrase_engine.rhythm import (  # noqa: E402
    DRUMS_CHANNEL,
    RP_FILL,
    RP_INTENSITY,
    RP_STYLE,
    RP_VARIATION,
    FillPolicy,
    Rhythm,
    RhythmVoice,
    VoiceKind,
    make_swing_rhythm,
)


def test_swing_rhythm_defaults():
    """The default rhythm has drums and percussion voices and five parameters."""

    rhythm = make_swing_rhythm()
    assert [v.name for v in rhythm.voices] == ["drums", "percussion"]
    assert rhythm.get_voice("drums").preferred_channel == DRUMS_CHANNEL
    assert rhythm.default_values() == {
        "variation": "Main A-1",
        "style": None,
        "intensity": 0,
        "fill": FillPolicy.NONE,
        "hold_shot": None,
    }
    assert make_swing_rhythm(ts=SIX_EIGHT).time_signature == SIX_EIGHT


def test_unknown_voice_or_parameter():
    rhythm = make_swing_rhythm()
    with pytest.raises(KeyError):
        rhythm.get_voice("bass")
    with pytest.raises(KeyError):
        rhythm.get_parameter("swing")
    with pytest.raises(ValueError):
        make_swing_rhythm(voices=("drums", "bass"))


def test_rhythm_validation():
    voice = RhythmVoice("drums", VoiceKind.DRUMS, 9)
    with pytest.raises(ValueError):
        Rhythm("Empty", SIX_EIGHT, ())
    with pytest.raises(ValueError):
        Rhythm("Twice", SIX_EIGHT, (voice, voice))
    with pytest.raises(ValueError):
        RhythmVoice("drums", VoiceKind.DRUMS, 16)


def test_parameter_validation():
    """Range and choice parameters reject invalid values."""

    assert RP_INTENSITY.validate(-10) == -10
    with pytest.raises(ValueError):
        RP_INTENSITY.validate(11)
    with pytest.raises(ValueError):
        RP_INTENSITY.validate("loud")
    assert RP_FILL.validate(FillPolicy.BREAK) is FillPolicy.BREAK
    with pytest.raises(ValueError):
        RP_FILL.validate("always")


def test_free_parameters_check_the_default_type():
    """A string parameter refuses numbers; a ``None`` default accepts anything."""

    assert RP_VARIATION.validate("Main B-1") == "Main B-1"
    with pytest.raises(ValueError):
        RP_VARIATION.validate(3)
    assert RP_STYLE.validate("Bossa") == "Bossa"
    assert RP_STYLE.validate(None) is None


def test_fill_policy_parse():
    assert FillPolicy.parse("Random-Rare") is FillPolicy.RANDOM_RARE
    with pytest.raises(ValueError):
        FillPolicy.parse("sometimes")
