"""Rhythm definitions: voices and parameters.

A :class:`Rhythm` is the static description a song part refers to. It fixes
the time signature, the instrument voices the generator produces (drums and
percussion for the pattern based swing rhythm) and the parameters a user can
set per song part, along with their defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from .position import FOUR_FOUR, TimeSignature

__all__ = [
    "VoiceKind",
    "RhythmVoice",
    "FillPolicy",
    "HoldShotMode",
    "RhythmParameter",
    "Rhythm",
    "RP_VARIATION",
    "RP_STYLE",
    "RP_INTENSITY",
    "RP_FILL",
    "RP_HOLD_SHOT",
    "DRUMS_CHANNEL",
    "PERCUSSION_CHANNEL",
    "make_swing_rhythm",
]

# Zero-based MIDI channels: 9 is the General MIDI drum channel.
DRUMS_CHANNEL = 9
PERCUSSION_CHANNEL = 8


class VoiceKind(Enum):
    DRUMS = "drums"
    PERCUSSION = "percussion"


@dataclass(frozen=True)
class RhythmVoice:
    """One instrument voice produced by a rhythm."""

    name: str
    kind: VoiceKind
    preferred_channel: int

    def __post_init__(self) -> None:
        if not 0 <= self.preferred_channel <= 15:
            raise ValueError(f"preferred_channel must be 0-15, got {self.preferred_channel}")


class FillPolicy(Enum):
    """When to play a fill at the end of a song part."""

    NONE = "none"
    ALWAYS = "always"
    RANDOM = "random"
    RANDOM_RARE = "random_rare"
    BREAK = "break"

    @classmethod
    def parse(cls, text: str) -> "FillPolicy":
        try:
            return cls(text.strip().lower().replace("-", "_"))
        except ValueError:
            names = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown fill policy '{text}'. Use one of: {names}") from None


class HoldShotMode(Enum):
    """Which hold/shot chord features the accent pass reacts to."""

    NORMAL = "normal"
    EXTENDED = "extended"
    IGNORE = "ignore"


@dataclass(frozen=True)
class RhythmParameter:
    """A named, validated per-song-part setting.

    ``choices`` restricts the value to a fixed set; ``value_range`` to an
    inclusive numeric interval. Parameters with neither only accept values of
    the default's type, any value when the default is ``None``.
    """

    name: str
    default: Any
    choices: Optional[Tuple[Any, ...]] = None
    value_range: Optional[Tuple[float, float]] = None

    def validate(self, value: Any) -> Any:
        if self.choices is not None and value not in self.choices:
            raise ValueError(f"Invalid value {value!r} for parameter '{self.name}'")
        if self.value_range is not None:
            lo, hi = self.value_range
            if not isinstance(value, (int, float)) or not lo <= value <= hi:
                raise ValueError(
                    f"Parameter '{self.name}' must be between {lo} and {hi}, got {value!r}"
                )
        elif self.choices is None and self.default is not None and not isinstance(value, type(self.default)):
            raise ValueError(
                f"Parameter '{self.name}' expects a {type(self.default).__name__}, got {value!r}"
            )
        return value


RP_VARIATION = RhythmParameter("variation", "Main A-1")
RP_STYLE = RhythmParameter("style", None)
RP_INTENSITY = RhythmParameter("intensity", 0, value_range=(-10, 10))
RP_FILL = RhythmParameter("fill", FillPolicy.NONE, choices=tuple(FillPolicy))
# None defers to the hold/shot mode of the generator
RP_HOLD_SHOT = RhythmParameter("hold_shot", None, choices=(None,) + tuple(HoldShotMode))


@dataclass(frozen=True)
class Rhythm:
    """Static rhythm description shared by the song parts using it."""

    name: str
    time_signature: TimeSignature
    voices: Tuple[RhythmVoice, ...]
    parameters: Tuple[RhythmParameter, ...] = field(
        default=(RP_VARIATION, RP_STYLE, RP_INTENSITY, RP_FILL, RP_HOLD_SHOT)
    )

    def __post_init__(self) -> None:
        if not self.voices:
            raise ValueError("A rhythm needs at least one voice")
        names = [v.name for v in self.voices]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate voice names in rhythm '{self.name}': {names}")

    def get_parameter(self, name: str) -> RhythmParameter:
        for rp in self.parameters:
            if rp.name == name:
                return rp
        raise KeyError(f"Rhythm '{self.name}' has no parameter '{name}'")

    def default_values(self) -> Dict[str, Any]:
        return {rp.name: rp.default for rp in self.parameters}

    def get_voice(self, name: str) -> RhythmVoice:
        for voice in self.voices:
            if voice.name == name:
                return voice
        raise KeyError(f"Rhythm '{self.name}' has no voice '{name}'")

    def __str__(self) -> str:
        return f"{self.name} ({self.time_signature})"


def make_swing_rhythm(
    name: str = "Swing", ts: TimeSignature = FOUR_FOUR, voices: Sequence[str] = ("drums", "percussion")
) -> Rhythm:
    """Build the standard pattern based rhythm with drums and percussion voices."""

    built = []
    for voice_name in voices:
        if voice_name == "drums":
            built.append(RhythmVoice("drums", VoiceKind.DRUMS, DRUMS_CHANNEL))
        elif voice_name == "percussion":
            built.append(RhythmVoice("percussion", VoiceKind.PERCUSSION, PERCUSSION_CHANNEL))
        else:
            raise ValueError(f"Unknown voice '{voice_name}'")
    return Rhythm(name, ts, tuple(built))
