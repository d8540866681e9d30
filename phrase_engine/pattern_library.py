"""Catalog of pre-authored drum and percussion pattern fragments.

A :class:`PatternLibrary` groups :class:`PatternFragment` objects by style
name into two pools:

* the *standard* pool, whose fragments tile the body of a song part;
* the *fill* pool, whose fragments replace the tail of a song part when a
  fill is requested.

A fragment is one alternate of a style. It holds the content of every voice
of the rhythm (drums and percussion) so related voices always come from the
same random pick. Fragment content is positioned from ``origin_beat``
(``0`` for everything this module builds) and must be treated as read-only
once added to a library; the generator copies notes, it never edits them.

Pattern files
-------------
:func:`load_midi_library` reads a Standard MIDI File annotated with marker
meta events. A marker applies from its position to the next marker::

    _STYLE Main A-1    standard fragment #1 of style "Main A-1"
    #alt               standard fragment #2
    #fill              fill fragment #1
    #alt               fill fragment #2
    _STYLE Main B-1    ...
    _END

Drum notes are read from MIDI channel 10 (zero-based ``9``) and percussion
notes from channel 9 (zero-based ``8``).

Modification summary
--------------------
* The built-in swing library reuses the idea of a small table of basic
  rhythmic cells, picked deterministically so the default patterns never
  change between runs.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .phrase import NoteEvent, Phrase
from .position import FOUR_FOUR, TimeSignature
from .ranges import FloatRange
from .rhythm import DRUMS_CHANNEL, PERCUSSION_CHANNEL

__all__ = [
    "FragmentRole",
    "PatternFragment",
    "PatternLibrary",
    "load_midi_library",
    "build_default_library",
    "VOICE_CHANNELS",
]

# Voice name -> MIDI channel used inside pattern files.
VOICE_CHANNELS: Dict[str, int] = {"drums": DRUMS_CHANNEL, "percussion": PERCUSSION_CHANNEL}


class FragmentRole(Enum):
    STANDARD = "standard"
    FILL = "fill"


@dataclass(frozen=True)
class PatternFragment:
    """One alternate of a style: ``size_in_bars`` bars of content per voice."""

    style: str
    role: FragmentRole
    size_in_bars: int
    phrases: Mapping[str, Phrase] = field(default_factory=dict)
    origin_beat: float = 0.0

    def __post_init__(self) -> None:
        if self.size_in_bars < 1:
            raise ValueError(f"Fragment size must be at least one bar, got {self.size_in_bars}")
        if not self.style:
            raise ValueError("Fragment style must not be empty")

    def get_phrase(self, voice: str) -> Phrase:
        """Content for ``voice``; an empty phrase when the voice is silent."""

        phrase = self.phrases.get(voice)
        if phrase is None:
            return Phrase(VOICE_CHANNELS.get(voice, 0))
        return phrase


@dataclass
class _StylePools:
    standard: List[PatternFragment] = field(default_factory=list)
    fill: List[PatternFragment] = field(default_factory=list)


class PatternLibrary:
    """Read-only (once built) catalog of fragments for one time signature."""

    def __init__(self, time_signature: TimeSignature = FOUR_FOUR) -> None:
        self.time_signature = time_signature
        self._styles: Dict[str, _StylePools] = {}

    def __contains__(self, style: object) -> bool:
        return style in self._styles

    def __len__(self) -> int:
        return len(self._styles)

    def add(self, fragment: PatternFragment) -> None:
        """Add ``fragment`` to the pool matching its style and role.

        Raises
        ------
        ValueError
            If a note of the fragment lies outside its bar range.
        """

        length = fragment.size_in_bars * self.time_signature.natural_beats
        rng = FloatRange(fragment.origin_beat, fragment.origin_beat + length)
        for voice, phrase in fragment.phrases.items():
            for note in phrase.notes():
                if not rng.contains(note.position, exclude_upper=True):
                    raise ValueError(
                        f"Fragment of style '{fragment.style}' has a {voice} note at beat "
                        f"{note.position} outside {rng}"
                    )
        pools = self._styles.setdefault(fragment.style, _StylePools())
        if fragment.role is FragmentRole.FILL:
            pools.fill.append(fragment)
        else:
            pools.standard.append(fragment)

    def styles(self) -> List[str]:
        return sorted(self._styles)

    def get_standard(self, style: str) -> List[PatternFragment]:
        pools = self._styles.get(style)
        return list(pools.standard) if pools else []

    def get_fill(self, style: str) -> List[PatternFragment]:
        pools = self._styles.get(style)
        return list(pools.fill) if pools else []

    def get_size_in_bars(self, style: str) -> int:
        """Size of the standard fragments of ``style``.

        Raises
        ------
        KeyError
            If the style has no standard fragment.
        """

        standard = self.get_standard(style)
        if not standard:
            raise KeyError(f"No standard pattern for style '{style}'")
        return standard[0].size_in_bars

    def check_consistency(self) -> List[str]:
        """Return human readable problems, an empty list when all is fine."""

        problems: List[str] = []
        for style in self.styles():
            pools = self._styles[style]
            if not pools.standard:
                problems.append(f"Style '{style}' has no standard pattern")
                continue
            sizes = {f.size_in_bars for f in pools.standard}
            if len(sizes) > 1:
                problems.append(
                    f"Style '{style}' mixes standard pattern sizes {sorted(sizes)}"
                )
            size = pools.standard[0].size_in_bars
            for fill in pools.fill:
                if fill.size_in_bars > size:
                    problems.append(
                        f"Style '{style}' has a {fill.size_in_bars}-bar fill longer than its "
                        f"{size}-bar patterns"
                    )
        return problems


# ---------------------------------------------------------------------------
# MIDI pattern files
# ---------------------------------------------------------------------------

STYLE_MARKER = "_STYLE"
ALT_MARKER = "#alt"
FILL_MARKER = "#fill"
END_MARKER = "_END"


def load_midi_library(path: str | Path, ts: Optional[TimeSignature] = None) -> PatternLibrary:
    """Build a :class:`PatternLibrary` from an annotated MIDI file.

    Parameters
    ----------
    path:
        Location of the ``.mid`` file.
    ts:
        Time signature of the patterns. When ``None`` the first
        ``time_signature`` meta event of the file is used, ``4/4`` otherwise.

    Raises
    ------
    ImportError
        When ``mido`` is not installed.
    ValueError
        When markers are misplaced (not on a bar line, fragment before any
        ``_STYLE``, missing ``_END``).
    """

    try:
        import mido
    except ModuleNotFoundError as exc:
        raise ImportError(
            "mido is required to read pattern files; install it with 'pip install mido'"
        ) from exc

    mid = mido.MidiFile(str(path))
    tpb = mid.ticks_per_beat
    markers: List[Tuple[int, str]] = []
    raw_notes: List[Tuple[int, int, int, int, int]] = []  # channel, pitch, vel, on, off
    pending: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
    file_ts: Optional[TimeSignature] = None

    tick = 0
    for msg in mido.merge_tracks(mid.tracks):
        tick += msg.time
        if msg.type == "marker":
            markers.append((tick, msg.text.strip()))
        elif msg.type == "time_signature" and file_ts is None:
            file_ts = TimeSignature.parse(f"{msg.numerator}/{msg.denominator}")
        elif msg.type == "note_on" and msg.velocity > 0:
            pending.setdefault((msg.channel, msg.note), []).append((tick, msg.velocity))
        elif msg.type in ("note_on", "note_off"):
            starts = pending.get((msg.channel, msg.note))
            if starts:
                on, vel = starts.pop(0)
                raw_notes.append((msg.channel, msg.note, vel, on, tick))

    unclosed = sum(len(v) for v in pending.values())
    if unclosed:
        logging.warning("%s: ignoring %d note(s) without note off", path, unclosed)

    ts = ts or file_ts or FOUR_FOUR
    # Quarter notes per bar vs natural beats per bar
    beat_factor = ts.natural_beats / (ts.upper * 4 / ts.lower)

    def to_beats(t: int) -> float:
        return t / tpb * beat_factor

    phrases = {voice: Phrase(channel) for voice, channel in VOICE_CHANNELS.items()}
    channel_to_voice = {c: v for v, c in VOICE_CHANNELS.items()}
    for channel, pitch, vel, on, off in raw_notes:
        voice = channel_to_voice.get(channel)
        if voice is None:
            continue
        duration = max(to_beats(off - on), 0.1)
        phrases[voice].add(NoteEvent(pitch, vel, to_beats(on), duration, channel))

    library = PatternLibrary(ts)
    for style, role, start, end in _marker_slices(markers, path):
        begin, stop = to_beats(start), to_beats(end)
        nb_bars = (stop - begin) / ts.natural_beats
        start_bar = begin / ts.natural_beats
        if (
            not _is_whole(start_bar)
            or not _is_whole(nb_bars)
            or round(nb_bars) < 1
        ):
            raise ValueError(
                f"{path}: fragment of style '{style}' at beat {begin} does not span whole bars"
            )
        size = int(round(nb_bars))
        window = FloatRange(begin, stop)
        content = {
            voice: p.slice(window).shifted_copy(-begin, FloatRange(0, stop - begin))
            for voice, p in phrases.items()
        }
        library.add(PatternFragment(style, role, size, content))

    for problem in library.check_consistency():
        logging.warning("%s: %s", path, problem)
    logging.info("Loaded %d style(s) from %s", len(library), path)
    return library


def _is_whole(value: float) -> bool:
    return math.isclose(value, round(value), abs_tol=1e-6)


def _marker_slices(markers: List[Tuple[int, str]], path) -> List[Tuple[str, FragmentRole, int, int]]:
    """Turn ``(tick, text)`` markers into ``(style, role, start, end)`` slices."""

    slices: List[Tuple[str, FragmentRole, int, int]] = []
    seen = set()
    style: Optional[str] = None
    skip = False
    role = FragmentRole.STANDARD
    open_at: Optional[int] = None

    for tick, text in sorted(markers, key=lambda m: m[0]):
        if open_at is not None and style is not None and not skip:
            slices.append((style, role, open_at, tick))
        open_at = None
        if text.startswith(STYLE_MARKER):
            style = text[len(STYLE_MARKER):].strip()
            if not style:
                raise ValueError(f"{path}: {STYLE_MARKER} marker without a style name")
            skip = style in seen
            if skip:
                logging.warning("%s: style '%s' defined twice, ignoring the second one", path, style)
            seen.add(style)
            role = FragmentRole.STANDARD
            open_at = tick
        elif text in (ALT_MARKER, FILL_MARKER):
            if style is None:
                raise ValueError(f"{path}: '{text}' marker before any {STYLE_MARKER} marker")
            if text == FILL_MARKER:
                role = FragmentRole.FILL
            open_at = tick
        elif text == END_MARKER:
            style = None
        else:
            logging.debug("%s: ignoring unknown marker '%s'", path, text)

    if open_at is not None:
        raise ValueError(f"{path}: missing {END_MARKER} marker")
    return slices


# ---------------------------------------------------------------------------
# Built-in swing patterns
# ---------------------------------------------------------------------------

# General MIDI drum map pitches used by the built-in patterns
KICK = 36
SNARE = 38
HIHAT_CLOSED = 42
HIHAT_PEDAL = 44
HIHAT_OPEN = 46
CRASH = 49
RIDE = 51
TOM_LOW = 45
TOM_MID = 47
TOM_HIGH = 50
CLAVES = 75
SHAKER = 70

# Offsets (in beats) of snare "comping" hits within one bar of 4 beats.
# Each row is a small rhythmic cell; the default library picks from them.
BASIC_COMPING = [
    [1 + 2 / 3, 3 + 2 / 3],
    [2 / 3, 2 + 2 / 3],
    [3 + 2 / 3],
    [1 + 2 / 3, 2 + 2 / 3, 3 + 2 / 3],
]


def _swing_bar(drums: Phrase, perc: Phrase, bar: int, ts: TimeSignature, *, ride: bool, comping: List[float], loud: int) -> None:
    beats = ts.natural_beats
    start = bar * beats
    for b in range(int(math.floor(beats))):
        pos = start + b
        cymbal = RIDE if ride else HIHAT_CLOSED
        drums.add(NoteEvent(cymbal, 70 + loud + (6 if b % 2 else 0), pos, 0.25, DRUMS_CHANNEL))
        if b % 2:
            drums.add(NoteEvent(cymbal, 58 + loud, pos + 2 / 3, 0.25, DRUMS_CHANNEL))
            drums.add(NoteEvent(HIHAT_PEDAL, 55 + loud, pos, 0.25, DRUMS_CHANNEL))
            perc.add(NoteEvent(CLAVES, 50 + loud, pos, 0.25, PERCUSSION_CHANNEL))
        drums.add(NoteEvent(KICK, 32, pos, 0.25, DRUMS_CHANNEL))
        perc.add(NoteEvent(SHAKER, 40, pos + 2 / 3, 0.2, PERCUSSION_CHANNEL))
    for offset in comping:
        if offset < beats:
            drums.add(NoteEvent(SNARE, 45 + loud, start + offset, 0.25, DRUMS_CHANNEL))


def _fill_bar(drums: Phrase, bar: int, ts: TimeSignature, rng: random.Random) -> None:
    beats = ts.natural_beats
    start = bar * beats
    toms = [TOM_HIGH, TOM_MID, TOM_LOW]
    _swing_bar(drums, Phrase(PERCUSSION_CHANNEL), bar, ts, ride=True, comping=[], loud=0)
    last_whole = int(math.floor(beats))
    fill_from = max(0, last_whole - 2)
    for b in range(fill_from, last_whole):
        for k, frac in enumerate((0.0, 1 / 3, 2 / 3)):
            pitch = SNARE if (b - fill_from) == 0 else rng.choice(toms)
            drums.add(NoteEvent(pitch, 60 + 8 * k, start + b + frac, 0.2, DRUMS_CHANNEL))


def build_default_library(ts: TimeSignature = FOUR_FOUR, seed: int = 0) -> PatternLibrary:
    """Return the built-in swing library for ``ts``.

    Styles: ``"Main A-1"`` (hi-hat, 2-bar patterns with 1-bar fills),
    ``"Main B-1"`` (ride, louder, 2-bar patterns with 1-bar fills) and
    ``"Intro"`` (1-bar patterns, no fill). The content only depends on ``ts``
    and ``seed``.
    """

    rng = random.Random(seed)
    library = PatternLibrary(ts)
    beats = ts.natural_beats
    for style, ride, loud in (("Main A-1", False, -8), ("Main B-1", True, 4)):
        for _ in range(3):
            drums, perc = Phrase(DRUMS_CHANNEL), Phrase(PERCUSSION_CHANNEL)
            for bar in range(2):
                _swing_bar(drums, perc, bar, ts, ride=ride, comping=rng.choice(BASIC_COMPING), loud=loud)
            library.add(PatternFragment(style, FragmentRole.STANDARD, 2, {"drums": drums, "percussion": perc}))
        for _ in range(2):
            drums = Phrase(DRUMS_CHANNEL)
            _fill_bar(drums, 0, ts, rng)
            library.add(PatternFragment(style, FragmentRole.FILL, 1, {"drums": drums}))
    drums, perc = Phrase(DRUMS_CHANNEL), Phrase(PERCUSSION_CHANNEL)
    _swing_bar(drums, perc, 0, ts, ride=False, comping=[], loud=-15)
    library.add(PatternFragment("Intro", FragmentRole.STANDARD, 1, {"drums": drums, "percussion": perc}))
    logging.debug("Built default library with %d styles over %g beats per bar", len(library), beats)
    return library
