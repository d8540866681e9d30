"""Song timeline made of contiguous song parts.

A :class:`SongStructure` owns an ordered list of :class:`SongPart` objects
covering the bars of a song without gaps or overlaps::

    parts[i + 1].start_bar_index == parts[i].start_bar_index + parts[i].nb_bars

Every public mutation follows the same three steps so a failure never leaves
the timeline half edited:

1. validate the arguments (``ValueError``),
2. compute the resulting part list on a copy and check it can be played:
   every distinct rhythm needs one MIDI channel per voice and an optional
   injected ``authorizer`` may veto the change (``UnsupportedEditError``),
3. commit, re-derive the start bar of every part, then notify the optional
   ``on_change`` callback.

Song parts are only mutated by their container (start bar and size). Changing
the rhythm or a parameter value of a part replaces it with a new object.

Example
-------
>>> from phrase_engine.rhythm import make_swing_rhythm
>>> sgs = SongStructure()
>>> r = make_swing_rhythm()
>>> sgs.add_song_part(sgs.create_song_part(r, "A", 0, 4))
>>> sgs.add_song_part(sgs.create_song_part(r, "B", 4, 4))
>>> [(p.start_bar_index, p.nb_bars) for p in sgs.get_song_parts()]
[(0, 4), (4, 4)]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .position import Position, TimeSignature
from .ranges import EMPTY_FLOAT_RANGE, FloatRange, IntRange
from .rhythm import Rhythm, RhythmVoice

__all__ = [
    "UnsupportedEditError",
    "SongPart",
    "SongStructure",
    "SongStructureEvent",
    "MAX_MIDI_CHANNELS",
]

MAX_MIDI_CHANNELS = 16


class UnsupportedEditError(Exception):
    """Raised when a timeline edit cannot be applied.

    The timeline is guaranteed to be unchanged when this is raised.
    """


@dataclass(frozen=True)
class SongStructureEvent:
    """Description of a timeline change.

    ``kind`` is one of ``added``, ``removed``, ``resized``, ``replaced`` or
    ``parameter``. ``parts`` lists the affected parts (the new parts for a
    replacement), ``old_parts`` the replaced ones and ``sizes`` the requested
    sizes of a resize.
    """

    kind: str
    parts: Tuple["SongPart", ...]
    old_parts: Tuple["SongPart", ...] = ()
    sizes: Mapping["SongPart", int] = field(default_factory=dict)


class SongPart:
    """A contiguous range of bars played with one rhythm."""

    def __init__(
        self,
        rhythm: Rhythm,
        start_bar_index: int,
        nb_bars: int,
        name: str = "",
        values: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if start_bar_index < 0 or nb_bars < 1:
            raise ValueError(
                f"Invalid song part range start={start_bar_index} nb_bars={nb_bars}"
            )
        merged = rhythm.default_values()
        for key, value in (values or {}).items():
            merged[key] = rhythm.get_parameter(key).validate(value)
        self._rhythm = rhythm
        self._start_bar_index = start_bar_index
        self._nb_bars = nb_bars
        self._name = name
        self._values = MappingProxyType(merged)
        self._container: Optional["SongStructure"] = None

    @property
    def rhythm(self) -> Rhythm:
        return self._rhythm

    @property
    def name(self) -> str:
        return self._name

    @property
    def start_bar_index(self) -> int:
        return self._start_bar_index

    @property
    def nb_bars(self) -> int:
        return self._nb_bars

    @property
    def bar_range(self) -> IntRange:
        return IntRange(self._start_bar_index, self._start_bar_index + self._nb_bars - 1)

    @property
    def values(self) -> Mapping[str, Any]:
        return self._values

    @property
    def container(self) -> Optional["SongStructure"]:
        return self._container

    def get_value(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise KeyError(f"Song part '{self._name}' has no parameter '{name}'") from None

    def clone(
        self,
        rhythm: Optional[Rhythm] = None,
        start_bar_index: Optional[int] = None,
        nb_bars: Optional[int] = None,
        name: Optional[str] = None,
    ) -> "SongPart":
        """Return an uncontained copy, optionally with another rhythm or range.

        Parameter values are carried over when the target rhythm declares a
        parameter with the same name and the value is valid for it.
        """

        rhythm = rhythm or self._rhythm
        values: Dict[str, Any] = {}
        for rp in rhythm.parameters:
            if rp.name in self._values:
                try:
                    values[rp.name] = rp.validate(self._values[rp.name])
                except ValueError:
                    continue
        return SongPart(
            rhythm,
            self._start_bar_index if start_bar_index is None else start_bar_index,
            self._nb_bars if nb_bars is None else nb_bars,
            self._name if name is None else name,
            values,
        )

    def with_values(self, **changes: Any) -> "SongPart":
        """Return an uncontained copy with the given parameter values changed."""

        values = dict(self._values)
        for name, value in changes.items():
            values[name] = self._rhythm.get_parameter(name).validate(value)
        return SongPart(self._rhythm, self._start_bar_index, self._nb_bars, self._name, values)

    def with_value(self, name: str, value: Any) -> "SongPart":
        return self.with_values(**{name: value})

    def __repr__(self) -> str:
        return (
            f"SongPart(name={self._name!r}, rhythm={self._rhythm.name!r}, "
            f"bars=[{self._start_bar_index},{self._start_bar_index + self._nb_bars}))"
        )


Authorizer = Callable[[SongStructureEvent], None]
ChangeListener = Callable[[SongStructureEvent], None]


class SongStructure:
    """Ordered, contiguous list of song parts.

    Parameters
    ----------
    max_channels:
        Number of MIDI channels available to the rhythm voices.
    authorizer:
        Optional callable invoked with the pending :class:`SongStructureEvent`
        before a change is committed. Raising :class:`UnsupportedEditError`
        vetoes the change.
    on_change:
        Optional callable invoked with the event after each committed change.
    """

    def __init__(
        self,
        max_channels: int = MAX_MIDI_CHANNELS,
        authorizer: Optional[Authorizer] = None,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        if not 1 <= max_channels <= MAX_MIDI_CHANNELS:
            raise ValueError(f"max_channels must be between 1 and {MAX_MIDI_CHANNELS}")
        self.max_channels = max_channels
        self.authorizer = authorizer
        self.on_change = on_change
        self._parts: List[SongPart] = []
        self._last_rhythm: Dict[TimeSignature, Rhythm] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_song_parts(self, predicate: Optional[Callable[[SongPart], bool]] = None) -> List[SongPart]:
        if predicate is None:
            return list(self._parts)
        return [p for p in self._parts if predicate(p)]

    def get_size_in_bars(self) -> int:
        if not self._parts:
            return 0
        last = self._parts[-1]
        return last.start_bar_index + last.nb_bars

    def get_song_part(self, absolute_bar_index: int) -> Optional[SongPart]:
        """Return the part covering ``absolute_bar_index`` or ``None``."""

        for part in self._parts:
            if part.bar_range.contains(absolute_bar_index):
                return part
        return None

    def get_position_in_natural_beats(self, bar_index: int) -> float:
        """Return the absolute beat position of the start of ``bar_index``.

        Each part contributes ``nb_bars * natural_beats`` of its own time
        signature. ``bar_index`` may equal the song size (end of the song).
        """

        if not 0 <= bar_index <= self.get_size_in_bars():
            raise ValueError(f"bar_index {bar_index} is outside the song")
        pos = 0.0
        for part in self._parts:
            beats = part.rhythm.time_signature.natural_beats
            if part.bar_range.contains(bar_index):
                return pos + (bar_index - part.start_bar_index) * beats
            pos += part.nb_bars * beats
        return pos

    def get_beat_range(self, bar_range: Optional[IntRange] = None) -> FloatRange:
        """Return the beat range of ``bar_range`` (whole song when ``None``).

        An empty song, or a bar range not fully inside the song, gives
        :data:`EMPTY_FLOAT_RANGE`.
        """

        size = self.get_size_in_bars()
        if size == 0:
            return EMPTY_FLOAT_RANGE
        song_range = IntRange(0, size - 1)
        if bar_range is None:
            bar_range = song_range
        elif not song_range.contains_range(bar_range):
            return EMPTY_FLOAT_RANGE
        start = self.get_position_in_natural_beats(bar_range.from_)
        end = self.get_position_in_natural_beats(bar_range.to + 1)
        return FloatRange(start, end)

    def get_position(self, pos_in_beats: float) -> Optional[Position]:
        """Convert an absolute beat position into a bar/beat position."""

        if pos_in_beats < 0:
            raise ValueError(f"pos_in_beats must be >= 0, got {pos_in_beats}")
        for part in self._parts:
            rng = self.get_beat_range(part.bar_range)
            if rng.contains(pos_in_beats, exclude_upper=True):
                beats = part.rhythm.time_signature.natural_beats
                offset = pos_in_beats - rng.from_
                bar_offset = int(offset // beats)
                return Position(part.start_bar_index + bar_offset, offset - bar_offset * beats)
        return None

    def get_last_used_rhythm(self, ts: TimeSignature) -> Optional[Rhythm]:
        return self._last_rhythm.get(ts)

    def allocate_channels(self) -> Dict[Tuple[Rhythm, RhythmVoice], int]:
        """Return the MIDI channel assigned to each rhythm voice of the song."""

        allocation = _allocate_channels(self._parts, self.max_channels)
        if allocation is None:
            # Every committed edit went through the same check
            raise RuntimeError("Song structure holds more rhythm voices than channels")
        return allocation

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_song_part(
        self,
        rhythm: Rhythm,
        name: str,
        start_bar_index: int,
        nb_bars: int,
        reuse_previous_values: bool = False,
    ) -> SongPart:
        """Create a part ready to be added with :meth:`add_song_part`.

        With ``reuse_previous_values`` the parameter values of the part just
        before ``start_bar_index`` are copied when possible.
        """

        if start_bar_index > 0 and reuse_previous_values:
            previous = self.get_song_part(start_bar_index - 1)
            if previous is not None:
                return previous.clone(rhythm, start_bar_index, nb_bars, name)
        return SongPart(rhythm, start_bar_index, nb_bars, name)

    def add_song_part(self, part: SongPart) -> None:
        self.add_song_parts([part])

    def add_song_parts(self, parts: Sequence[SongPart]) -> None:
        """Insert ``parts`` one after the other.

        Each part's start bar must equal the start of an existing part (the
        new part is inserted before it) or the current song size (append).

        Raises
        ------
        ValueError
            If a part is already in a song or its start bar is not an
            insertion point.
        UnsupportedEditError
            If the resulting song cannot be played or the authorizer vetoes.
        """

        if not parts:
            return
        new_parts = list(self._parts)
        for part in parts:
            if part in new_parts or part.container is not None:
                raise ValueError(f"{part!r} already belongs to a song structure")
            starts = _start_bars(new_parts)
            size = _size_of(new_parts)
            start = part.start_bar_index
            if start == size:
                new_parts.append(part)
            elif start in starts:
                new_parts.insert(starts.index(start), part)
            else:
                raise ValueError(
                    f"Can't insert {part!r}: start bar {start} must be an existing "
                    f"part start or the song size ({size})"
                )

        event = SongStructureEvent("added", tuple(parts))
        self._authorize(event, new_parts)
        self._commit(new_parts)
        for part in parts:
            part._container = self
            self._last_rhythm[part.rhythm.time_signature] = part.rhythm
        logging.debug("Added song parts %s", list(parts))
        self._fire(event)

    def remove_song_parts(self, parts: Sequence[SongPart]) -> None:
        if not parts:
            return
        for part in parts:
            if part not in self._parts:
                raise ValueError(f"{part!r} is not part of this song structure")
        new_parts = [p for p in self._parts if p not in parts]
        event = SongStructureEvent("removed", tuple(parts))
        self._authorize(event, new_parts)
        self._commit(new_parts)
        for part in parts:
            part._container = None
        logging.debug("Removed song parts %s", list(parts))
        self._fire(event)

    def resize_song_parts(self, sizes: Mapping[SongPart, int]) -> None:
        """Change the number of bars of several parts at once."""

        if not sizes:
            return
        for part, nb_bars in sizes.items():
            if part not in self._parts:
                raise ValueError(f"{part!r} is not part of this song structure")
            if nb_bars < 1:
                raise ValueError(f"Invalid size {nb_bars} for {part!r}")
        event = SongStructureEvent("resized", tuple(sizes), sizes=dict(sizes))
        self._authorize(event, list(self._parts))
        for part, nb_bars in sizes.items():
            part._nb_bars = nb_bars
        self._commit(list(self._parts))
        logging.debug("Resized song parts %s", dict(sizes))
        self._fire(event)

    def replace_song_parts(self, old_parts: Sequence[SongPart], new_parts: Sequence[SongPart]) -> None:
        """Swap each part of ``old_parts`` for the matching new part.

        New parts must cover exactly the same bars as the parts they replace.
        """

        if len(old_parts) != len(new_parts):
            raise ValueError("old_parts and new_parts must have the same length")
        for old, new in zip(old_parts, new_parts):
            if old not in self._parts:
                raise ValueError(f"{old!r} is not part of this song structure")
            if new is not old and (new in self._parts or new.container is not None):
                raise ValueError(f"{new!r} already belongs to a song structure")
            if old.start_bar_index != new.start_bar_index or old.nb_bars != new.nb_bars:
                raise ValueError(f"{new!r} does not cover the same bars as {old!r}")
        if list(old_parts) == list(new_parts):
            return

        result = list(self._parts)
        for old, new in zip(old_parts, new_parts):
            result[result.index(old)] = new
        event = SongStructureEvent("replaced", tuple(new_parts), old_parts=tuple(old_parts))
        self._authorize(event, result)
        self._commit(result)
        for old, new in zip(old_parts, new_parts):
            if old is not new:
                old._container = None
            new._container = self
            self._last_rhythm[new.rhythm.time_signature] = new.rhythm
        logging.debug("Replaced song parts %s with %s", list(old_parts), list(new_parts))
        self._fire(event)

    def set_parameter_value(self, part: SongPart, name: str, value: Any) -> SongPart:
        """Replace ``part`` by a copy with parameter ``name`` set to ``value``.

        @returns SongPart: The new part now stored in the structure.
        """

        if part not in self._parts:
            raise ValueError(f"{part!r} is not part of this song structure")
        new_part = part.with_value(name, value)
        event = SongStructureEvent("parameter", (new_part,), old_parts=(part,))
        result = [new_part if p is part else p for p in self._parts]
        self._authorize(event, result)
        self._commit(result)
        part._container = None
        new_part._container = self
        self._fire(event)
        return new_part

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _authorize(self, event: SongStructureEvent, new_parts: List[SongPart]) -> None:
        if _allocate_channels(new_parts, self.max_channels) is None:
            needed = _count_voices(new_parts)
            raise UnsupportedEditError(
                f"Edit '{event.kind}' refused: the song would need {needed} MIDI channels "
                f"but only {self.max_channels} are available"
            )
        if self.authorizer is not None:
            self.authorizer(event)

    def _commit(self, new_parts: List[SongPart]) -> None:
        _update_start_bar_indexes(new_parts)
        self._parts = new_parts

    def _fire(self, event: SongStructureEvent) -> None:
        if self.on_change is not None:
            self.on_change(event)

    def __repr__(self) -> str:
        return f"SongStructure({self._parts!r})"


def _size_of(parts: List[SongPart]) -> int:
    return sum(p.nb_bars for p in parts)


def _start_bars(parts: List[SongPart]) -> List[int]:
    """Start bars ``parts`` would get once made contiguous."""

    starts = []
    bar = 0
    for part in parts:
        starts.append(bar)
        bar += part.nb_bars
    return starts


def _update_start_bar_indexes(parts: List[SongPart]) -> None:
    bar = 0
    for part in parts:
        part._start_bar_index = bar
        bar += part.nb_bars


def _distinct_rhythms(parts: List[SongPart]) -> List[Rhythm]:
    rhythms: List[Rhythm] = []
    for part in parts:
        if part.rhythm not in rhythms:
            rhythms.append(part.rhythm)
    return rhythms


def _count_voices(parts: List[SongPart]) -> int:
    return sum(len(r.voices) for r in _distinct_rhythms(parts))


def _allocate_channels(
    parts: List[SongPart], max_channels: int
) -> Optional[Dict[Tuple[Rhythm, RhythmVoice], int]]:
    """Give each rhythm voice a channel, preferred one first.

    Returns ``None`` when the voices do not fit in ``max_channels``.
    """

    allocation: Dict[Tuple[Rhythm, RhythmVoice], int] = {}
    used = set()
    pending = []
    for rhythm in _distinct_rhythms(parts):
        for voice in rhythm.voices:
            channel = voice.preferred_channel
            if channel < max_channels and channel not in used:
                allocation[(rhythm, voice)] = channel
                used.add(channel)
            else:
                pending.append((rhythm, voice))
    free = [c for c in range(max_channels) if c not in used]
    if len(pending) > len(free):
        return None
    for key, channel in zip(pending, free):
        allocation[key] = channel
    return allocation
