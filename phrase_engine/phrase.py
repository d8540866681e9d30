"""Notes and phrases.

A :class:`NoteEvent` is an immutable value: changing its position or velocity
means building a new event with one of the ``with_*`` helpers. A
:class:`Phrase` stores the events of one voice in an *arena*: each added note
receives an integer handle that stays valid until the note is removed.
Replacing a note keeps its handle, so components that track notes across
edits (the humanizer for instance) never need to re-key anything.

Two notes with identical values are still two distinct entries with two
distinct handles.

Example
-------
>>> p = Phrase(9)
>>> h = p.add(NoteEvent(36, 100, 0.0, 0.5))
>>> p.replace(h, p.get(h).with_velocity(90))
>>> p.get(h).velocity
90
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from .ranges import FloatRange

__all__ = ["NoteEvent", "Phrase"]

# Tolerance used when checking a note end against a phrase upper bound.
_EPSILON = 1e-6


@dataclass(frozen=True)
class NoteEvent:
    """One note: pitch, velocity, start and length in beats, MIDI channel."""

    pitch: int
    velocity: int
    position: float
    duration: float
    channel: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.pitch <= 127:
            raise ValueError(f"pitch must be between 0 and 127, got {self.pitch}")
        if not 0 <= self.velocity <= 127:
            raise ValueError(f"velocity must be between 0 and 127, got {self.velocity}")
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if self.position < 0:
            raise ValueError(f"position must be >= 0, got {self.position}")
        if not 0 <= self.channel <= 15:
            raise ValueError(f"channel must be between 0 and 15, got {self.channel}")

    @property
    def end_position(self) -> float:
        return self.position + self.duration

    @property
    def beat_range(self) -> FloatRange:
        return FloatRange(self.position, self.end_position)

    def with_position(self, position: float) -> "NoteEvent":
        return dataclasses.replace(self, position=position)

    def with_velocity(self, velocity: int) -> "NoteEvent":
        return dataclasses.replace(self, velocity=velocity)

    def with_duration(self, duration: float) -> "NoteEvent":
        return dataclasses.replace(self, duration=duration)

    def with_pitch(self, pitch: int) -> "NoteEvent":
        return dataclasses.replace(self, pitch=pitch)

    def with_channel(self, channel: int) -> "NoteEvent":
        return dataclasses.replace(self, channel=channel)

    def shifted(self, offset: float) -> "NoteEvent":
        return dataclasses.replace(self, position=self.position + offset)


class Phrase:
    """Mutable collection of :class:`NoteEvent` objects for one channel.

    Parameters
    ----------
    channel:
        MIDI channel of the voice. Added notes are re-tagged with it.
    beat_range:
        Optional valid range. When given the phrase is *sized*: every note
        must start at or after ``beat_range.from_`` and end at or before
        ``beat_range.to``; :meth:`add` and :meth:`replace` raise
        ``ValueError`` otherwise.
    """

    def __init__(self, channel: int, beat_range: Optional[FloatRange] = None) -> None:
        if not 0 <= channel <= 15:
            raise ValueError(f"channel must be between 0 and 15, got {channel}")
        if beat_range is not None and beat_range.is_empty:
            raise ValueError("beat_range must not be empty")
        self.channel = channel
        self.beat_range = beat_range
        self._notes: Dict[int, NoteEvent] = {}
        self._next_handle = 0

    @property
    def is_sized(self) -> bool:
        return self.beat_range is not None

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, handle: object) -> bool:
        return handle in self._notes

    def __iter__(self) -> Iterator[NoteEvent]:
        return iter(self.notes())

    def __repr__(self) -> str:
        return f"Phrase(channel={self.channel}, notes={len(self._notes)}, range={self.beat_range})"

    def is_empty(self) -> bool:
        return not self._notes

    def add(self, note: NoteEvent) -> int:
        """Add ``note`` and return its new handle."""

        note = self._accept(note)
        handle = self._next_handle
        self._next_handle += 1
        self._notes[handle] = note
        return handle

    def add_all(self, other: "Phrase") -> List[int]:
        return [self.add(note) for note in other.notes()]

    def get(self, handle: int) -> NoteEvent:
        try:
            return self._notes[handle]
        except KeyError:
            raise KeyError(f"No note with handle {handle}") from None

    def replace(self, handle: int, note: NoteEvent) -> None:
        """Replace the note stored under ``handle``, keeping the handle."""

        if handle not in self._notes:
            raise KeyError(f"No note with handle {handle}")
        self._notes[handle] = self._accept(note)

    def remove(self, handle: int) -> NoteEvent:
        try:
            return self._notes.pop(handle)
        except KeyError:
            raise KeyError(f"No note with handle {handle}") from None

    def clear(self) -> None:
        self._notes.clear()

    def handles(self) -> List[int]:
        """Handles ordered by note position, then pitch, then insertion."""

        return [h for h, _ in self.items()]

    def items(self) -> List[Tuple[int, NoteEvent]]:
        return sorted(self._notes.items(), key=lambda item: (item[1].position, item[1].pitch, item[0]))

    def notes(self) -> List[NoteEvent]:
        return [note for _, note in self.items()]

    def find(self, note: NoteEvent) -> Optional[int]:
        """Return the handle of the first stored note equal to ``note``."""

        for handle, candidate in self.items():
            if candidate == note:
                return handle
        return None

    def get_items_in(self, beat_range: FloatRange, exclude_upper: bool = True) -> List[Tuple[int, NoteEvent]]:
        """Return ``(handle, note)`` pairs whose start lies in ``beat_range``."""

        return [
            (h, n) for h, n in self.items() if beat_range.contains(n.position, exclude_upper)
        ]

    def get_notes_in(self, beat_range: FloatRange, exclude_upper: bool = True) -> List[NoteEvent]:
        return [n for _, n in self.get_items_in(beat_range, exclude_upper)]

    def shifted_copy(self, offset: float, beat_range: Optional[FloatRange] = None) -> "Phrase":
        """Return a new phrase with every note moved by ``offset`` beats."""

        result = Phrase(self.channel, beat_range)
        for note in self.notes():
            result.add(note.shifted(offset))
        return result

    def slice(self, beat_range: FloatRange, keep_left: bool = False, cut_right: bool = True) -> "Phrase":
        """Return a new unsized phrase with the notes inside ``beat_range``.

        @param beat_range (FloatRange): Range to extract.
        @param keep_left (bool): Keep notes that start before the range but
            ring into it, trimmed to start at ``beat_range.from_``.
        @param cut_right (bool): Shorten notes that extend past
            ``beat_range.to``; otherwise they keep their length.
        @returns Phrase: The extracted notes, positions unchanged.
        """

        result = Phrase(self.channel)
        if beat_range.is_empty:
            return result
        for note in self.notes():
            if note.position >= beat_range.to:
                continue
            if note.position < beat_range.from_:
                if not keep_left or note.end_position <= beat_range.from_:
                    continue
                note = NoteEvent(
                    note.pitch,
                    note.velocity,
                    beat_range.from_,
                    note.end_position - beat_range.from_,
                    note.channel,
                )
            if cut_right and note.end_position > beat_range.to:
                note = note.with_duration(beat_range.to - note.position)
            result.add(note)
        return result

    def _accept(self, note: NoteEvent) -> NoteEvent:
        if note.channel != self.channel:
            note = note.with_channel(self.channel)
        rng = self.beat_range
        if rng is not None and (
            note.position < rng.from_ - _EPSILON or note.end_position > rng.to + _EPSILON
        ):
            raise ValueError(f"Note {note} is outside the phrase range {rng}")
        return note
