"""Render generated phrases as a Standard MIDI File.

Imports from ``mido`` are deferred inside :func:`write_phrases` so the rest of
the package (generation, humanization) works without the optional MIDI
dependency installed.

Positions are expressed in natural beats. For simple meters a natural beat is
a quarter note (``4/4``) or a half note (``2/2``); for compound meters it is a
dotted quarter (``6/8``). The conversion to MIDI ticks and the tempo meta
message take this into account so a phrase at ``tempo`` BPM plays at
``tempo`` natural beats per minute.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from mido import MidiFile

from .phrase import Phrase
from .position import FOUR_FOUR, TimeSignature

__all__ = ["write_phrases", "quarters_per_beat", "TICKS_PER_BEAT"]

# Resolution of the written file, in ticks per quarter note
TICKS_PER_BEAT = 480


def quarters_per_beat(ts: TimeSignature) -> float:
    """Number of quarter notes in one natural beat of ``ts``."""

    return (ts.upper * 4 / ts.lower) / ts.natural_beats


def write_phrases(
    phrases: Mapping[str, Phrase],
    tempo: int,
    ts: TimeSignature = FOUR_FOUR,
    output_file: Optional[Union[str, Path]] = None,
) -> "MidiFile":
    """Build a MIDI file with one track per phrase and optionally save it.

    @param phrases: Track name to phrase mapping, tracks are written in the
        mapping order.
    @param tempo: Tempo in natural beats per minute.
    @param ts: Time signature written in the first track.
    @param output_file: Destination path. ``None`` only builds the file.
    @returns: The ``mido.MidiFile`` object.
    """

    if tempo <= 0:
        raise ValueError("tempo must be a positive integer")

    try:
        import mido
        from mido import Message, MetaMessage, MidiFile, MidiTrack
    except ImportError as exc:  # pragma: no cover - exercised when mido is missing
        raise ImportError(
            "mido is required to write MIDI files; install it with 'pip install mido'"
        ) from exc

    ratio = quarters_per_beat(ts)
    mid = MidiFile(ticks_per_beat=TICKS_PER_BEAT)

    conductor = MidiTrack()
    mid.tracks.append(conductor)
    conductor.append(MetaMessage("set_tempo", tempo=mido.bpm2tempo(tempo * ratio)))
    conductor.append(
        MetaMessage(
            "time_signature",
            numerator=ts.upper,
            denominator=ts.lower,
        )
    )

    def to_ticks(beats: float) -> int:
        return int(round(beats * ratio * TICKS_PER_BEAT))

    for name, phrase in phrases.items():
        track = MidiTrack()
        mid.tracks.append(track)
        track.append(MetaMessage("track_name", name=name))
        # (tick, order, message): note_off (order 0) sorts before note_on at the same tick
        events: List[Tuple[int, int, "Message"]] = []
        for note in phrase.notes():
            start = to_ticks(note.position)
            end = max(start + 1, to_ticks(note.end_position))
            events.append(
                (start, 1, Message("note_on", note=note.pitch, velocity=note.velocity, channel=note.channel))
            )
            events.append((end, 0, Message("note_off", note=note.pitch, velocity=0, channel=note.channel)))
        events.sort(key=lambda e: (e[0], e[1]))
        current = 0
        for tick, _order, msg in events:
            track.append(msg.copy(time=tick - current))
            current = tick

    if output_file is not None:
        # Create the destination folder so ``save`` works for new paths
        Path(output_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        mid.save(str(output_file))
        logging.info("MIDI file saved to %s", output_file)
    return mid
