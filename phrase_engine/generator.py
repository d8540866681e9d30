"""Pattern based phrase generation.

:class:`PatternGenerator` turns the song parts of a
:class:`~phrase_engine.song_structure.SongStructure` into one phrase per
rhythm voice by tiling pattern fragments from a
:class:`~phrase_engine.pattern_library.PatternLibrary`.

Algorithm (per song part)
-------------------------
::

    style = part.style or part.variation
    N = library.get_size_in_bars(style)
    for bar in range(part.start, part.end, N):          # one tile per N bars
        tile = beats of [bar, bar + N) clipped to the part
        if last tile and fill requested and fills exist:
            fill = choice(fill pool)  -> placed so it ends with the tile
            tile = tile minus the fill range
        standard = choice(standard pool) -> placed at the tile start
    accent pass (chord sequence), intensity, tempo bias

Every copied note gets a tiny velocity jitter (±2) so consecutive tiles of
the same fragment are never byte-identical.

Failure policy
--------------
* A style without standard fragments raises :class:`GenerationError`; the
  whole pass is aborted and no phrase is returned.
* A style without fill fragments silently plays its standard fragment in
  place of the requested fill.
* Standard fragments whose size differs from the first one of the style are
  skipped with a warning, so every tile has the same length.
* Chord data a user must fix raises :class:`UserErrorGenerationError`.
"""

from __future__ import annotations

import logging
import random
from typing import Dict, Iterable, Optional, Tuple

from .accents import DEFAULT_KIT, TEMPO_MAX, TEMPO_MIN, AccentProcessor, DrumKit
from .chords import ChordSequence
from .errors import GenerationError, UserErrorGenerationError
from .pattern_library import PatternFragment, PatternLibrary
from .phrase import Phrase
from .ranges import EMPTY_FLOAT_RANGE, FloatRange
from .rhythm import FillPolicy, HoldShotMode, Rhythm, RhythmVoice, VoiceKind
from .song_structure import SongPart, SongStructure

__all__ = [
    "GenerationError",
    "UserErrorGenerationError",
    "PatternGenerator",
    "compute_tempo_bias",
    "apply_intensity",
    "apply_position_bias",
    "intensity_factor",
]

# Probability of a fill for the random fill policies
FILL_PROBABILITIES = {FillPolicy.RANDOM: 0.5, FillPolicy.RANDOM_RARE: 0.25}
VELOCITY_JITTER = 2
INTENSITY_VELOCITY_STEP = 0.05

TEMPO_NORMAL = 120
TEMPO_HIGH = 240
TEMPO_HIGH_BIAS = -0.04
MAX_TEMPO_BIAS = 0.07


def compute_tempo_bias(tempo: int, factor: float = 0.0) -> float:
    """Return the note position shift (in beats) for ``tempo``.

    Drummers tend to play slightly ahead of the beat at fast tempi. The shift
    is ``0`` up to 120 BPM and grows linearly to ``-0.04`` beat at 240 BPM.
    ``factor`` (``-1`` to ``1``) adds a user preference of up to ±0.07 beat.
    The result is clamped to ±0.07 beat.

    >>> compute_tempo_bias(120)
    0.0
    >>> round(compute_tempo_bias(240), 3)
    -0.04
    """

    if not -1 <= factor <= 1:
        raise ValueError(f"factor must be between -1 and 1, got {factor}")
    t = min(max(tempo, TEMPO_NORMAL), TEMPO_HIGH)
    bias = (t - TEMPO_NORMAL) / (TEMPO_HIGH - TEMPO_NORMAL) * TEMPO_HIGH_BIAS
    bias += factor * MAX_TEMPO_BIAS
    return max(-MAX_TEMPO_BIAS, min(MAX_TEMPO_BIAS, bias))


def intensity_factor(intensity: int) -> float:
    """Velocity multiplier for an intensity in ``[-10, 10]``."""

    if not -10 <= intensity <= 10:
        raise ValueError(f"intensity must be between -10 and 10, got {intensity}")
    return 1 + INTENSITY_VELOCITY_STEP * intensity


def apply_intensity(phrase: Phrase, intensity: int, beat_range: FloatRange) -> None:
    """Scale the velocity of the notes starting in ``beat_range``."""

    if intensity == 0:
        return
    factor = intensity_factor(intensity)
    for handle, note in phrase.get_items_in(beat_range):
        velocity = max(min(1, note.velocity), min(127, int(round(note.velocity * factor))))
        phrase.replace(handle, note.with_velocity(velocity))


def apply_position_bias(phrase: Phrase, bias: float, beat_range: FloatRange) -> None:
    """Shift the notes of ``beat_range`` by ``bias`` beats, staying in the range.

    A note pushed past the lower bound starts on it; a note pushed past the
    upper bound is shortened.
    """

    if bias == 0:
        return
    for handle, note in phrase.get_items_in(beat_range):
        pos = max(beat_range.from_, note.position + bias)
        duration = note.duration
        if pos + duration > beat_range.to:
            duration = beat_range.to - pos
        if duration <= 0:
            continue
        phrase.replace(handle, note.with_position(pos).with_duration(duration))


class PatternGenerator:
    """Generate drums/percussion phrases by tiling library fragments.

    Parameters
    ----------
    library:
        Pattern library shared read-only by every generation pass.
    rng:
        Random source for fragment picks, fill decisions, velocity jitter and
        crash cymbals. Pass a seeded :class:`random.Random` for reproducible
        output.
    tempo:
        Song tempo in BPM (10-400).
    tempo_bias_factor:
        User preference in ``[-1, 1]`` added to the tempo bias.
    hold_shot_mode:
        Which hold/shot chords the accent pass reacts to.
    kit:
        Drum pitches used by the accent pass.
    nb_cells_per_beat:
        Accent grid resolution, ``3`` for swing feels.
    """

    def __init__(
        self,
        library: PatternLibrary,
        rng: Optional[random.Random] = None,
        tempo: int = 120,
        tempo_bias_factor: float = 0.0,
        hold_shot_mode: HoldShotMode = HoldShotMode.NORMAL,
        kit: DrumKit = DEFAULT_KIT,
        nb_cells_per_beat: int = 3,
    ) -> None:
        if not TEMPO_MIN <= tempo <= TEMPO_MAX:
            raise ValueError(f"tempo must be between {TEMPO_MIN} and {TEMPO_MAX}, got {tempo}")
        if not -1 <= tempo_bias_factor <= 1:
            raise ValueError(f"tempo_bias_factor must be between -1 and 1, got {tempo_bias_factor}")
        self.library = library
        self.rng = rng or random.Random()
        self.tempo = tempo
        self.tempo_bias_factor = tempo_bias_factor
        self.hold_shot_mode = hold_shot_mode
        self.kit = kit
        self.nb_cells_per_beat = nb_cells_per_beat

    # ------------------------------------------------------------------
    # Whole song
    # ------------------------------------------------------------------
    def generate(
        self,
        song_structure: SongStructure,
        chord_sequence: Optional[ChordSequence] = None,
        parts: Optional[Iterable[SongPart]] = None,
    ) -> Dict[Tuple[Rhythm, RhythmVoice], Phrase]:
        """Generate one phrase per rhythm voice for ``parts`` (all by default).

        Returned phrases are sized to the song beat range and use the MIDI
        channels of :meth:`SongStructure.allocate_channels`.

        Raises
        ------
        GenerationError
            If the song is empty or a part's style has no standard pattern.
        UserErrorGenerationError
            If ``chord_sequence`` doesn't fit a part.
        """

        song_parts = song_structure.get_song_parts()
        if not song_parts:
            raise GenerationError("The song structure is empty, nothing to generate")
        selected = song_parts if parts is None else list(parts)
        for part in selected:
            if part not in song_parts:
                raise ValueError(f"{part!r} is not part of the song structure")

        channels = song_structure.allocate_channels()
        song_range = song_structure.get_beat_range()
        result: Dict[Tuple[Rhythm, RhythmVoice], Phrase] = {}
        for key, channel in channels.items():
            result[key] = Phrase(channel, song_range)

        for part in selected:
            part_range = song_structure.get_beat_range(part.bar_range)
            chords = self._part_chords(part, chord_sequence)
            phrases = self.generate_part(part, part_range, chords)
            for voice in part.rhythm.voices:
                out = result[(part.rhythm, voice)]
                for note in phrases[voice.name].notes():
                    out.add(note)
        logging.info("Generated %d phrase(s) for %d song part(s)", len(result), len(selected))
        return result

    def generate_part(
        self, part: SongPart, part_beat_range: FloatRange, chords: Optional[ChordSequence] = None
    ) -> Dict[str, Phrase]:
        """Tile then post-process the phrases of one song part."""

        phrases = self.fill_phrases(part, part_beat_range)
        self.post_process(phrases, part, part_beat_range, chords)
        return phrases

    def _part_chords(self, part: SongPart, chord_sequence: Optional[ChordSequence]) -> Optional[ChordSequence]:
        if chord_sequence is None:
            return None
        ts = part.rhythm.time_signature
        if chord_sequence.time_signature != ts:
            raise UserErrorGenerationError(
                f"Song part '{part.name}' is in {ts} but the chord chart is written in "
                f"{chord_sequence.time_signature}."
            )
        chords = chord_sequence.subsequence(part.bar_range)
        if chords.is_empty() or chords.bar_range != part.bar_range:
            raise UserErrorGenerationError(
                f"The chord chart does not cover song part '{part.name}' "
                f"(bars {part.start_bar_index + 1} to {part.start_bar_index + part.nb_bars})."
            )
        return chords

    # ------------------------------------------------------------------
    # Tiling
    # ------------------------------------------------------------------
    def resolve_style(self, part: SongPart) -> str:
        """Style key of ``part``: explicit ``style`` value, else ``variation``."""

        style = part.values.get("style") or part.values.get("variation")
        if not style:
            raise GenerationError(f"Song part '{part.name}' has no style or variation value")
        return str(style)

    def need_fill(self, part: SongPart) -> bool:
        """Decide whether the last tile of ``part`` plays a fill."""

        policy = part.values.get("fill", FillPolicy.NONE)
        if policy is FillPolicy.NONE:
            return False
        if policy in (FillPolicy.ALWAYS, FillPolicy.BREAK):
            return True
        return self.rng.random() < FILL_PROBABILITIES[policy]

    def fill_phrases(self, part: SongPart, part_beat_range: FloatRange) -> Dict[str, Phrase]:
        """Return the tiled content of ``part`` keyed by voice name.

        Raises
        ------
        GenerationError
            If the resolved style has no standard fragment.
        """

        style = self.resolve_style(part)
        standard = self.library.get_standard(style)
        if not standard:
            raise GenerationError(
                f"No pattern available for style '{style}' (song part '{part.name}')"
            )
        if self.library.time_signature != part.rhythm.time_signature:
            raise GenerationError(
                f"Pattern library is in {self.library.time_signature} but song part "
                f"'{part.name}' is in {part.rhythm.time_signature}"
            )
        size = self.library.get_size_in_bars(style)
        same_size = [f for f in standard if f.size_in_bars == size]
        if len(same_size) != len(standard):
            logging.warning(
                "Style '%s' mixes pattern sizes, skipping %d standard pattern(s) not %d bar(s) long",
                style,
                len(standard) - len(same_size),
                size,
            )
            standard = same_size
        fills = self.library.get_fill(style)
        want_fill = self.need_fill(part)
        if want_fill and not fills:
            logging.debug("No fill for style '%s', using a standard pattern instead", style)
            want_fill = False
        logging.debug("Part %r: style=%s size=%d fill=%s", part.name, style, size, want_fill)

        bar_beats = part.rhythm.time_signature.natural_beats
        phrases = {v.name: Phrase(v.preferred_channel, part_beat_range) for v in part.rhythm.voices}
        last_bar = part.bar_range.to
        bar = part.start_bar_index
        while bar <= last_bar:
            tile_start = part_beat_range.from_ + (bar - part.start_bar_index) * bar_beats
            tile = FloatRange(tile_start, tile_start + size * bar_beats)
            is_last = bar + size - 1 >= last_bar
            if is_last:
                tile = tile.intersection(part_beat_range)
            standard_range = tile
            fragment = self.rng.choice(standard)

            if is_last and want_fill:
                fill = self.rng.choice(fills)
                fill_start = tile.to - fill.size_in_bars * bar_beats
                fill_range = FloatRange(max(tile.from_, fill_start), tile.to)
                if fill_range.from_ > tile.from_:
                    standard_range = FloatRange(tile.from_, fill_range.from_)
                else:
                    standard_range = EMPTY_FLOAT_RANGE
                self._copy_fragment(fill, phrases, fill_start, fill_range)

            if not standard_range.is_empty:
                self._copy_fragment(fragment, phrases, tile_start, standard_range)
            bar += size
        return phrases

    def _copy_fragment(
        self, fragment: PatternFragment, phrases: Dict[str, Phrase], offset: float, window: FloatRange
    ) -> None:
        """Copy ``fragment`` so its beat 0 lands on ``offset``, keeping ``window``."""

        shift = offset - fragment.origin_beat
        for voice, target in phrases.items():
            source = fragment.get_phrase(voice)
            for note in source.notes():
                pos = note.position + shift
                if not window.contains(pos, exclude_upper=True):
                    continue
                duration = min(note.duration, window.to - pos)
                velocity = note.velocity + self.rng.randint(-VELOCITY_JITTER, VELOCITY_JITTER)
                # Velocity 0 reads as a note-off
                velocity = max(1, min(127, velocity))
                target.add(note.with_position(pos).with_duration(duration).with_velocity(velocity))

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------
    def post_process(
        self,
        phrases: Dict[str, Phrase],
        part: SongPart,
        part_beat_range: FloatRange,
        chords: Optional[ChordSequence] = None,
    ) -> None:
        """Accent pass, intensity and tempo bias for the phrases of ``part``."""

        if chords is not None and not chords.is_empty():
            hold_shot_mode = part.values.get("hold_shot") or self.hold_shot_mode
            processor = AccentProcessor(
                chords,
                part_beat_range.from_,
                self.tempo,
                self.rng,
                nb_cells_per_beat=self.nb_cells_per_beat,
            )
            for voice in part.rhythm.voices:
                if voice.kind is not VoiceKind.DRUMS:
                    continue
                phrase = phrases[voice.name]
                processor.process_accent_drums(phrase, self.kit)
                processor.process_hold_shot_drums(phrase, hold_shot_mode, self.kit)

        intensity = part.values.get("intensity", 0) or 0
        bias = compute_tempo_bias(self.tempo, self.tempo_bias_factor)
        for phrase in phrases.values():
            apply_intensity(phrase, intensity, part_beat_range)
            apply_position_bias(phrase, bias, part_beat_range)
