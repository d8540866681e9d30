"""Randomised timing and velocity deviations for generated phrases.

A :class:`Humanizer` is attached to a :class:`~phrase_engine.phrase.Phrase`
and a subset of its notes. Every tracked note receives a pair of random
factors once; :meth:`Humanizer.humanize` then derives the humanized note from
the stored *original* note, the factors and a :class:`HumanizerConfig`.
Because the computation always starts from the original values, applying a
configuration is not cumulative: ``humanize(a)`` followed by ``humanize(b)``
gives the same phrase as ``humanize(b)`` alone.

Design Notes
------------
* Factors are drawn from a Gaussian (standard deviation ``0.3``) clipped to
  ``[-1, 1]`` with a :class:`numpy.random.Generator`. Pass ``seed`` or
  ``rng`` for reproducible results.
* Notes are referenced by their phrase handle, which survives
  :meth:`Phrase.replace`, so no bookkeeping has to be re-keyed when a note is
  humanized.
* ``on_change(old_config, new_config)`` is called when the configuration
  changes; there is no notification per note.

Example
-------
>>> h = Humanizer(phrase, phrase.beat_range, tempo=120, seed=1)
>>> h.humanize(HumanizerConfig(0.5, 0.0, 0.3))
>>> h.new_seed()           # same config, different random factors
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from .phrase import NoteEvent, Phrase
from .ranges import FloatRange

__all__ = [
    "HumanizerConfig",
    "DEFAULT_CONFIG",
    "NoteRandomFactors",
    "Humanizer",
    "max_timing_deviation",
]

MAX_TIMING_DEVIATION = 0.25
MAX_TIMING_BIAS_DEVIATION = 0.25
MAX_VELOCITY_DEVIATION = 20
FACTOR_STD_DEV = 0.3
TEMPO_MIN = 10
TEMPO_MAX = 400
# Humanized notes start at least this far before the end of the allowed range
POSITION_MARGIN = 0.1
DURATION_MARGIN = 0.05


@dataclass(frozen=True)
class HumanizerConfig:
    """User settings of a humanizer.

    ``timing_randomness`` and ``velocity_randomness`` are in ``[0, 1]``,
    ``timing_bias`` is in ``[-0.5, 0.5]`` (negative plays ahead of the beat).
    """

    timing_randomness: float = 0.0
    timing_bias: float = 0.0
    velocity_randomness: float = 0.0

    def __post_init__(self) -> None:
        if not 0 <= self.timing_randomness <= 1:
            raise ValueError(f"timing_randomness must be between 0 and 1, got {self.timing_randomness}")
        if not -0.5 <= self.timing_bias <= 0.5:
            raise ValueError(f"timing_bias must be between -0.5 and 0.5, got {self.timing_bias}")
        if not 0 <= self.velocity_randomness <= 1:
            raise ValueError(f"velocity_randomness must be between 0 and 1, got {self.velocity_randomness}")

    def with_timing_randomness(self, value: float) -> "HumanizerConfig":
        return replace(self, timing_randomness=value)

    def with_timing_bias(self, value: float) -> "HumanizerConfig":
        return replace(self, timing_bias=value)

    def with_velocity_randomness(self, value: float) -> "HumanizerConfig":
        return replace(self, velocity_randomness=value)


DEFAULT_CONFIG = HumanizerConfig()


@dataclass(frozen=True)
class NoteRandomFactors:
    """Per-note random factors, each in ``[-1, 1]``."""

    timing_factor: float
    velocity_factor: float

    @classmethod
    def draw(cls, rng: np.random.Generator) -> "NoteRandomFactors":
        values = np.clip(rng.normal(0.0, FACTOR_STD_DEV, size=2), -1.0, 1.0)
        return cls(float(values[0]), float(values[1]))


def max_timing_deviation(tempo: int) -> float:
    """Maximum timing deviation in beats at ``tempo``.

    Slow tempi allow a wider deviation (up to ``+0.1`` beat), fast tempi a
    narrower one (down to ``-0.1`` beat), around a 50 BPM pivot.
    """

    adjustment = max(-0.1, min(0.1, (50 - tempo) * 0.001))
    return MAX_TIMING_DEVIATION + adjustment


def _check_tempo(tempo: int) -> None:
    if not TEMPO_MIN <= tempo <= TEMPO_MAX:
        raise ValueError(f"tempo must be between {TEMPO_MIN} and {TEMPO_MAX}, got {tempo}")


def _check_in_range(note: NoteEvent, beat_range: FloatRange) -> None:
    if note.position < beat_range.from_ - 1e-9 or note.end_position > beat_range.to + 1e-9:
        raise ValueError(
            f"Note {note.position}-{note.end_position} is outside the humanizer range {beat_range}"
        )


class Humanizer:
    """Apply reproducible random deviations to notes of a phrase.

    Parameters
    ----------
    phrase:
        Phrase holding the notes. The humanizer replaces notes in it.
    beat_range:
        Range the humanized notes must stay within.
    tempo:
        Tempo in BPM (10-400).
    handles:
        Handles of the notes to track, all notes of ``phrase`` by default.
    seed:
        Seed for a new :func:`numpy.random.default_rng`, ignored when ``rng``
        is given.
    rng:
        Random generator used for the factor draws.
    on_change:
        Called with ``(old_config, new_config)`` when the configuration
        changes.
    """

    def __init__(
        self,
        phrase: Phrase,
        beat_range: FloatRange,
        tempo: int,
        handles: Optional[Iterable[int]] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
        on_change: Optional[Callable[[HumanizerConfig, HumanizerConfig], None]] = None,
    ) -> None:
        _check_tempo(tempo)
        if beat_range.is_empty:
            raise ValueError("beat_range must not be empty")
        tracked = phrase.handles() if handles is None else list(handles)
        for handle in tracked:
            if handle not in phrase:
                raise ValueError(f"Note handle {handle} is not part of the phrase")
            _check_in_range(phrase.get(handle), beat_range)

        self.phrase = phrase
        self.beat_range = beat_range
        self._tempo = tempo
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._on_change = on_change
        self._config = DEFAULT_CONFIG
        self._enabled = True
        self._originals: Dict[int, NoteEvent] = {}
        self._factors: Dict[int, NoteRandomFactors] = {}
        for handle in tracked:
            if handle in self._originals:
                continue
            self._originals[handle] = phrase.get(handle)
            self._factors[handle] = NoteRandomFactors.draw(self._rng)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def user_config(self) -> HumanizerConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def tempo(self) -> int:
        return self._tempo

    def handles(self) -> List[int]:
        """Tracked note handles."""

        return list(self._originals)

    def get_original(self, handle: int) -> NoteEvent:
        """Return the note as it was before humanization."""

        try:
            return self._originals[handle]
        except KeyError:
            raise ValueError(f"Note handle {handle} is not tracked") from None

    def get_factors(self, handle: int) -> NoteRandomFactors:
        try:
            return self._factors[handle]
        except KeyError:
            raise ValueError(f"Note handle {handle} is not tracked") from None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def humanize(self, config: HumanizerConfig) -> None:
        """Humanize the tracked notes with ``config``.

        When the humanizer is disabled the configuration is only recorded; it
        is applied once :meth:`set_enabled` re-enables the humanizer.
        """

        old = self._config
        self._config = config
        if self._enabled:
            self._apply()
        if config != old and self._on_change is not None:
            self._on_change(old, config)

    def new_seed(self) -> None:
        """Draw new random factors and re-apply the current configuration."""

        for handle in self._originals:
            self._factors[handle] = NoteRandomFactors.draw(self._rng)
        logging.debug("Humanizer: new random factors for %d note(s)", len(self._factors))
        if self._enabled:
            self._apply()

    def add_notes(self, handles: Iterable[int]) -> None:
        """Track more notes of the phrase and re-apply the configuration.

        Raises
        ------
        ValueError
            If a handle is not part of the phrase or its note lies outside
            :attr:`beat_range`. Nothing is tracked in that case.
        """

        handles = list(handles)
        for handle in handles:
            if handle not in self.phrase:
                raise ValueError(f"Note handle {handle} is not part of the phrase")
            _check_in_range(self.phrase.get(handle), self.beat_range)
        for handle in handles:
            if handle in self._originals:
                continue
            self._originals[handle] = self.phrase.get(handle)
            self._factors[handle] = NoteRandomFactors.draw(self._rng)
        if self._enabled:
            self._apply()

    def remove_notes(self, handles: Iterable[int]) -> None:
        """Stop tracking ``handles``; their notes keep their current values."""

        for handle in handles:
            self._originals.pop(handle, None)
            self._factors.pop(handle, None)

    def handle_moved(self, handle: int) -> None:
        """Use the current value of a note edited by the user as its original."""

        if handle not in self._originals:
            raise ValueError(f"Note handle {handle} is not tracked")
        if handle not in self.phrase:
            raise RuntimeError(f"Tracked note handle {handle} disappeared from the phrase")
        note = self.phrase.get(handle)
        _check_in_range(note, self.beat_range)
        self._originals[handle] = note

    def restore(self) -> None:
        """Put back the original notes and reset the configuration."""

        for handle, original in self._originals.items():
            self._check_tracked(handle)
            self.phrase.replace(handle, original)
        old = self._config
        self._config = DEFAULT_CONFIG
        if old != DEFAULT_CONFIG and self._on_change is not None:
            self._on_change(old, DEFAULT_CONFIG)

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self._apply()

    def set_tempo(self, tempo: int) -> None:
        _check_tempo(tempo)
        if tempo == self._tempo:
            return
        self._tempo = tempo
        if self._enabled:
            self._apply()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _check_tracked(self, handle: int) -> None:
        if handle not in self.phrase:
            raise RuntimeError(f"Tracked note handle {handle} disappeared from the phrase")

    def _apply(self) -> None:
        config = self._config
        timing_dev = max_timing_deviation(self._tempo)
        for handle, original in self._originals.items():
            self._check_tracked(handle)
            factors = self._factors[handle]
            shift = (
                factors.timing_factor * timing_dev * config.timing_randomness
                + MAX_TIMING_BIAS_DEVIATION * config.timing_bias
            )
            self.phrase.replace(handle, self._humanized(original, factors, shift, config))

    def _humanized(
        self, original: NoteEvent, factors: NoteRandomFactors, shift: float, config: HumanizerConfig
    ) -> NoteEvent:
        lower, upper = self.beat_range.from_, self.beat_range.to
        pos = original.position + shift
        if shift > 0:
            pos = min(pos, max(upper - POSITION_MARGIN, original.position))
        pos = max(lower, pos)

        duration = original.duration
        if pos + duration > upper:
            duration = upper - DURATION_MARGIN - pos
            if duration <= 0:
                duration = upper - pos

        delta = int(round(factors.velocity_factor * MAX_VELOCITY_DEVIATION * config.velocity_randomness))
        velocity = max(0, min(127, original.velocity + delta))

        if pos == original.position and duration == original.duration and velocity == original.velocity:
            return original
        return NoteEvent(original.pitch, velocity, pos, duration, original.channel)
