"""Phrase Engine library.

This package turns a song timeline into drums and percussion phrases. A
typical workflow builds a :class:`SongStructure` from song parts, feeds it to
a :class:`PatternGenerator` together with a :class:`PatternLibrary` and an
optional :class:`ChordSequence`, then runs a :class:`Humanizer` over the
resulting phrases before writing them with :func:`write_phrases`.

Underlying Algorithm
--------------------
Each song part resolves a *style* from its parameter values. The library
holds, per style, a pool of standard fragments and a pool of fill fragments
of the same length. Fragments are tiled over the part, a fill may replace the
end of the last tile, and the result is post-processed::

    for part in song_structure:
        for tile in tiles(part, library.get_size_in_bars(style)):
            copy(random_choice(standard_pool), tile)
        maybe_copy(random_choice(fill_pool), end_of_last_tile)
        accent_pass(chords); intensity(); tempo_bias()

Humanization is a separate, reversible pass: every note keeps its original
value and a pair of random factors so the deviations can be recomputed for
any configuration, re-rolled with a new seed or removed entirely.

Features include:
- Position quantization on half-bar, beat and sub-beat grids.
- Non-overlapping song timeline with vetoable edits and change callbacks.
- Pattern libraries loaded from annotated MIDI files or built in.
- Seedable random sources for reproducible output.
- Command line interface writing Standard MIDI Files.
"""

__version__ = "0.1.0"

from .chords import ChordFeature, ChordSequence, ChordSymbol  # noqa: E402
from .errors import GenerationError, UserErrorGenerationError  # noqa: E402
from .generator import PatternGenerator  # noqa: E402
from .humanizer import DEFAULT_CONFIG, Humanizer, HumanizerConfig  # noqa: E402
from .pattern_library import PatternFragment, PatternLibrary, build_default_library, load_midi_library  # noqa: E402
from .phrase import NoteEvent, Phrase  # noqa: E402
from .position import Position, TimeSignature  # noqa: E402
from .quantizer import Quantization, Quantizer  # noqa: E402
from .ranges import FloatRange, IntRange  # noqa: E402
from .rhythm import FillPolicy, Rhythm, RhythmVoice, make_swing_rhythm  # noqa: E402
from .song_structure import SongPart, SongStructure, UnsupportedEditError  # noqa: E402

__all__ = [
    "__version__",
    "ChordFeature",
    "ChordSequence",
    "ChordSymbol",
    "GenerationError",
    "UserErrorGenerationError",
    "PatternGenerator",
    "DEFAULT_CONFIG",
    "Humanizer",
    "HumanizerConfig",
    "PatternFragment",
    "PatternLibrary",
    "build_default_library",
    "load_midi_library",
    "NoteEvent",
    "Phrase",
    "Position",
    "TimeSignature",
    "Quantization",
    "Quantizer",
    "FloatRange",
    "IntRange",
    "FillPolicy",
    "Rhythm",
    "RhythmVoice",
    "make_swing_rhythm",
    "SongPart",
    "SongStructure",
    "UnsupportedEditError",
    "run_cli",
    "main",
]


def run_cli(argv=None):
    from .cli import run_cli as _run_cli
    _run_cli(argv)


def main(argv=None):
    from .cli import main as _main
    _main(argv)
