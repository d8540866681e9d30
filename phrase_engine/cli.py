"""Command line front end for the phrase engine.

This module implements the console entry points of the project. The
``run_cli`` function parses command line arguments, builds a song structure
from ``--parts``, generates the drums and percussion phrases, optionally
humanizes them and writes a MIDI file. :func:`main` configures logging and
delegates to ``run_cli``.

Example
-------
Running ``python -m phrase_engine --parts "Intro:2,Main A-1:8,Main B-1:8" \
    --tempo 160 --chords "C7 | F7 | C7 | C7!" --fill always --output out.mid``
creates an 18-bar swing drum track and saves it to ``out.mid``. Chord charts
shorter than the song are repeated until they cover it.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .chords import ChordSequence
from .config import (
    DEFAULT_SETTINGS_FILE,
    humanizer_config_from_settings,
    humanizer_config_to_settings,
    load_settings,
    save_settings,
)
from .errors import GenerationError
from .generator import PatternGenerator
from .humanizer import DEFAULT_CONFIG, Humanizer, HumanizerConfig
from .midi_io import write_phrases
from .pattern_library import PatternLibrary, build_default_library, load_midi_library
from .position import TimeSignature
from .rhythm import FillPolicy, HoldShotMode, make_swing_rhythm
from .song_structure import SongPart, SongStructure

__all__ = ["run_cli", "main", "parse_parts", "repeat_chart"]


def parse_parts(text: str) -> List[Tuple[str, int]]:
    """Parse ``"Style:bars,Style:bars"`` into ``(style, bars)`` tuples.

    Style names may contain spaces (``"Main A-1:8"``); the bar count follows
    the last colon.
    """

    parts = []
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        style, sep, bars = item.rpartition(":")
        if not sep or not style.strip():
            raise ValueError(f"Invalid song part '{item}', expected STYLE:BARS")
        try:
            nb_bars = int(bars)
        except ValueError:
            raise ValueError(f"Invalid bar count in song part '{item}'") from None
        if nb_bars < 1:
            raise ValueError(f"Song part '{item}' must have at least one bar")
        parts.append((style.strip(), nb_bars))
    if not parts:
        raise ValueError("At least one song part is required")
    return parts


def repeat_chart(text: str, nb_bars: int) -> str:
    """Repeat the bars of a chord chart until it covers ``nb_bars`` bars."""

    bars = [b for b in text.strip().strip("|").split("|")]
    if not bars or not any(b.strip() for b in bars):
        return text
    result = [bars[i % len(bars)] for i in range(max(nb_bars, len(bars)))]
    return "|".join(result)


def _build_parser(settings: dict, stored: HumanizerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate swing drums and percussion phrases and save them as a MIDI file."
    )
    parser.add_argument("--list-styles", action="store_true", help="List the styles of the pattern library and exit")
    parser.add_argument(
        "--parts",
        type=str,
        default="Main A-1:8",
        help="Comma-separated song parts as STYLE:BARS (e.g. 'Intro:2,Main A-1:8').",
    )
    parser.add_argument("--timesig", type=str, default="4/4", help="Time signature (e.g. 4/4, 3/4, 6/8).")
    parser.add_argument("--tempo", type=int, default=settings.get("tempo", 120), help="Tempo in BPM (10-400).")
    parser.add_argument("--chords", type=str, help="Chord chart such as 'C7 F7 | Bb7! | F7^'.")
    parser.add_argument("--patterns", type=str, help="MIDI pattern file used instead of the built-in library.")
    parser.add_argument(
        "--fill",
        type=str,
        default=FillPolicy.NONE.value,
        choices=[p.value for p in FillPolicy],
        help="Fill policy applied at the end of each song part.",
    )
    parser.add_argument("--intensity", type=int, default=0, help="Velocity intensity from -10 to 10.")
    parser.add_argument(
        "--hold-shot-mode",
        type=str,
        default=settings.get("hold_shot_mode", HoldShotMode.NORMAL.value),
        choices=[m.value for m in HoldShotMode],
        help="Which hold/shot chords silence the drums.",
    )
    parser.add_argument(
        "--tempo-bias",
        type=float,
        default=settings.get("tempo_bias_factor", 0.0),
        help="Play ahead (-1) or behind (1) the beat.",
    )
    parser.add_argument("--seed", type=int, help="Random seed for reproducible output")
    parser.add_argument(
        "--timing-randomness", type=float, default=stored.timing_randomness, help="0 to 1"
    )
    parser.add_argument("--timing-bias", type=float, default=stored.timing_bias, help="-0.5 to 0.5")
    parser.add_argument(
        "--velocity-randomness", type=float, default=stored.velocity_randomness, help="0 to 1"
    )
    parser.add_argument("--no-humanize", dest="humanize", action="store_false", help="Disable the humanizer")
    parser.add_argument("--output", type=str, help="Output MIDI file path.")
    parser.add_argument(
        "--settings-file",
        type=str,
        default=str(DEFAULT_SETTINGS_FILE),
        help="JSON file holding default tempo and humanizer settings.",
    )
    parser.add_argument("--save-settings", action="store_true", help="Store tempo and humanizer options as defaults")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages")
    return parser


def _load_library(args: argparse.Namespace, ts: TimeSignature) -> PatternLibrary:
    if args.patterns:
        return load_midi_library(args.patterns, ts)
    return build_default_library(ts, seed=args.seed or 0)


def run_cli(argv: Optional[Sequence[str]] = None) -> None:
    """Parse CLI arguments and generate a MIDI file.

    Invalid options and generation failures are logged and terminate the
    process with exit status ``1``.
    """

    argv = list(sys.argv[1:] if argv is None else argv)
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--settings-file", type=str, default=str(DEFAULT_SETTINGS_FILE))
    pre_args, _ = pre_parser.parse_known_args(argv)
    settings_path = Path(pre_args.settings_file).expanduser()
    settings = load_settings(settings_path)

    try:
        stored = humanizer_config_from_settings(settings)
    except (TypeError, ValueError) as exc:
        logging.warning("Ignoring stored humanizer settings: %s", exc)
        stored = DEFAULT_CONFIG

    args = _build_parser(settings, stored).parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        ts = TimeSignature.parse(args.timesig)
        library = _load_library(args, ts)
    except (ValueError, ImportError, OSError) as exc:
        logging.error(str(exc))
        sys.exit(1)

    if args.list_styles:
        print("\n".join(library.styles()))
        return
    if not args.output:
        logging.error("An output file is required (use --output).")
        sys.exit(1)

    try:
        config = HumanizerConfig(args.timing_randomness, args.timing_bias, args.velocity_randomness)
        hold_shot_mode = HoldShotMode(args.hold_shot_mode)
        fill = FillPolicy.parse(args.fill)
        rhythm = make_swing_rhythm(ts=ts)
        structure = SongStructure()
        parts = []
        start = 0
        for style, nb_bars in parse_parts(args.parts):
            values = {"variation": style, "fill": fill, "intensity": args.intensity}
            parts.append(SongPart(rhythm, start, nb_bars, name=style, values=values))
            start += nb_bars
        structure.add_song_parts(parts)
        chords = None
        if args.chords:
            chords = ChordSequence.from_text(repeat_chart(args.chords, start), ts)
        generator = PatternGenerator(
            library,
            rng=random.Random(args.seed),
            tempo=args.tempo,
            tempo_bias_factor=args.tempo_bias,
            hold_shot_mode=hold_shot_mode,
        )
        phrases = generator.generate(structure, chords)
    except (ValueError, GenerationError) as exc:
        logging.error(str(exc))
        sys.exit(1)

    if args.humanize and config != DEFAULT_CONFIG:
        np_rng = np.random.default_rng(args.seed)
        for phrase in phrases.values():
            Humanizer(phrase, phrase.beat_range, args.tempo, rng=np_rng).humanize(config)

    tracks = {voice.name: phrase for (_rhythm, voice), phrase in phrases.items()}
    try:
        write_phrases(tracks, args.tempo, ts, args.output)
    except (OSError, ImportError) as exc:
        logging.error("Could not write MIDI file: %s", exc)
        sys.exit(1)

    if args.save_settings:
        settings["tempo"] = args.tempo
        settings["humanizer"] = humanizer_config_to_settings(config)
        settings["tempo_bias_factor"] = args.tempo_bias
        settings["hold_shot_mode"] = hold_shot_mode.value
        save_settings(settings, settings_path)
    logging.info("Phrase generation complete.")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Configure logging and run the command line interface."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    run_cli(argv)


if __name__ == "__main__":
    main()
