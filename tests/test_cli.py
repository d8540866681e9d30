"""Command line interface tests.

``run_cli`` is exercised end to end with the built-in pattern library and the
real ``mido`` writer. Every invocation points ``--settings-file`` at a
temporary path so the user's home directory is never touched.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from phrase_engine import cli  # noqa: E402


def _run(tmp_path, *extra):
    settings = tmp_path / "settings.json"
    cli.run_cli(["--settings-file", str(settings), *extra])
    return settings


def test_parse_parts():
    assert cli.parse_parts("Intro:2, Main A-1:8") == [("Intro", 2), ("Main A-1", 8)]
    for bad in ("Intro", "Intro:x", "Intro:0", ":4", " , "):
        with pytest.raises(ValueError):
            cli.parse_parts(bad)


def test_repeat_chart():
    assert cli.repeat_chart("C7 | F7", 5) == "C7 | F7|C7 | F7|C7 "
    assert cli.repeat_chart("C7 | F7 | G7", 2) == "C7 | F7 | G7"


def test_run_cli_writes_midi(tmp_path):
    """A two-part song with chords and humanization is saved as MIDI."""

    from mido import MidiFile

    out = tmp_path / "out.mid"
    _run(
        tmp_path,
        "--parts", "Intro:1,Main A-1:4",
        "--chords", "C7 | F7 | C7 | G7!",
        "--fill", "always",
        "--timing-randomness", "0.4",
        "--velocity-randomness", "0.3",
        "--seed", "7",
        "--output", str(out),
    )
    mid = MidiFile(str(out))
    names = [msg.name for track in mid.tracks for msg in track if msg.type == "track_name"]
    assert names == ["drums", "percussion"]
    assert any(msg.type == "note_on" for msg in mid.tracks[1])


def test_run_cli_is_reproducible_with_seed(tmp_path):
    first, second = tmp_path / "a.mid", tmp_path / "b.mid"
    _run(tmp_path, "--seed", "3", "--timing-randomness", "0.5", "--output", str(first))
    _run(tmp_path, "--seed", "3", "--timing-randomness", "0.5", "--output", str(second))
    assert first.read_bytes() == second.read_bytes()


def test_list_styles(tmp_path, capsys):
    _run(tmp_path, "--list-styles")
    styles = capsys.readouterr().out.split("\n")
    assert "Main A-1" in styles
    assert "Intro" in styles


@pytest.mark.parametrize(
    "extra",
    [
        ("--timesig", "4-4"),
        ("--parts", "Samba:4"),
        ("--parts", "Main A-1"),
        ("--intensity", "20"),
        ("--timing-bias", "0.9"),
        ("--chords", "C7 | Hm7"),
    ],
)
def test_invalid_options_exit(tmp_path, caplog, extra):
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as exc:
            _run(tmp_path, *extra, "--output", str(tmp_path / "out.mid"))
    assert exc.value.code == 1
    assert caplog.records


def test_missing_output_exits(tmp_path, caplog):
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as exc:
            _run(tmp_path)
    assert exc.value.code == 1
    assert "output" in caplog.text


def test_write_failure_exits(tmp_path, monkeypatch, caplog):
    def _fail(*_args, **_kwargs):
        raise OSError("permission denied")

    monkeypatch.setattr(cli, "write_phrases", _fail)
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as exc:
            _run(tmp_path, "--output", str(tmp_path / "out.mid"))
    assert exc.value.code == 1
    assert "permission denied" in caplog.text


def test_save_settings_then_reuse(tmp_path):
    settings = _run(
        tmp_path,
        "--tempo", "180",
        "--timing-bias", "-0.2",
        "--save-settings",
        "--output", str(tmp_path / "out.mid"),
    )
    stored = json.loads(settings.read_text())
    assert stored["tempo"] == 180
    assert stored["humanizer"]["timing_bias"] == -0.2

    parser = cli._build_parser(stored, cli.humanizer_config_from_settings(stored))
    args = parser.parse_args([])
    assert args.tempo == 180
    assert args.timing_bias == -0.2


def test_invalid_stored_humanizer_settings_are_ignored(tmp_path, caplog):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"humanizer": {"timing_randomness": 5}}))
    out = tmp_path / "out.mid"
    with caplog.at_level(logging.WARNING):
        cli.run_cli(["--settings-file", str(settings), "--output", str(out)])
    assert out.is_file()
    assert "Ignoring stored humanizer settings" in caplog.text
