"""Ensure the package exposes its version string."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import phrase_engine  # noqa: E402


def test_version_string():
    assert phrase_engine.__version__ == "0.1.0"
