"""Persistent user preferences.

Settings are stored as a small JSON document, by default in
``~/.phrase_engine_settings.json``. Set ``PHRASE_ENGINE_SETTINGS_FILE`` to use
another location (handy for tests and shared machines).

Stored keys::

    {
      "tempo": 160,
      "humanizer": {"timing_randomness": 0.3, "timing_bias": 0.0,
                    "velocity_randomness": 0.2},
      "tempo_bias_factor": 0.0,
      "hold_shot_mode": "normal"
    }
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .humanizer import HumanizerConfig
from .rhythm import HoldShotMode

__all__ = [
    "DEFAULT_SETTINGS_FILE",
    "DEFAULT_SETTINGS",
    "load_settings",
    "save_settings",
    "humanizer_config_from_settings",
    "humanizer_config_to_settings",
]

env_path = os.environ.get("PHRASE_ENGINE_SETTINGS_FILE")
if env_path:
    DEFAULT_SETTINGS_FILE = Path(env_path).expanduser()
else:
    DEFAULT_SETTINGS_FILE = Path.home() / ".phrase_engine_settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "tempo": 120,
    "humanizer": {"timing_randomness": 0.0, "timing_bias": 0.0, "velocity_randomness": 0.0},
    "tempo_bias_factor": 0.0,
    "hold_shot_mode": HoldShotMode.NORMAL.value,
}


def load_settings(path: Path = DEFAULT_SETTINGS_FILE) -> Dict[str, Any]:
    """Load saved settings from ``path`` merged over :data:`DEFAULT_SETTINGS`.

    @param path (Path): Location of the settings file.
    @returns dict: Settings, the defaults when the file is missing or unreadable.
    """

    settings = json.loads(json.dumps(DEFAULT_SETTINGS))
    path = Path(path)
    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8") as fh:
                stored = json.load(fh)
        except (OSError, ValueError) as exc:
            logging.error("Could not load settings: %s", exc)
            return settings
        if not isinstance(stored, dict):
            logging.error("Could not load settings: %s does not hold a JSON object", path)
            return settings
        for key, value in stored.items():
            if isinstance(value, dict) and isinstance(settings.get(key), dict):
                settings[key].update(value)
            else:
                settings[key] = value
    return settings


def save_settings(settings: Dict[str, Any], path: Path = DEFAULT_SETTINGS_FILE) -> None:
    """Save ``settings`` to ``path`` as JSON.

    Failures are logged, never raised, so a read-only home directory does not
    prevent generation.
    """

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(settings, fh, indent=2)
    except OSError as exc:
        logging.error("Could not save settings: %s", exc)


def humanizer_config_from_settings(settings: Dict[str, Any]) -> HumanizerConfig:
    """Build a :class:`HumanizerConfig` from the ``humanizer`` settings entry.

    Raises ``ValueError`` when a stored value is out of range.
    """

    values = settings.get("humanizer") or {}
    return HumanizerConfig(
        float(values.get("timing_randomness", 0.0)),
        float(values.get("timing_bias", 0.0)),
        float(values.get("velocity_randomness", 0.0)),
    )


def humanizer_config_to_settings(config: HumanizerConfig) -> Dict[str, float]:
    return {
        "timing_randomness": config.timing_randomness,
        "timing_bias": config.timing_bias,
        "velocity_randomness": config.velocity_randomness,
    }
