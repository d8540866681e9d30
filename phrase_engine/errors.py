"""Exceptions raised while generating phrases.

``GenerationError`` aborts a whole generation pass: no partial phrase is
returned. ``UserErrorGenerationError`` is the subset of failures a user can
fix (a malformed chord chart, a chord sequence written for another time
signature). Its message is meant to be shown as is.
"""

from __future__ import annotations

__all__ = ["GenerationError", "UserErrorGenerationError"]


class GenerationError(Exception):
    """Fatal generation failure, e.g. no pattern for the requested style."""


class UserErrorGenerationError(GenerationError):
    """Generation failure caused by user input, with a readable message."""
