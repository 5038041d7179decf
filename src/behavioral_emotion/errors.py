"""Exception types raised inside the behavioral-emotion core."""

from __future__ import annotations


class BehavioralEmotionError(Exception):
    """Base class for all errors raised by this package."""


class ModelStateError(BehavioralEmotionError):
    """A persisted model blob is unreadable or has the wrong shape."""


class InvalidLabelError(BehavioralEmotionError, ValueError):
    """A label is not one of the eight supported emotions."""


class ImportDataError(BehavioralEmotionError, ValueError):
    """A backup blob passed to ``import_data`` is malformed."""
