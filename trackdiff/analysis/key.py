"""Key names, pitch-class indices, and the key detection boundary."""

from __future__ import annotations

from typing import Protocol, Union

import numpy as np

from trackdiff.analysis.models import Key

# Pitch class order, C = 0
PITCH_CLASSES: tuple[Key, ...] = (
    Key.C, Key.C_SHARP, Key.D, Key.D_SHARP, Key.E, Key.F,
    Key.F_SHARP, Key.G, Key.G_SHARP, Key.A, Key.A_SHARP, Key.B,
)


def key_to_number(key: Union[Key, str]) -> int | None:
    """Pitch class index of a key name; None for Unknown or unrecognised names."""
    try:
        key = Key(key)
    except ValueError:
        return None
    if key is Key.UNKNOWN:
        return None
    return PITCH_CLASSES.index(key)


def number_to_key(number: int | None) -> Key:
    """Key name for a pitch class index; Unknown outside 0-11."""
    if number is None or isinstance(number, bool):
        return Key.UNKNOWN
    if not 0 <= number < len(PITCH_CLASSES) or number != int(number):
        return Key.UNKNOWN
    return PITCH_CLASSES[int(number)]


def pitch_class_distance(a: int, b: int) -> int:
    """Shortest distance between two pitch classes around the circle (0-6)."""
    d = abs(a - b) % 12
    return min(d, 12 - d)


class KeyDetector(Protocol):
    """Estimates the key of a stream from the frames it observes."""

    def observe(self, frame: np.ndarray, sr: int) -> None: ...

    def detect(self) -> Key: ...


class NullKeyDetector:
    """Key detection is not implemented; always reports Unknown."""

    def observe(self, frame: np.ndarray, sr: int) -> None:
        pass

    def detect(self) -> Key:
        return Key.UNKNOWN
