"""Windowed tempo estimation for the frame extractor."""

import math

import numpy as np
import librosa

_MIN_WINDOW_SAMPLES = 2048  # librosa's default n_fft
_ONSET_EPSILON = 1e-6


def is_valid_candidate(bpm: float | None, min_bpm: float = 40, max_bpm: float = 300) -> bool:
    """A tempo candidate is usable when finite, positive and inside the bpm range."""
    if bpm is None or not math.isfinite(bpm) or bpm <= 0:
        return False
    return min_bpm <= bpm <= max_bpm


def estimate_window_tempo(
    audio: np.ndarray,
    sr: int = 22050,
    min_bpm: float = 40,
    max_bpm: float = 300,
) -> float | None:
    """Estimate the tempo of a window of audio.

    Returns None when the window is too short, carries no onset energy, or
    the estimate falls outside [min_bpm, max_bpm].
    """
    if len(audio) < _MIN_WINDOW_SAMPLES:
        return None

    onset_env = librosa.onset.onset_strength(y=audio, sr=sr)
    # librosa falls back to its prior (~120 BPM) on a flat envelope
    if onset_env.size == 0 or float(onset_env.max()) <= _ONSET_EPSILON:
        return None

    tempo = librosa.feature.tempo(onset_envelope=onset_env, sr=sr, max_tempo=max_bpm)
    bpm = float(np.atleast_1d(tempo)[0])
    if not is_valid_candidate(bpm, min_bpm, max_bpm):
        return None
    return bpm
