"""Audio preprocessing utilities."""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from scipy.signal import butter, sosfilt


def mix_to_mono(channels: list[np.ndarray]) -> np.ndarray:
    """Average channels into a single mono signal."""
    if not channels:
        return np.zeros(0, dtype=np.float32)
    if len(channels) == 1:
        return np.asarray(channels[0], dtype=np.float32)
    return np.mean(np.vstack(channels), axis=0).astype(np.float32)


@lru_cache(maxsize=16)
def _highpass_sos(sr: int, cutoff: float) -> np.ndarray:
    return butter(N=4, Wn=cutoff, btype="high", fs=sr, output="sos")


def high_pass_filter(
    audio: np.ndarray,
    sr: int,
    cutoff: float = 60.0,
) -> np.ndarray:
    """Apply a Butterworth high-pass filter.

    Parameters
    ----------
    audio:
        Input audio signal.
    sr:
        Sample rate in Hz.
    cutoff:
        High-pass cutoff frequency in Hz. Defaults to 60 Hz.
    """
    if len(audio) == 0:
        return audio
    return sosfilt(_highpass_sos(sr, cutoff), audio)
