"""Shared test fixtures for local analysis and reconciliation tests."""

import io

import numpy as np
import pytest
import soundfile as sf
from fastapi.testclient import TestClient

from trackdiff.analysis.models import AudioBuffer
from trackdiff.main import app


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def generate_click_track(
    bpm: float,
    duration_seconds: float = 10.0,
    sr: int = 22050,
    amplitude: float = 0.8,
) -> np.ndarray:
    """Generate a synthetic mono click track at a steady tempo."""
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm  # seconds per beat
    click_samples = int(0.02 * sr)  # 20ms click

    # Short sine burst with exponential decay
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    time = 0.0
    while time < duration_seconds:
        sample_pos = int(time * sr)
        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length]
        time += beat_interval

    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak * amplitude
    return audio


def make_buffer(*channels: np.ndarray, sr: int = 22050) -> AudioBuffer:
    return AudioBuffer(sample_rate=sr, channels=[np.asarray(c, dtype=np.float32) for c in channels])


def wav_bytes(audio: np.ndarray, sr: int = 22050) -> bytes:
    """Encode mono or (n, channels) audio as WAV file contents."""
    out = io.BytesIO()
    sf.write(out, audio, sr, format="WAV")
    return out.getvalue()


@pytest.fixture
def click_120():
    """Click track at 120 BPM."""
    return generate_click_track(bpm=120, duration_seconds=10)


@pytest.fixture
def click_120_wav(click_120):
    return wav_bytes(click_120)
