"""Streaming per-frame feature extraction."""

from __future__ import annotations

import logging
import math
from typing import Iterator

import numpy as np

from trackdiff.analysis.cancel import CancellationToken
from trackdiff.analysis.key import KeyDetector
from trackdiff.analysis.models import AudioBuffer, FrameFeatures
from trackdiff.analysis.tempo import estimate_window_tempo
from trackdiff.audio.preprocessing import high_pass_filter, mix_to_mono
from trackdiff.config import settings

logger = logging.getLogger(__name__)


def frame_rms(frame: np.ndarray) -> float:
    """Root-mean-square amplitude of a frame, clipped to [0, 1]."""
    if len(frame) == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(frame, dtype=np.float64))))
    return min(max(rms, 0.0), 1.0)


def rms_to_dbfs(rms: float, floor: float = 1e-5) -> float | None:
    """Convert RMS to dBFS; None for frames at or below the silence floor."""
    if rms <= floor:
        return None
    return 20.0 * math.log10(rms)


class FrameExtractor:
    """Slides non-overlapping frames across a buffer and yields their features.

    Tempo needs more context than a single frame, so every ``tempo_stride``
    frames a candidate is estimated from the trailing window of audio that
    ends with the current frame. Loudness and RMS come from the frame alone.
    """

    def __init__(
        self,
        frame_size: int | None = None,
        tempo_window_seconds: float | None = None,
        min_tempo_context_seconds: float | None = None,
        tempo_stride: int | None = None,
        min_bpm: float | None = None,
        max_bpm: float | None = None,
        key_detector: KeyDetector | None = None,
    ):
        self.key_detector = key_detector
        self.frame_size = frame_size or settings.frame_size
        self.tempo_window_seconds = tempo_window_seconds or settings.tempo_window_seconds
        self.min_tempo_context_seconds = (
            settings.min_tempo_context_seconds
            if min_tempo_context_seconds is None else min_tempo_context_seconds
        )
        self.tempo_stride = max(1, tempo_stride or settings.tempo_stride)
        self.min_bpm = settings.min_bpm if min_bpm is None else min_bpm
        self.max_bpm = settings.max_bpm if max_bpm is None else max_bpm
        if self.frame_size <= 0:
            raise ValueError(f"frame_size must be positive, got {self.frame_size}")

    def iter_frames(
        self,
        buffer: AudioBuffer,
        token: CancellationToken | None = None,
    ) -> Iterator[FrameFeatures]:
        """Yield one FrameFeatures per frame until the samples run out.

        The token is checked before each frame is emitted; a revoked token
        raises AnalysisCancelled and no further frames are produced or
        observed.
        """
        sr = buffer.sample_rate
        n_samples = buffer.n_samples
        if sr <= 0 or n_samples == 0:
            return

        window_samples = max(1, int(sr * self.tempo_window_seconds))
        for index, start in enumerate(range(0, n_samples, self.frame_size)):
            end = min(start + self.frame_size, n_samples)
            frame = mix_to_mono([ch[start:end] for ch in buffer.channels])
            features = self._analyze_frame(index, frame, buffer, end, window_samples)

            if token is not None:
                token.raise_if_cancelled()
            if self.key_detector is not None:
                self.key_detector.observe(frame, sr)
            yield features

    def trailing_context(self, buffer: AudioBuffer, end: int, window_samples: int) -> np.ndarray:
        """Mono audio of the last ``window_samples`` samples before ``end``."""
        begin = max(0, end - window_samples)
        return mix_to_mono([ch[begin:end] for ch in buffer.channels])

    def _analyze_frame(
        self,
        index: int,
        frame: np.ndarray,
        buffer: AudioBuffer,
        end: int,
        window_samples: int,
    ) -> FrameFeatures:
        sr = buffer.sample_rate
        rms = frame_rms(frame)
        loudness = rms_to_dbfs(rms, settings.silence_floor)

        tempo = None
        context_seconds = min(end, window_samples) / sr
        if (index + 1) % self.tempo_stride == 0 and context_seconds >= self.min_tempo_context_seconds:
            context = self.trailing_context(buffer, end, window_samples)
            context = high_pass_filter(context, sr, settings.highpass_cutoff)
            tempo = estimate_window_tempo(context, sr, self.min_bpm, self.max_bpm)
            if tempo is not None:
                logger.debug("Frame %d: tempo candidate %.1f BPM", index, tempo)

        return FrameFeatures(index=index, tempo=tempo, loudness=loudness, rms=rms)
