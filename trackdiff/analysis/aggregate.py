"""Aggregation of frame candidates into a single local result."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from trackdiff.analysis.errors import EmptySignalError, RunStateError
from trackdiff.analysis.key import KeyDetector, NullKeyDetector
from trackdiff.analysis.models import FrameFeatures, LocalAnalysisResult
from trackdiff.analysis.tempo import is_valid_candidate

logger = logging.getLogger(__name__)


def mode_bpm(candidates: Iterable[float]) -> int:
    """Most frequent integer-rounded tempo; 0 if there are no candidates.

    Ties go to the greatest tempo among the most frequent values, so the
    result never depends on arrival order.
    """
    counts = Counter(int(round(c)) for c in candidates)
    if not counts:
        return 0
    top = max(counts.values())
    return max(bpm for bpm, n in counts.items() if n == top)


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


class FrameAggregator:
    """Collects FrameFeatures in arrival order and finalizes exactly once."""

    def __init__(self, key_detector: KeyDetector | None = None):
        self.key_detector = key_detector or NullKeyDetector()
        self._tempos: list[float] = []
        self._loudness: list[float] = []
        self._rms: list[float] = []
        self._frames = 0
        self._result: LocalAnalysisResult | None = None

    @property
    def finalized(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> LocalAnalysisResult | None:
        return self._result

    def add(self, frame: FrameFeatures) -> None:
        if self._result is not None:
            raise RunStateError("Cannot add frames after finalization")
        self._frames += 1
        if frame.tempo is not None and is_valid_candidate(frame.tempo, 0, float("inf")):
            self._tempos.append(frame.tempo)
        if frame.loudness is not None:
            self._loudness.append(frame.loudness)
        if frame.rms is not None:
            self._rms.append(frame.rms)

    def _check_signal(self) -> None:
        if not (self._tempos or self._loudness or self._rms):
            raise EmptySignalError(f"No valid frame data in {self._frames} frame(s)")

    def finalize(self) -> LocalAnalysisResult | None:
        """Compute the result on the first end-of-stream signal.

        Later calls are no-ops and return None.
        """
        if self._result is not None:
            logger.debug("Duplicate end-of-stream ignored")
            return None

        try:
            self._check_signal()
        except EmptySignalError as e:
            logger.warning("%s; reporting a zeroed result", e)
            self._result = LocalAnalysisResult.empty()
            return self._result

        self._result = LocalAnalysisResult(
            bpm=float(mode_bpm(self._tempos)),
            loudness=mean(self._loudness),
            rms=min(max(mean(self._rms), 0.0), 1.0),
            key=self.key_detector.detect(),
        )
        logger.info(
            "Finalized %d frame(s): bpm=%.0f loudness=%.2f rms=%.3f key=%s",
            self._frames, self._result.bpm, self._result.loudness,
            self._result.rms, self._result.key.value,
        )
        return self._result
