"""Analysis orchestrator - decode, extract frames, aggregate, complete."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Union

from trackdiff.analysis.aggregate import FrameAggregator
from trackdiff.analysis.cancel import CancellationToken
from trackdiff.analysis.errors import AnalysisCancelled, DecodeError, RunStateError, SourceError
from trackdiff.analysis.frames import FrameExtractor
from trackdiff.analysis.key import KeyDetector, NullKeyDetector
from trackdiff.analysis.models import (
    AudioBuffer,
    ComparisonReport,
    FrameFeatures,
    LocalAnalysisResult,
    LocalSummary,
    ReferenceFeatureSet,
    RunState,
)
from trackdiff.analysis.reconcile import ReconcileConfig, reconcile
from trackdiff.audio.loader import decoded, read_source, source_suffix
from trackdiff.config import settings

logger = logging.getLogger(__name__)

_TERMINAL = (RunState.FINALIZED, RunState.ABORTED)


@dataclass(frozen=True)
class AnalysisOutcome:
    """Terminal state of a run: a result when finalized, an error when aborted."""
    state: RunState
    result: LocalAnalysisResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.FINALIZED

    def reconcile(
        self,
        reference: ReferenceFeatureSet | Mapping | None = None,
        config: ReconcileConfig | None = None,
    ) -> LocalSummary | ComparisonReport:
        """Reconcile the finalized result; aborted runs cannot be reconciled."""
        if self.state is not RunState.FINALIZED or self.result is None:
            raise RunStateError(f"Cannot reconcile a run in state {self.state.value!r}")
        return reconcile(self.result, reference, config)


CompletionCallback = Callable[[AnalysisOutcome], None]


class AnalysisRun:
    """State machine for a single analysis pass.

    ``IDLE -> ANALYZING -> FINALIZED | ABORTED``. The completion callback fires
    at most once, when the run reaches a terminal state, and never after the
    token has been revoked.
    """

    def __init__(
        self,
        on_complete: CompletionCallback | None = None,
        token: CancellationToken | None = None,
        key_detector: KeyDetector | None = None,
    ):
        self.state = RunState.IDLE
        self.token = token or CancellationToken()
        self.outcome: AnalysisOutcome | None = None
        self._on_complete = on_complete
        self._aggregator = FrameAggregator(key_detector)

    def start(self) -> None:
        if self.state is not RunState.IDLE:
            raise RunStateError(f"Cannot start a run in state {self.state.value!r}")
        self.state = RunState.ANALYZING

    def push(self, frame: FrameFeatures) -> None:
        if self.state is not RunState.ANALYZING:
            raise RunStateError(f"Cannot accept frames in state {self.state.value!r}")
        self._aggregator.add(frame)

    def end_of_stream(self) -> AnalysisOutcome | None:
        """Finalize the run. A repeated end-of-stream signal returns None."""
        if self.state in _TERMINAL:
            logger.debug("End-of-stream after %s ignored", self.state.value)
            return None
        if self.state is not RunState.ANALYZING:
            raise RunStateError(f"Cannot finalize a run in state {self.state.value!r}")
        if self.token.cancelled:
            return self.abort(AnalysisCancelled("Analysis run was cancelled"))

        result = self._aggregator.finalize()
        self.state = RunState.FINALIZED
        self.outcome = AnalysisOutcome(state=RunState.FINALIZED, result=result)
        self._notify()
        return self.outcome

    def abort(self, error: Exception) -> AnalysisOutcome | None:
        """Abort with *error*; partial frame data is discarded."""
        if self.state in _TERMINAL:
            return None
        self.state = RunState.ABORTED
        self.outcome = AnalysisOutcome(state=RunState.ABORTED, error=error)
        if not isinstance(error, AnalysisCancelled):
            self._notify()
        return self.outcome

    def _notify(self) -> None:
        if self._on_complete is None or self.token.cancelled:
            return
        self._on_complete(self.outcome)


class AnalysisEngine:
    """Runs the local analysis pipeline, one source at a time."""

    def __init__(
        self,
        frame_size: int | None = None,
        sample_rate: int | None = None,
        key_detector_factory: Callable[[], KeyDetector] = NullKeyDetector,
    ):
        self.frame_size = frame_size or settings.frame_size
        self.sample_rate = sample_rate or settings.sample_rate
        self.key_detector_factory = key_detector_factory

    def _new_run(
        self,
        on_complete: CompletionCallback | None,
        token: CancellationToken | None,
    ) -> tuple[AnalysisRun, FrameExtractor]:
        key_detector = self.key_detector_factory()
        run = AnalysisRun(on_complete=on_complete, token=token, key_detector=key_detector)
        extractor = FrameExtractor(frame_size=self.frame_size, key_detector=key_detector)
        return run, extractor

    def _drive(self, run: AnalysisRun, extractor: FrameExtractor, buffer: AudioBuffer) -> AnalysisOutcome:
        logger.info(f"Analyzing {buffer.duration:.1f}s of audio at {buffer.sample_rate}Hz")
        try:
            run.token.raise_if_cancelled()
            for frame in extractor.iter_frames(buffer, run.token):
                run.push(frame)
        except AnalysisCancelled as e:
            logger.info("Analysis cancelled; discarding partial frames")
            return run.abort(e)
        return run.end_of_stream()

    def analyze_buffer(
        self,
        buffer: AudioBuffer,
        token: CancellationToken | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> AnalysisOutcome:
        """Analyze an already decoded buffer."""
        run, extractor = self._new_run(on_complete, token)
        run.start()
        try:
            return self._drive(run, extractor, buffer)
        except Exception as e:
            run.abort(e)
            raise

    def _decode_and_drive(
        self,
        run: AnalysisRun,
        extractor: FrameExtractor,
        read: Callable[[], bytes],
        suffix: str,
    ) -> AnalysisOutcome:
        run.start()
        try:
            run.token.raise_if_cancelled()
            data = read()
            with decoded(data, sr=self.sample_rate, suffix=suffix) as buffer:
                return self._drive(run, extractor, buffer)
        except AnalysisCancelled as e:
            return run.abort(e)
        except (SourceError, OSError) as e:
            logger.warning("Reading audio source failed: %s", e)
            return run.abort(e)
        except DecodeError as e:
            logger.warning("Decoding failed: %s", e)
            return run.abort(e)
        except Exception as e:
            run.abort(e)
            raise

    def analyze_bytes(
        self,
        data: bytes,
        token: CancellationToken | None = None,
        on_complete: CompletionCallback | None = None,
        suffix: str = "",
    ) -> AnalysisOutcome:
        """Decode and analyze raw audio bytes.

        A DecodeError aborts the run and is delivered through the returned
        outcome and the completion callback. Unexpected errors abort the run
        and propagate.
        """
        run, extractor = self._new_run(on_complete, token)
        return self._decode_and_drive(run, extractor, lambda: data, suffix)

    def analyze_file(
        self,
        source: Union[str, Path],
        token: CancellationToken | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> AnalysisOutcome:
        """Analyze a local audio file or a remote preview URL.

        Read failures (missing file, unreachable or oversized download) abort
        the run the same way decode failures do.
        """
        run, extractor = self._new_run(on_complete, token)
        return self._decode_and_drive(run, extractor, lambda: read_source(source), source_suffix(source))
