"""Core data models for local analysis and reconciliation."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class Key(str, Enum):
    """Musical key as a pitch class name, or Unknown when not detected."""
    C = "C"
    C_SHARP = "C#"
    D = "D"
    D_SHARP = "D#"
    E = "E"
    F = "F"
    F_SHARP = "F#"
    G = "G"
    G_SHARP = "G#"
    A = "A"
    A_SHARP = "A#"
    B = "B"
    UNKNOWN = "Unknown"


class RunState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    FINALIZED = "finalized"
    ABORTED = "aborted"


@dataclass
class AudioBuffer:
    """Decoded PCM audio, one array per channel."""
    sample_rate: int
    channels: list[np.ndarray] = field(default_factory=list)

    @property
    def n_samples(self) -> int:
        return len(self.channels[0]) if self.channels else 0

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.n_samples / self.sample_rate

    def release(self) -> None:
        """Drop the sample data; the buffer is empty afterwards."""
        self.channels = []


@dataclass(frozen=True)
class FrameFeatures:
    """Per-frame candidates produced by the extractor."""
    index: int
    tempo: float | None = None  # BPM, > 0 when present
    loudness: float | None = None  # dBFS
    rms: float | None = None  # 0.0-1.0


@dataclass(frozen=True)
class LocalAnalysisResult:
    """Finalized local analysis of one audio source."""
    bpm: float
    loudness: float
    rms: float
    key: Key = Key.UNKNOWN

    @classmethod
    def empty(cls) -> "LocalAnalysisResult":
        return cls(bpm=0.0, loudness=0.0, rms=0.0, key=Key.UNKNOWN)


@dataclass(frozen=True)
class ReferenceFeatureSet:
    """Externally supplied features; a field is None when missing or malformed."""
    tempo: float | None = None
    key: int | None = None  # pitch class 0-11
    loudness: float | None = None  # dB
    energy: float | None = None  # 0.0-1.0
    danceability: float | None = None  # 0.0-1.0


@dataclass(frozen=True)
class ComparisonEntry:
    """One row of the comparison table."""
    feature: str
    local: float | None
    reference: float | None
    abs_diff: float | None
    matches: bool
    comparable: bool = True


@dataclass(frozen=True)
class LocalSummary:
    """Local-only view used when no reference is available."""
    bpm: float
    loudness: float
    rms: float
    key: Key = Key.UNKNOWN


@dataclass(frozen=True)
class ComparisonReport:
    """Full comparison between local and reference features."""
    entries: tuple[ComparisonEntry, ...]
    tempo_diff: float | None
    # "precise" | "deviation" | None when tempo is not comparable
    tempo_class: str | None
    local_energy: float
    local_danceability: float

    def entry(self, feature: str) -> ComparisonEntry:
        for e in self.entries:
            if e.feature == feature:
                return e
        raise KeyError(feature)
