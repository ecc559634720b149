"""Normalize local features to the reference scales and compare them.

Two earlier versions of this comparison disagreed on the scale constants
(energy scale 2.5 vs 10, danceable band 100-140 vs 90-140 BPM). Every such
constant lives on ReconcileConfig; the defaults below can be overridden
through settings (``TRACKDIFF_ENERGY_SCALE`` and friends) or per call.

Everything here is a pure function of its inputs.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Mapping

from trackdiff.analysis.errors import InvalidReferenceError
from trackdiff.analysis.key import key_to_number, pitch_class_distance
from trackdiff.analysis.models import (
    ComparisonEntry,
    ComparisonReport,
    LocalAnalysisResult,
    LocalSummary,
    ReferenceFeatureSet,
)
from trackdiff.config import settings

logger = logging.getLogger(__name__)

ENERGY_SCALE = 2.5
DANCEABLE_MIN_BPM = 100.0
DANCEABLE_MAX_BPM = 140.0
OFF_BAND_BPM_FACTOR = 0.7
# Rhythmic regularity is not measured yet
STABILITY_FACTOR = 1.0
TEMPO_THRESHOLD = 5.0

PRECISE = "precise"
DEVIATION = "deviation"

FEATURES = ("tempo", "key", "loudness", "energy", "danceability")


@dataclass(frozen=True)
class ReconcileConfig:
    """Tunable constants for reconciliation."""
    energy_scale: float = ENERGY_SCALE
    danceable_min_bpm: float = DANCEABLE_MIN_BPM
    danceable_max_bpm: float = DANCEABLE_MAX_BPM
    off_band_bpm_factor: float = OFF_BAND_BPM_FACTOR
    stability_factor: float = STABILITY_FACTOR
    tempo_threshold: float = TEMPO_THRESHOLD
    loudness_tolerance_db: float = 3.0
    energy_tolerance: float = 0.1
    danceability_tolerance: float = 0.1

    @classmethod
    def from_settings(cls) -> "ReconcileConfig":
        return cls(
            energy_scale=settings.energy_scale,
            danceable_min_bpm=settings.danceable_min_bpm,
            danceable_max_bpm=settings.danceable_max_bpm,
            off_band_bpm_factor=settings.off_band_bpm_factor,
            tempo_threshold=settings.tempo_threshold,
            loudness_tolerance_db=settings.loudness_tolerance_db,
            energy_tolerance=settings.energy_tolerance,
            danceability_tolerance=settings.danceability_tolerance,
        )


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def local_energy(rms: float, energy_scale: float | None = None) -> float:
    """Map mean RMS onto the reference's 0-1 energy scale."""
    if energy_scale is None:
        energy_scale = settings.energy_scale
    return clamp(rms * energy_scale)


def bpm_factor(bpm: float, config: ReconcileConfig | None = None) -> float:
    """1.0 inside the danceable tempo band (exclusive bounds), else the off-band factor."""
    config = config or ReconcileConfig.from_settings()
    if config.danceable_min_bpm < bpm < config.danceable_max_bpm:
        return 1.0
    return config.off_band_bpm_factor


def local_danceability(local: LocalAnalysisResult, config: ReconcileConfig | None = None) -> float:
    """Danceability proxy from energy and tempo; 0 without a tempo or signal."""
    config = config or ReconcileConfig.from_settings()
    if not local.bpm or not local.rms:
        return 0.0
    energy = local_energy(local.rms, config.energy_scale)
    return clamp(energy * bpm_factor(local.bpm, config) * config.stability_factor)


def classify_tempo(tempo_diff: float, threshold: float | None = None) -> str:
    """Precise when strictly below the threshold, deviation otherwise."""
    if threshold is None:
        threshold = settings.tempo_threshold
    return PRECISE if tempo_diff < threshold else DEVIATION


# ---------------------------------------------------------------------------
# Reference validation
# ---------------------------------------------------------------------------

def _as_number(name: str, value: Any) -> float:
    if value is None:
        raise InvalidReferenceError(name, value, "missing")
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidReferenceError(name, value, "not a number")
    if not math.isfinite(value):
        raise InvalidReferenceError(name, value, "not finite")
    return float(value)


def validate_field(name: str, value: Any) -> float | int:
    """Return the validated value of one reference field.

    Raises InvalidReferenceError when the value is missing or malformed.
    """
    number = _as_number(name, value)
    if name == "key":
        if number != int(number) or not 0 <= number <= 11:
            raise InvalidReferenceError(name, value, "not a pitch class 0-11")
        return int(number)
    if name == "tempo" and number <= 0:
        raise InvalidReferenceError(name, value, "not positive")
    if name in ("energy", "danceability") and not 0.0 <= number <= 1.0:
        raise InvalidReferenceError(name, value, "outside [0, 1]")
    return number


def _checked(name: str, value: Any) -> float | int | None:
    try:
        return validate_field(name, value)
    except InvalidReferenceError as e:
        logger.warning("%s; %s is not comparable", e, name)
        return None


def reference_from_mapping(data: Mapping[str, Any]) -> ReferenceFeatureSet:
    """Build a ReferenceFeatureSet from a flat record, ignoring extra keys.

    Missing or malformed fields become None rather than failing the whole set.
    """
    return ReferenceFeatureSet(**{name: _checked(name, data.get(name)) for name in FEATURES})


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def _not_comparable(feature: str, local: float | None, reference: float | None) -> ComparisonEntry:
    return ComparisonEntry(
        feature=feature, local=local, reference=reference,
        abs_diff=None, matches=False, comparable=False,
    )


def _scalar_entry(feature: str, local: float, reference: float | None, tolerance: float) -> ComparisonEntry:
    if reference is None:
        return _not_comparable(feature, local, None)
    diff = abs(reference - local)
    return ComparisonEntry(
        feature=feature, local=local, reference=reference,
        abs_diff=diff, matches=diff <= tolerance,
    )


def _key_entry(local: LocalAnalysisResult, reference: int | None) -> ComparisonEntry:
    local_number = key_to_number(local.key)
    local_value = float(local_number) if local_number is not None else None
    ref_value = float(reference) if reference is not None else None
    if local_number is None or reference is None:
        return _not_comparable("key", local_value, ref_value)
    return ComparisonEntry(
        feature="key", local=local_value, reference=ref_value,
        abs_diff=float(pitch_class_distance(local_number, reference)),
        matches=local_number == reference,
    )


def summarize(local: LocalAnalysisResult) -> LocalSummary:
    return LocalSummary(bpm=local.bpm, loudness=local.loudness, rms=local.rms, key=local.key)


def compare(
    local: LocalAnalysisResult,
    reference: ReferenceFeatureSet,
    config: ReconcileConfig | None = None,
) -> ComparisonReport:
    """Build the full comparison table between local and reference features."""
    config = config or ReconcileConfig.from_settings()
    ref = {}
    for name in FEATURES:
        value = getattr(reference, name)
        ref[name] = None if value is None else _checked(name, value)

    energy = local_energy(local.rms, config.energy_scale)
    danceability = local_danceability(local, config)

    tempo_diff = None
    tempo_class = None
    if ref["tempo"] is None:
        tempo_entry = _not_comparable("tempo", local.bpm, None)
    else:
        tempo_diff = abs(ref["tempo"] - local.bpm)
        tempo_class = classify_tempo(tempo_diff, config.tempo_threshold)
        tempo_entry = ComparisonEntry(
            feature="tempo", local=local.bpm, reference=ref["tempo"],
            abs_diff=tempo_diff, matches=tempo_class == PRECISE,
        )

    entries = (
        tempo_entry,
        _key_entry(local, ref["key"]),
        _scalar_entry("loudness", local.loudness, ref["loudness"], config.loudness_tolerance_db),
        _scalar_entry("energy", energy, ref["energy"], config.energy_tolerance),
        _scalar_entry("danceability", danceability, ref["danceability"], config.danceability_tolerance),
    )
    return ComparisonReport(
        entries=entries,
        tempo_diff=tempo_diff,
        tempo_class=tempo_class,
        local_energy=energy,
        local_danceability=danceability,
    )


def reconcile(
    local: LocalAnalysisResult,
    reference: ReferenceFeatureSet | Mapping[str, Any] | None = None,
    config: ReconcileConfig | None = None,
) -> LocalSummary | ComparisonReport:
    """Local-only summary without a reference, full comparison with one."""
    if reference is None:
        return summarize(local)
    if not isinstance(reference, ReferenceFeatureSet):
        reference = reference_from_mapping(reference)
    return compare(local, reference, config)
