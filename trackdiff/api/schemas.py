"""Pydantic request/response models for API."""

from typing import Any

from pydantic import BaseModel, Field

from trackdiff.analysis.models import Key


class LocalAnalysisModel(BaseModel):
    bpm: float = Field(ge=0)
    loudness: float
    rms: float = Field(ge=0, le=1)
    key: Key = Key.UNKNOWN


class LocalSummaryResponse(BaseModel):
    bpm: float
    loudness: float
    rms: float
    key: Key = Key.UNKNOWN


class ComparisonEntryResponse(BaseModel):
    feature: str
    local: float | None = None
    reference: float | None = None
    abs_diff: float | None = None
    matches: bool
    comparable: bool = True


class ComparisonResponse(BaseModel):
    entries: list[ComparisonEntryResponse]
    tempo_diff: float | None = None
    tempo_class: str | None = None  # "precise" | "deviation"
    local_energy: float
    local_danceability: float


class ReconciliationResponse(BaseModel):
    """Exactly one of summary / comparison is set."""
    summary: LocalSummaryResponse | None = None
    comparison: ComparisonResponse | None = None


class AnalysisResponse(ReconciliationResponse):
    local: LocalAnalysisModel


class CompareRequest(BaseModel):
    local: LocalAnalysisModel
    # Flat reference record; malformed fields are reported as not comparable
    reference: dict[str, Any] | None = None
