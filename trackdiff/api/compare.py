"""Comparison endpoint: reconcile a local result against a reference."""

from fastapi import APIRouter

from trackdiff.analysis.models import ComparisonReport, LocalAnalysisResult, LocalSummary
from trackdiff.analysis.reconcile import reconcile
from trackdiff.api.schemas import (
    CompareRequest,
    ComparisonEntryResponse,
    ComparisonResponse,
    LocalSummaryResponse,
    ReconciliationResponse,
)

router = APIRouter()


def reconciliation_to_response(outcome: LocalSummary | ComparisonReport) -> dict:
    """Convert a summary or comparison report to response fields."""
    if isinstance(outcome, LocalSummary):
        return {
            "summary": LocalSummaryResponse(
                bpm=outcome.bpm,
                loudness=outcome.loudness,
                rms=outcome.rms,
                key=outcome.key,
            ),
            "comparison": None,
        }
    return {
        "summary": None,
        "comparison": ComparisonResponse(
            entries=[
                ComparisonEntryResponse(
                    feature=e.feature,
                    local=e.local,
                    reference=e.reference,
                    abs_diff=e.abs_diff,
                    matches=e.matches,
                    comparable=e.comparable,
                )
                for e in outcome.entries
            ],
            tempo_diff=outcome.tempo_diff,
            tempo_class=outcome.tempo_class,
            local_energy=outcome.local_energy,
            local_danceability=outcome.local_danceability,
        ),
    }


@router.post("/compare", response_model=ReconciliationResponse)
async def compare_features(request: CompareRequest):
    """Compare a local analysis result with an optional reference feature set."""
    local = LocalAnalysisResult(
        bpm=request.local.bpm,
        loudness=request.local.loudness,
        rms=request.local.rms,
        key=request.local.key,
    )
    return ReconciliationResponse(**reconciliation_to_response(reconcile(local, request.reference)))
