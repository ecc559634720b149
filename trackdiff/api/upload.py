"""File upload endpoint for local analysis and comparison."""

import asyncio
import functools
import json
import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from trackdiff.analysis.engine import AnalysisEngine
from trackdiff.analysis.errors import DecodeError
from trackdiff.api.compare import reconciliation_to_response
from trackdiff.api.schemas import AnalysisResponse, LocalAnalysisModel
from trackdiff.audio.loader import source_suffix
from trackdiff.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac"}


def _parse_reference(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        reference = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(400, "reference must be a JSON object")
    if not isinstance(reference, dict):
        raise HTTPException(400, "reference must be a JSON object")
    return reference


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_file(
    file: UploadFile = File(...),
    reference: str | None = Form(None),
):
    """Analyze an uploaded audio file and compare it with an optional reference."""
    suffix = source_suffix(file.filename) if file.filename else ""
    if suffix and suffix not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    reference_data = _parse_reference(reference)

    content = await file.read()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    engine = AnalysisEngine()
    loop = asyncio.get_running_loop()
    try:
        outcome = await loop.run_in_executor(
            None, functools.partial(engine.analyze_bytes, content, suffix=suffix),
        )
    except Exception:
        logger.exception("Analysis of %s failed", file.filename)
        raise HTTPException(500, "Analysis failed")

    if not outcome.ok:
        if isinstance(outcome.error, DecodeError):
            raise HTTPException(400, "Could not decode audio")
        raise HTTPException(500, "Analysis failed")

    result = outcome.result
    return AnalysisResponse(
        local=LocalAnalysisModel(
            bpm=result.bpm,
            loudness=result.loudness,
            rms=result.rms,
            key=result.key,
        ),
        **reconciliation_to_response(outcome.reconcile(reference_data)),
    )
