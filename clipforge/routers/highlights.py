"""
Highlight API Router - Candidate windows and LLM highlight scoring.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from clipforge.auth import verify_api_key
from clipforge.config import get_available_presets
from clipforge.schemas.requests import GenerateWindowsRequest, ScoreHighlightsRequest
from clipforge.schemas.responses import (
    CandidateWindowResponse,
    CaptionPresetResponse,
    ClipCandidateResponse,
    ScoreHighlightsResponse,
)
from clipforge.services.highlight_scoring import ClipCandidate, HighlightScoringService
from clipforge.services.window_generator import CandidateWindow, generate_windows

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/highlights", tags=["Highlights"])


async def get_scoring_service(request: Request) -> HighlightScoringService:
    """Get the scoring service from app state (initialized at startup)."""
    if not hasattr(request.app.state, "scoring_service"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Highlight scoring not initialized",
        )
    return request.app.state.scoring_service


def _window_response(window: CandidateWindow) -> CandidateWindowResponse:
    return CandidateWindowResponse(
        start_time_ms=window.start_time_ms,
        end_time_ms=window.end_time_ms,
        duration_ms=window.duration_ms,
        text=window.text,
        start_segment_index=window.start_segment_index,
        end_segment_index=window.end_segment_index,
    )


def _candidate_response(candidate: ClipCandidate) -> ClipCandidateResponse:
    return ClipCandidateResponse(
        id=candidate.id,
        source_draft_id=candidate.source_draft_id,
        start_time_ms=candidate.start_time_ms,
        end_time_ms=candidate.end_time_ms,
        score=candidate.score,
        reason=candidate.reason,
        preview_text=candidate.preview_text,
        created_at=candidate.created_at,
    )


@router.get("/caption-presets", response_model=list[CaptionPresetResponse])
async def list_caption_presets() -> list[CaptionPresetResponse]:
    """List caption presets with preview colors for UI rendering."""
    return [CaptionPresetResponse(**preset) for preset in get_available_presets()]


@router.post("/windows", response_model=list[CandidateWindowResponse])
async def create_windows(request: GenerateWindowsRequest) -> list[CandidateWindowResponse]:
    """
    Generate deduplicated candidate windows from transcript segments.

    Windows are snapped to segment boundaries and kept only when their
    duration lies within the requested bounds.
    """
    windows = generate_windows(
        request.to_segments(),
        min_duration_ms=request.min_duration_ms,
        max_duration_ms=request.max_duration_ms,
        step_ms=request.step_ms,
    )
    return [_window_response(w) for w in windows]


@router.post("/score", response_model=ScoreHighlightsResponse)
async def score_highlights(
    request: ScoreHighlightsRequest,
    scoring_service: HighlightScoringService = Depends(get_scoring_service),
    _: None = Depends(verify_api_key),
) -> ScoreHighlightsResponse:
    """
    Window a transcript and score the windows with the LLM.

    Returns an empty candidate list when the LLM is unavailable.
    """
    windows = generate_windows(
        request.to_segments(),
        min_duration_ms=request.min_duration_ms,
        max_duration_ms=request.max_duration_ms,
        step_ms=request.step_ms,
    )
    logger.info(f"Scoring {len(windows)} windows (draft={request.source_draft_id})")

    candidates = await scoring_service.score_highlights(
        windows,
        content_context=request.content_context,
        source_draft_id=request.source_draft_id,
        max_candidates=request.max_candidates,
        min_clip_duration_ms=request.min_duration_ms,
        max_clip_duration_ms=request.max_duration_ms,
    )
    return ScoreHighlightsResponse(
        windows_considered=len(windows),
        candidates=[_candidate_response(c) for c in candidates],
    )
