"""
Pydantic schemas for request/response models.
"""

from clipforge.schemas.requests import (
    GenerateWindowsRequest,
    RenderBatchRequest,
    RenderJobRequest,
    ScoreHighlightsRequest,
)
from clipforge.schemas.responses import (
    CandidateWindowResponse,
    ClipCandidateResponse,
    ClipRenderResultResponse,
    RenderBatchStatusResponse,
)

__all__ = [
    "GenerateWindowsRequest",
    "ScoreHighlightsRequest",
    "RenderJobRequest",
    "RenderBatchRequest",
    "CandidateWindowResponse",
    "ClipCandidateResponse",
    "ClipRenderResultResponse",
    "RenderBatchStatusResponse",
]
