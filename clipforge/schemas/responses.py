"""
Response schemas for the highlight and render APIs.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service can render clips")
    face_detector: str = Field(..., description="Face detector status")
    ffmpeg: str = Field(..., description="FFmpeg availability")
    llm: str = Field(..., description="LLM client status")


class CandidateWindowResponse(BaseModel):
    """A candidate window."""

    start_time_ms: int
    end_time_ms: int
    duration_ms: int
    text: str
    start_segment_index: int
    end_segment_index: int


class ClipCandidateResponse(BaseModel):
    """A scored highlight."""

    id: str
    source_draft_id: Optional[str] = None
    start_time_ms: int
    end_time_ms: int
    score: float
    reason: str
    preview_text: str
    created_at: datetime


class ScoreHighlightsResponse(BaseModel):
    """Scoring outcome."""

    windows_considered: int
    candidates: list[ClipCandidateResponse]


class CaptionPresetResponse(BaseModel):
    """Response model for a caption preset."""

    id: str
    name: str
    description: str
    preview_colors: dict[str, str]


class CropRegionResponse(BaseModel):
    """Crop applied to a rendered clip."""

    x: int
    y: int
    width: int
    height: int
    strategy: str
    faces_considered: int
    based_on_face_detection: bool


class ClipRenderResultResponse(BaseModel):
    """Outcome of one render job."""

    success: bool
    job_id: str
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    render_duration_ms: int = 0
    output_file_size: int = 0
    applied_crop: Optional[CropRegionResponse] = None


class RenderBatchSubmitResponse(BaseModel):
    """Response after submitting a render batch."""

    batch_id: str
    status: str
    total_jobs: int
    job_ids: list[str]


class RenderBatchStatusResponse(BaseModel):
    """Progress and results of a render batch."""

    batch_id: str
    status: str
    total_jobs: int
    current_job_index: int
    overall_percent: float
    current_phase: Optional[str] = None
    status_message: Optional[str] = None
    results: list[ClipRenderResultResponse] = Field(default_factory=list)
    error: Optional[str] = None
