"""
Request schemas for the highlight and render APIs.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from clipforge.config import SubtitleSettings
from clipforge.services.split_layout import NormalizedRect, SplitLayoutConfig, SplitLayoutPreset
from clipforge.services.transcript_store import TimedSegment, TimedWord


class TimedWordModel(BaseModel):
    """A transcript word with absolute timing."""

    text: str
    start_time_ms: int = Field(..., ge=0)
    end_time_ms: int = Field(..., ge=0)


class TimedSegmentModel(BaseModel):
    """A transcript segment with absolute timing and optional words."""

    text: str
    start_time_ms: int = Field(..., ge=0)
    end_time_ms: int = Field(..., ge=0)
    words: list[TimedWordModel] = Field(default_factory=list)

    def to_segment(self) -> TimedSegment:
        return TimedSegment(
            text=self.text,
            start_time_ms=self.start_time_ms,
            end_time_ms=self.end_time_ms,
            words=tuple(
                TimedWord(text=w.text, start_time_ms=w.start_time_ms, end_time_ms=w.end_time_ms)
                for w in self.words
            ),
        )


class GenerateWindowsRequest(BaseModel):
    """Request to generate candidate windows from a transcript."""

    segments: list[TimedSegmentModel]
    min_duration_ms: int = Field(15_000, gt=0, description="Shortest window")
    max_duration_ms: int = Field(90_000, gt=0, description="Longest window")
    step_ms: int = Field(10_000, gt=0, description="Distance between window starts")

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "GenerateWindowsRequest":
        """Ensure the duration bounds are ordered."""
        if self.max_duration_ms < self.min_duration_ms:
            raise ValueError(
                f"max_duration_ms ({self.max_duration_ms}) must be >= "
                f"min_duration_ms ({self.min_duration_ms})"
            )
        return self

    def to_segments(self) -> list[TimedSegment]:
        return sorted((s.to_segment() for s in self.segments), key=lambda s: s.start_time_ms)


class ScoreHighlightsRequest(GenerateWindowsRequest):
    """Request to window and score a transcript."""

    content_context: Optional[str] = Field(None, description="Title or topic of the video")
    source_draft_id: Optional[str] = None
    max_candidates: int = Field(5, ge=1, le=20)


class SubtitleStyleRequest(BaseModel):
    """Subtitle style overrides."""

    font_family: str = "Arial Black"
    font_size: int = Field(72, gt=0)
    fill_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline_width: int = Field(4, ge=0)
    shadow_color: Optional[str] = "#80000000"
    shadow_depth: int = Field(2, ge=0)
    highlight_color: str = "#FFFF00"
    position_x: float = Field(0.5, ge=0.0, le=1.0)
    position_y: float = Field(0.70, ge=0.0, le=1.0)
    word_by_word_highlight: bool = True
    bold: bool = True
    uppercase: bool = False

    def to_settings(self) -> SubtitleSettings:
        settings = SubtitleSettings()
        for key, value in self.model_dump().items():
            setattr(settings, key, value)
        return settings


class NormalizedRectModel(BaseModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0

    def to_rect(self) -> NormalizedRect:
        return NormalizedRect(x=self.x, y=self.y, width=self.width, height=self.height)


class SplitLayoutRequest(BaseModel):
    """Split layout configuration."""

    preset: SplitLayoutPreset = SplitLayoutPreset.AUTO
    primary_region: NormalizedRectModel = Field(default_factory=NormalizedRectModel)
    secondary_region: Optional[NormalizedRectModel] = Field(
        default_factory=lambda: NormalizedRectModel(x=0.0, y=0.55, width=1.0, height=0.45)
    )
    min_region_size: float = Field(0.20, gt=0.0, le=1.0)
    max_region_size: float = Field(1.0, gt=0.0, le=1.0)
    auto_detect_faces: bool = True

    def to_config(self) -> SplitLayoutConfig:
        return SplitLayoutConfig(
            preset=self.preset,
            primary_region=self.primary_region.to_rect(),
            secondary_region=self.secondary_region.to_rect() if self.secondary_region else None,
            min_region_size=self.min_region_size,
            max_region_size=self.max_region_size,
            auto_detect_faces=self.auto_detect_faces,
        )


class RenderJobRequest(BaseModel):
    """One clip to render."""

    source_video_path: str
    output_path: str
    start_time_ms: int = Field(..., ge=0)
    end_time_ms: int = Field(..., gt=0)
    candidate_id: Optional[str] = None
    source_draft_id: Optional[str] = None

    crop_mode: Literal["none", "auto_detect", "center", "manual", "split_layout"] = "auto_detect"
    manual_crop_offset_x: float = Field(0.0, ge=-1.0, le=1.0)
    split_layout: Optional[SplitLayoutRequest] = None
    output_width: int = Field(1080, ge=0)
    output_height: int = Field(1920, ge=0)

    burn_subtitles: bool = False
    subtitle_path: Optional[str] = None
    caption_preset: Optional[str] = Field(None, description="Preset ID, overrides subtitle_style")
    subtitle_style: Optional[SubtitleStyleRequest] = None

    video_quality: int = Field(23, ge=0, le=51, description="x264 CRF")
    logo_path: Optional[str] = None
    logo_scale: float = Field(0.15, gt=0.0, le=1.0)
    logo_margin: int = Field(30, ge=0)
    logo_position: Literal["top_left", "top_right", "bottom_left", "bottom_right"] = "top_right"

    @model_validator(mode="after")
    def validate_time_range(self) -> "RenderJobRequest":
        """Ensure the clip range is not empty."""
        if self.end_time_ms <= self.start_time_ms:
            raise ValueError(
                f"end_time_ms ({self.end_time_ms}) must be greater than "
                f"start_time_ms ({self.start_time_ms})"
            )
        return self


class RenderBatchRequest(BaseModel):
    """Jobs to render sequentially."""

    jobs: list[RenderJobRequest] = Field(..., min_length=1)
