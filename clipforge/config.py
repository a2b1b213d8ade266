"""
Configuration module using Pydantic Settings for environment variable management.

Only deployment-specific values are exposed as environment variables. Pipeline
constants are hardcoded properties so every deployment windows, scores, crops and
encodes clips the same way.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class SubtitleSettings:
    """Burned-in subtitle styling (defaults tuned for 1080x1920 output)."""

    font_family: str = "Arial Black"
    font_size: int = 72
    fill_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline_width: int = 4
    shadow_color: Optional[str] = "#80000000"
    shadow_depth: int = 2
    highlight_color: str = "#FFFF00"
    position_x: float = 0.5  # Fraction of frame width
    position_y: float = 0.70  # Fraction of frame height
    word_by_word_highlight: bool = True
    bold: bool = True
    uppercase: bool = False


# ============================================================
# CAPTION PRESETS
# ============================================================

class CaptionPreset:
    """
    Available caption preset identifiers.

    Callers can pick a preset instead of configuring every subtitle field.
    """
    VIRAL_GOLD = "viral_gold"
    CLEAN_WHITE = "clean_white"
    NEON_POP = "neon_pop"
    BOLD_BOXED = "bold_boxed"
    GRADIENT_GLOW = "gradient_glow"


def get_caption_preset(preset_id: str) -> SubtitleSettings:
    """
    Get SubtitleSettings for a given preset ID.

    Args:
        preset_id: One of the CaptionPreset constants

    Returns:
        Configured SubtitleSettings for the preset

    Raises:
        ValueError: If preset_id is not recognized
    """
    presets = {
        CaptionPreset.VIRAL_GOLD: _create_viral_gold_style,
        CaptionPreset.CLEAN_WHITE: _create_clean_white_style,
        CaptionPreset.NEON_POP: _create_neon_pop_style,
        CaptionPreset.BOLD_BOXED: _create_bold_boxed_style,
        CaptionPreset.GRADIENT_GLOW: _create_gradient_glow_style,
    }

    if preset_id not in presets:
        valid_presets = list(presets.keys())
        raise ValueError(f"Unknown caption preset: {preset_id}. Valid presets: {valid_presets}")

    return presets[preset_id]()


def get_available_presets() -> list[dict]:
    """List caption presets with the metadata a UI needs to render a picker."""
    return [
        {
            "id": CaptionPreset.VIRAL_GOLD,
            "name": "Viral Gold",
            "description": "Bold white text with gold karaoke highlighting",
            "preview_colors": {"fill": "#FFFFFF", "highlight": "#FFD700"},
        },
        {
            "id": CaptionPreset.CLEAN_WHITE,
            "name": "Clean White",
            "description": "Minimal white text with a subtle highlight",
            "preview_colors": {"fill": "#FFFFFF", "highlight": "#E0E0E0"},
        },
        {
            "id": CaptionPreset.NEON_POP,
            "name": "Neon Pop",
            "description": "Cyan text with magenta highlighting",
            "preview_colors": {"fill": "#00FFFF", "highlight": "#FF00FF"},
        },
        {
            "id": CaptionPreset.BOLD_BOXED,
            "name": "Bold Boxed",
            "description": "Heavy outline with yellow highlights, placed low in the frame",
            "preview_colors": {"fill": "#FFFFFF", "highlight": "#FFFF00"},
        },
        {
            "id": CaptionPreset.GRADIENT_GLOW,
            "name": "Gradient Glow",
            "description": "White text with coral accents and a purple glow",
            "preview_colors": {"fill": "#FFFFFF", "highlight": "#FF6B6B"},
        },
    ]


def _create_viral_gold_style() -> SubtitleSettings:
    style = SubtitleSettings()
    style.highlight_color = "#FFD700"
    style.uppercase = True
    return style


def _create_clean_white_style() -> SubtitleSettings:
    style = SubtitleSettings()
    style.font_family = "Arial"
    style.font_size = 64
    style.highlight_color = "#E0E0E0"
    style.outline_color = "#333333"
    style.outline_width = 2
    style.shadow_color = "#80222222"
    style.shadow_depth = 1
    return style


def _create_neon_pop_style() -> SubtitleSettings:
    style = SubtitleSettings()
    style.font_size = 76
    style.fill_color = "#00FFFF"
    style.highlight_color = "#FF00FF"
    style.outline_width = 5
    style.shadow_color = "#000066"  # Blue glow
    style.uppercase = True
    return style


def _create_bold_boxed_style() -> SubtitleSettings:
    style = SubtitleSettings()
    style.font_family = "Helvetica"
    style.font_size = 68
    style.outline_width = 6
    style.position_y = 0.85
    style.uppercase = True
    return style


def _create_gradient_glow_style() -> SubtitleSettings:
    style = SubtitleSettings()
    style.font_size = 70
    style.highlight_color = "#FF6B6B"
    style.outline_color = "#4A0080"
    style.outline_width = 3
    style.shadow_color = "#2D004D"
    style.uppercase = True
    return style


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    Windowing, scoring, face analysis and encoding constants are hardcoded.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "clipforge"
    debug: bool = False
    log_level: str = "INFO"

    # LLM (highlight scoring is disabled without a key)
    openrouter_api_key: Optional[str] = None
    llm_model: str = "google/gemini-2.5-flash"

    # Security - API authentication
    clipforge_api_key: Optional[str] = None

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Storage
    temp_directory: str = "/tmp/clipforge"
    transcripts_directory: str = "/tmp/clipforge/transcripts"

    # Performance tuning
    max_scoring_requests: int = 3  # Concurrent LLM chunk requests

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    # Candidate windows
    @property
    def min_clip_duration_ms(self) -> int:
        return 15_000

    @property
    def max_clip_duration_ms(self) -> int:
        return 90_000

    @property
    def window_step_ms(self) -> int:
        return 10_000

    # Highlight scoring
    @property
    def max_candidates(self) -> int:
        return 5

    @property
    def min_highlight_score(self) -> float:
        return 60.0

    @property
    def scoring_chunk_chars(self) -> int:
        return 3500

    @property
    def scoring_window_overhead_chars(self) -> int:
        return 60

    @property
    def llm_temperature(self) -> float:
        return 0.3

    @property
    def llm_max_tokens(self) -> int:
        return 4000

    @property
    def openrouter_base_url(self) -> str:
        return "https://openrouter.ai/api/v1"

    # Face analysis
    @property
    def face_sample_interval_ms(self) -> int:
        return 2000

    @property
    def face_max_samples(self) -> int:
        return 30

    @property
    def face_confidence_threshold(self) -> float:
        return 0.7

    @property
    def face_cluster_distance_px(self) -> float:
        return 100.0

    # Rendering
    @property
    def target_output_width(self) -> int:
        return 1080

    @property
    def target_output_height(self) -> int:
        return 1920

    @property
    def ffmpeg_preset(self) -> str:
        return "medium"

    @property
    def ffmpeg_crf(self) -> int:
        return 23

    @property
    def audio_bitrate_kbps(self) -> int:
        return 192

    @property
    def progress_interval_ms(self) -> int:
        return 100

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def get_subtitle_settings(self) -> SubtitleSettings:
        """Default subtitle styling."""
        return SubtitleSettings()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
