"""
Services for the highlight clip pipeline.

Includes:
- Highlight selection (candidate windows, LLM scoring)
- Framing (frame extraction, face detection, crop calculation, split layouts)
- Rendering (ASS subtitles, filter graphs, FFmpeg encoding)
"""

from clipforge.services.face_analysis import FaceAnalysisService
from clipforge.services.face_detector import FaceDetector
from clipforge.services.ffmpeg_runner import FFmpegEncoder
from clipforge.services.frame_extractor import FrameExtractor
from clipforge.services.highlight_scoring import HighlightScoringService
from clipforge.services.llm_client import NullLlmClient, OpenRouterLlmClient
from clipforge.services.rendering_service import RenderingService
from clipforge.services.subtitle_generator import SubtitleGenerator
from clipforge.services.transcript_store import TranscriptStore
from clipforge.services.window_generator import generate_windows

__all__ = [
    # Highlights
    "generate_windows",
    "HighlightScoringService",
    "OpenRouterLlmClient",
    "NullLlmClient",
    # Framing
    "FrameExtractor",
    "FaceDetector",
    "FaceAnalysisService",
    # Rendering
    "SubtitleGenerator",
    "FFmpegEncoder",
    "RenderingService",
    "TranscriptStore",
]
