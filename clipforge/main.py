"""
FastAPI application entry point for Clipforge.

Clipforge turns long-form videos and their transcripts into vertical highlight clips:
1. Candidate windows from transcript segments
2. LLM highlight scoring
3. Face-aware cropping, karaoke subtitles and FFmpeg rendering
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipforge.config import get_settings
from clipforge.routers import health, highlights, render
from clipforge.services.face_analysis import FaceAnalysisService
from clipforge.services.face_detector import create_face_detector
from clipforge.services.frame_extractor import FrameExtractor
from clipforge.services.highlight_scoring import HighlightScoringService
from clipforge.services.llm_client import create_llm_client
from clipforge.services.rendering_service import RenderingService
from clipforge.services.transcript_store import TranscriptStore

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Builds the pipeline services on startup and releases them on shutdown.
    """
    settings = get_settings()
    logger.info("Starting Clipforge...")

    os.makedirs(settings.temp_directory, exist_ok=True)
    logger.info(f"Temp directory: {settings.temp_directory}")

    logger.info("Loading face detector...")
    face_detector = create_face_detector(settings.face_confidence_threshold)
    if face_detector is None:
        logger.warning("No face detector available, auto crops will be centered")

    frame_extractor = FrameExtractor()
    face_analysis = FaceAnalysisService(face_detector, frame_extractor)
    transcript_store = TranscriptStore(settings.transcripts_directory)
    llm_client = create_llm_client()
    scoring_service = HighlightScoringService(llm_client)
    rendering_service = RenderingService(
        face_analysis=face_analysis,
        frame_extractor=frame_extractor,
        transcript_store=transcript_store,
    )

    # Store in app state for dependency injection
    app.state.face_detector = face_detector
    app.state.face_analysis = face_analysis
    app.state.transcript_store = transcript_store
    app.state.llm_client = llm_client
    app.state.scoring_service = scoring_service
    app.state.rendering_service = rendering_service

    _verify_external_tools()

    logger.info("Clipforge ready to accept requests.")

    yield

    logger.info("Shutting down Clipforge...")
    await llm_client.close()
    if face_detector is not None:
        face_detector.close()

    subtitles_dir = os.path.join(settings.temp_directory, "subtitles")
    if os.path.isdir(subtitles_dir):
        shutil.rmtree(subtitles_dir, ignore_errors=True)

    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    settings = get_settings()
    tools = {
        settings.ffmpeg_path: "FFmpeg for frame extraction and rendering",
        settings.ffprobe_path: "FFprobe for video analysis",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - rendering will fail")


# Create FastAPI application
app = FastAPI(
    title="Clipforge",
    description="""
Clipforge - highlight clip extraction and rendering.

## Features

### Highlights API (`/highlights`)
- Candidate windows from timestamped transcripts
- LLM highlight scoring with non-overlapping selection

### Render API (`/render`)
- Face-aware 9:16 cropping, split layouts and logo overlays
- Burned-in karaoke subtitles
- Sequential batch rendering with progress and cancellation

## Usage

1. Score a transcript: `POST /highlights/score`
2. Submit clips: `POST /render/jobs`
3. Poll progress: `GET /render/jobs/{batch_id}`
    """,
    version=health.VERSION,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(highlights.router)
app.include_router(render.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": get_settings().app_name,
        "version": health.VERSION,
        "status": "running",
        "docs": "/docs",
    }
