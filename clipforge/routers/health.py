"""
Health check endpoints.
"""

from fastapi import APIRouter, Request

from clipforge.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(status="healthy", version=VERSION)


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    The service is ready when FFmpeg is available. Face detection and the LLM
    are optional: without them crops fall back to the center and scoring
    returns no candidates.
    """
    face_analysis = getattr(request.app.state, "face_analysis", None)
    rendering_service = getattr(request.app.state, "rendering_service", None)
    llm_client = getattr(request.app.state, "llm_client", None)

    face_ready = face_analysis is not None and face_analysis.is_ready()
    ffmpeg_ready = rendering_service is not None and rendering_service.encoder.is_available()
    llm_ready = llm_client is not None and llm_client.is_ready

    return ReadinessResponse(
        ready=ffmpeg_ready,
        face_detector="ready" if face_ready else "unavailable",
        ffmpeg="available" if ffmpeg_ready else "not_found",
        llm="ready" if llm_ready else "not_configured",
    )


@router.get("/health/capabilities")
async def capability_status(request: Request):
    """
    Detailed capability status.

    Reports which optional capabilities are active and what the pipeline
    falls back to without them.
    """
    face_analysis = getattr(request.app.state, "face_analysis", None)
    llm_client = getattr(request.app.state, "llm_client", None)
    transcript_store = getattr(request.app.state, "transcript_store", None)

    return {
        "capabilities": {
            "face_detection": {
                "ready": face_analysis.is_ready() if face_analysis else False,
                "fallback": "center crop",
            },
            "llm_scoring": {
                "ready": llm_client.is_ready if llm_client else False,
                "model": getattr(llm_client, "model", None),
                "fallback": "no candidates",
            },
            "transcript_store": {
                "directory": transcript_store.directory if transcript_store else None,
            },
        }
    }
