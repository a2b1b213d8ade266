"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from clipforge.services.face_detector import FaceDetectionResult, FrameFaceAnalysis  # noqa: E402
from clipforge.services.llm_client import LlmClient, LlmUnavailableError  # noqa: E402
from clipforge.services.transcript_store import TimedSegment, TimedWord  # noqa: E402


class FakeLlmClient(LlmClient):
    """LLM client returning canned responses in call order."""

    def __init__(self, responses=None, ready=True):
        self.responses = list(responses or [])
        self.ready = ready
        self.prompts = []

    @property
    def is_ready(self):
        return self.ready

    async def complete(self, prompt):
        self.prompts.append(prompt)
        if not self.responses:
            return "[]"
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_segment(text, start_s, end_s, words=None):
    """Build a TimedSegment from second-based times."""
    return TimedSegment(
        text=text,
        start_time_ms=int(start_s * 1000),
        end_time_ms=int(end_s * 1000),
        words=tuple(
            TimedWord(text=w, start_time_ms=int(ws * 1000), end_time_ms=int(we * 1000))
            for w, ws, we in (words or [])
        ),
    )


def make_face(center_x, center_y=300, size=100, confidence=0.9):
    """Build a square face detection centered at a point."""
    return FaceDetectionResult(
        bbox=(int(center_x - size / 2), int(center_y - size / 2), size, size),
        confidence=confidence,
    )


def make_analyses(*frames):
    """One FrameFaceAnalysis per list of faces, two seconds apart."""
    return [
        FrameFaceAnalysis(timestamp_ms=i * 2000, faces=list(faces))
        for i, faces in enumerate(frames)
    ]


@pytest.fixture
def fake_llm():
    """Factory for FakeLlmClient instances."""
    return FakeLlmClient


@pytest.fixture
def unavailable_error():
    return LlmUnavailableError("LLM not configured")


@pytest.fixture(scope="session")
def sample_segments():
    """Six ten-second transcript segments."""
    return [
        make_segment(f"Sentence number {i} about the topic.", i * 10, (i + 1) * 10)
        for i in range(6)
    ]


@pytest.fixture(scope="session")
def sample_image_bytes():
    """A JPEG-encoded blank 640x480 frame."""
    import cv2
    import numpy as np

    image = np.zeros((480, 640, 3), dtype=np.uint8)
    ok, encoded = cv2.imencode(".jpg", image)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def mock_settings():
    """Settings values tests rely on."""
    return {
        "min_clip_duration_ms": 15_000,
        "max_clip_duration_ms": 90_000,
        "min_highlight_score": 60.0,
        "scoring_chunk_chars": 3500,
        "face_max_samples": 30,
        "target_output_width": 1080,
        "target_output_height": 1920,
    }
