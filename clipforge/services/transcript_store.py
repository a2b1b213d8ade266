"""
Transcript segment store.

Transcripts are produced by an external transcription step and saved as one JSON
file per draft. This module only reads them back.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimedWord:
    """A single word with timing information."""

    text: str
    start_time_ms: int
    end_time_ms: int


@dataclass(frozen=True)
class TimedSegment:
    """A transcript segment (sentence or phrase) with optional word timing."""

    text: str
    start_time_ms: int
    end_time_ms: int
    words: tuple[TimedWord, ...] = field(default_factory=tuple)

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms


def segment_from_dict(data: dict) -> TimedSegment:
    """Build a TimedSegment from its JSON representation."""
    words = tuple(
        TimedWord(
            text=str(w.get("text", "")),
            start_time_ms=int(w["start_time_ms"]),
            end_time_ms=int(w["end_time_ms"]),
        )
        for w in data.get("words") or []
    )
    return TimedSegment(
        text=str(data.get("text", "")),
        start_time_ms=int(data["start_time_ms"]),
        end_time_ms=int(data["end_time_ms"]),
        words=words,
    )


class TranscriptStore:
    """
    Reads transcript segments saved as ``{directory}/{draft_id}.json``.

    The file holds either a list of segments or an object with a
    ``segments`` list. Each segment has ``text``, ``start_time_ms``,
    ``end_time_ms`` and an optional ``words`` list of the same shape.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, draft_id: str) -> str:
        return os.path.join(self.directory, f"{os.path.basename(draft_id)}.json")

    def load_segments(self, draft_id: Optional[str]) -> list[TimedSegment]:
        """
        Load the segments stored for a draft.

        Returns an empty list when the draft has no transcript or the file
        cannot be parsed.
        """
        if not draft_id:
            return []

        path = self.path_for(draft_id)
        if not os.path.isfile(path):
            logger.debug(f"No transcript stored for draft {draft_id}")
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read transcript {path}: {e}")
            return []

        raw_segments = data.get("segments") if isinstance(data, dict) else data
        if not isinstance(raw_segments, list):
            logger.warning(f"Transcript {path} holds no segment list")
            return []

        segments: list[TimedSegment] = []
        for raw in raw_segments:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object segment in {path}: {raw!r}")
                continue
            try:
                segments.append(segment_from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed segment in {path}: {e}")

        segments.sort(key=lambda s: s.start_time_ms)
        return segments
