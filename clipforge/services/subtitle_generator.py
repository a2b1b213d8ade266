"""
Subtitle Generator - Compiles clip-relative transcript segments into ASS subtitles
with karaoke word highlighting.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Sequence

from clipforge.config import SubtitleSettings
from clipforge.services.transcript_store import TimedSegment

logger = logging.getLogger(__name__)

DEFAULT_PLAY_RES_X = 1080
DEFAULT_PLAY_RES_Y = 1920
FALLBACK_ASS_COLOR = "&H00FFFFFF"
TRANSPARENT_SHADOW = "#00000000"

# Bottom-center anchor; \pos places the anchor point
ALIGNMENT_BOTTOM_CENTER = 2


@dataclass(frozen=True)
class ClipSubtitleWord:
    """A word with timing relative to the clip start."""

    text: str
    start_time_ms: int
    end_time_ms: int


@dataclass(frozen=True)
class ClipSubtitleSegment:
    """A subtitle line with timing relative to the clip start."""

    text: str
    start_time_ms: int
    end_time_ms: int
    words: tuple[ClipSubtitleWord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SubtitleEvent:
    """One styled Dialogue entry."""

    start_cs: int
    end_cs: int
    text: str
    karaoke: bool = False
    highlight_durations_cs: tuple[int, ...] = ()

    @property
    def duration_cs(self) -> int:
        return self.end_cs - self.start_cs


@dataclass
class SubtitleTrack:
    """Compiled ASS document and the events it contains."""

    content: str
    events: list[SubtitleEvent]


def build_clip_subtitle_segments(
    segments: Sequence[TimedSegment],
    clip_start_ms: int,
    clip_end_ms: int,
) -> list[ClipSubtitleSegment]:
    """
    Clamp source transcript segments to a clip and re-base them to clip time.

    Segments and words that end up with zero length are dropped.
    """
    result: list[ClipSubtitleSegment] = []
    for segment in segments:
        start = max(segment.start_time_ms, clip_start_ms)
        end = min(segment.end_time_ms, clip_end_ms)
        if end <= start:
            continue

        words = []
        for word in segment.words:
            word_start = max(word.start_time_ms, start)
            word_end = min(word.end_time_ms, end)
            if word_end <= word_start or not word.text.strip():
                continue
            words.append(ClipSubtitleWord(
                text=word.text.strip(),
                start_time_ms=word_start - clip_start_ms,
                end_time_ms=word_end - clip_start_ms,
            ))

        result.append(ClipSubtitleSegment(
            text=segment.text.strip(),
            start_time_ms=start - clip_start_ms,
            end_time_ms=end - clip_start_ms,
            words=tuple(words),
        ))
    return result


class SubtitleGenerator:
    """
    Generates ASS subtitle tracks.

    Segments with word timing become karaoke lines (``\\k`` tags) when word
    highlighting is enabled; other segments render as static text. Position
    and margins scale with the play resolution.
    """

    def compile(
        self,
        segments: Sequence[ClipSubtitleSegment],
        settings: Optional[SubtitleSettings] = None,
        play_res_x: int = DEFAULT_PLAY_RES_X,
        play_res_y: int = DEFAULT_PLAY_RES_Y,
        title: str = "Clip Subtitle",
    ) -> SubtitleTrack:
        """
        Compile segments into an ASS document.

        Args:
            segments: Clip-relative segments ordered by start time
            settings: Styling (defaults to SubtitleSettings())
            play_res_x: Script width, normally the output width
            play_res_y: Script height, normally the output height
            title: Script title

        Returns:
            SubtitleTrack with the document text and its events
        """
        style = settings or SubtitleSettings()
        if play_res_x <= 0 or play_res_y <= 0:
            play_res_x, play_res_y = DEFAULT_PLAY_RES_X, DEFAULT_PLAY_RES_Y

        pos_x = int(round(_clamp_unit(style.position_x) * play_res_x))
        pos_y = int(round(_clamp_unit(style.position_y) * play_res_y))

        events: list[SubtitleEvent] = []
        for segment in segments:
            event = self._build_event(segment, style)
            if event is not None:
                events.append(event)

        lines = [
            self._generate_ass_header(style, play_res_x, play_res_y, title),
            self._generate_events_header(),
        ]
        for event in events:
            style_name = "Karaoke" if event.karaoke else "Default"
            effect = "karaoke" if event.karaoke else ""
            lines.append(
                f"Dialogue: 0,{format_ass_time(event.start_cs)},{format_ass_time(event.end_cs)},"
                f"{style_name},,0,0,0,{effect},{{\\pos({pos_x},{pos_y})}}{event.text}\n"
            )

        return SubtitleTrack(content="".join(lines), events=events)

    def write(
        self,
        output_path: str,
        segments: Sequence[ClipSubtitleSegment],
        settings: Optional[SubtitleSettings] = None,
        play_res_x: int = DEFAULT_PLAY_RES_X,
        play_res_y: int = DEFAULT_PLAY_RES_Y,
    ) -> Optional[str]:
        """
        Compile and save a subtitle file.

        Returns:
            The path written, or None when no segment produced an event
        """
        track = self.compile(segments, settings, play_res_x, play_res_y)
        if not track.events:
            logger.debug("No subtitle events to write")
            return None

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(track.content)

        logger.debug(f"Generated ASS subtitles: {output_path} ({len(track.events)} events)")
        return output_path

    def _build_event(
        self,
        segment: ClipSubtitleSegment,
        style: SubtitleSettings,
    ) -> Optional[SubtitleEvent]:
        start_cs = to_centiseconds(segment.start_time_ms)
        end_cs = to_centiseconds(segment.end_time_ms)
        if end_cs <= start_cs:
            return None

        if segment.words and style.word_by_word_highlight:
            return self._build_karaoke_event(segment, style, start_cs, end_cs)

        text = segment.text.strip()
        if not text:
            return None
        if style.uppercase:
            text = text.upper()
        return SubtitleEvent(start_cs=start_cs, end_cs=end_cs, text=escape_ass_text(text))

    def _build_karaoke_event(
        self,
        segment: ClipSubtitleSegment,
        style: SubtitleSettings,
        start_cs: int,
        end_cs: int,
    ) -> Optional[SubtitleEvent]:
        words = [
            w for w in sorted(segment.words, key=lambda w: w.start_time_ms)
            if min(w.end_time_ms, segment.end_time_ms) > max(w.start_time_ms, segment.start_time_ms)
            and w.text.strip()
        ]
        if not words:
            return None

        # Word i is highlighted from its own start until the next word starts.
        # The first starts with the line and the last ends with it, so the
        # durations always add up to the line duration.
        boundaries = [start_cs]
        for word in words[1:]:
            boundary = min(max(to_centiseconds(word.start_time_ms), boundaries[-1]), end_cs)
            boundaries.append(boundary)
        boundaries.append(end_cs)

        durations = tuple(b - a for a, b in zip(boundaries, boundaries[1:]))
        parts = []
        for word, duration in zip(words, durations):
            text = word.text.strip()
            if style.uppercase:
                text = text.upper()
            parts.append(f"{{\\k{duration}}}{escape_ass_text(text)}")

        return SubtitleEvent(
            start_cs=start_cs,
            end_cs=end_cs,
            text=" ".join(parts),
            karaoke=True,
            highlight_durations_cs=durations,
        )

    def _generate_ass_header(
        self,
        style: SubtitleSettings,
        play_res_x: int,
        play_res_y: int,
        title: str,
    ) -> str:
        """Generate ASS header with style definitions."""
        fill_color = hex_to_ass_color(style.fill_color)
        highlight_color = hex_to_ass_color(style.highlight_color)
        outline_color = hex_to_ass_color(style.outline_color)
        if style.shadow_color:
            shadow_color = hex_to_ass_color(style.shadow_color)
            shadow_depth = style.shadow_depth
        else:
            shadow_color = hex_to_ass_color(TRANSPARENT_SHADOW)
            shadow_depth = 0

        bold = -1 if style.bold else 0
        margin_v = int(play_res_y * (1 - _clamp_unit(style.position_y)))
        common = (
            f"{outline_color},{shadow_color},{bold},0,0,0,100,100,0,0,1,"
            f"{style.outline_width},{shadow_depth},{ALIGNMENT_BOTTOM_CENTER},20,20,{margin_v},1"
        )

        # \k fills a syllable from SecondaryColour to PrimaryColour, so the
        # karaoke style swaps fill and highlight
        return f"""[Script Info]
Title: {title}
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
YCbCr Matrix: TV.709
PlayResX: {play_res_x}
PlayResY: {play_res_y}

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,{style.font_family},{style.font_size},{fill_color},{highlight_color},{common}
Style: Karaoke,{style.font_family},{style.font_size},{highlight_color},{fill_color},{common}

"""

    def _generate_events_header(self) -> str:
        """Generate ASS events section header."""
        return "[Events]\nFormat: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"


def hex_to_ass_color(hex_color: Optional[str]) -> str:
    """
    Convert ``#RRGGBB`` or ``#AARRGGBB`` to ASS ``&HAABBGGRR``.

    Anything else maps to opaque white.
    """
    value = (hex_color or "").strip().lstrip("#")
    if len(value) not in (6, 8) or any(c not in "0123456789abcdefABCDEF" for c in value):
        return FALLBACK_ASS_COLOR

    value = value.upper()
    alpha = "00"
    if len(value) == 8:
        alpha, value = value[:2], value[2:]
    r, g, b = value[0:2], value[2:4], value[4:6]
    return f"&H{alpha}{b}{g}{r}"


def to_centiseconds(ms: int) -> int:
    return int(round(ms / 10))


def format_ass_time(centiseconds: int) -> str:
    """Format centiseconds as ASS time (H:MM:SS.CC)."""
    centiseconds = max(0, int(centiseconds))
    hours, rem = divmod(centiseconds, 360_000)
    minutes, rem = divmod(rem, 6000)
    seconds, cs = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{seconds:02d}.{cs:02d}"


def escape_ass_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("{", "\\{")
        .replace("}", "\\}")
        .replace("\r\n", "\\N")
        .replace("\n", "\\N")
        .replace("\r", "\\N")
    )


def _clamp_unit(value: float) -> float:
    return min(max(value, 0.0), 1.0)
