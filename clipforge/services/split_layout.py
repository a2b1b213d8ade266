"""
Split layout geometry.

A split layout takes one or two sub-regions of the source frame and stacks them
vertically on the output canvas. Regions are normalized to the unit square.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from clipforge.services.crop_calculator import (
    DEFAULT_TARGET_ASPECT,
    crop_width_for,
    faces_need_two_crops,
)
from clipforge.services.face_detector import FrameFaceAnalysis

logger = logging.getLogger(__name__)


class SplitLayoutPreset(str, Enum):
    AUTO = "auto"
    SOLO = "solo"
    TOP_BOTTOM = "top_bottom"
    LEFT_RIGHT = "left_right"
    CUSTOM = "custom"


@dataclass(frozen=True)
class NormalizedRect:
    """Rectangle in [0, 1] canvas space."""

    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0

    def clamp_to_canvas(self, min_size: float = 0.05, max_size: float = 1.0) -> "NormalizedRect":
        """Clamp size into [min_size, max_size] and position so the rect stays on the canvas."""
        min_size = min(max(min_size, 0.01), 1.0)
        max_size = min(max(max_size, min_size), 1.0)
        width = min(max(self.width, min_size), max_size)
        height = min(max(self.height, min_size), max_size)
        x = min(max(self.x, 0.0), 1.0 - width)
        y = min(max(self.y, 0.0), 1.0 - height)
        return NormalizedRect(x=x, y=y, width=width, height=height)

    def to_pixels(self, frame_width: int, frame_height: int) -> tuple[int, int, int, int]:
        """
        Pixel rectangle (x, y, w, h) with even sizes for yuv420p.

        The rectangle stays inside the frame.
        """
        w = _even(self.width * frame_width, frame_width)
        h = _even(self.height * frame_height, frame_height)
        x = min(max(int(round(self.x * frame_width)), 0), frame_width - w)
        y = min(max(int(round(self.y * frame_height)), 0), frame_height - h)
        return x, y, w, h


FULL_FRAME = NormalizedRect()
DEFAULT_SECONDARY_REGION = NormalizedRect(0.0, 0.55, 1.0, 0.45)


class SplitLayoutConfig:
    """
    Split layout settings.

    Region assignments are clamped to [min_region_size, max_region_size] and
    to the canvas.
    """

    def __init__(
        self,
        enabled: bool = True,
        preset: SplitLayoutPreset = SplitLayoutPreset.AUTO,
        primary_region: NormalizedRect = FULL_FRAME,
        secondary_region: Optional[NormalizedRect] = DEFAULT_SECONDARY_REGION,
        min_region_size: float = 0.20,
        max_region_size: float = 1.0,
        auto_detect_faces: bool = True,
    ):
        self.enabled = enabled
        self.preset = preset
        self.min_region_size = min_region_size
        self.max_region_size = max_region_size
        self.auto_detect_faces = auto_detect_faces
        self.primary_region = primary_region
        self.secondary_region = secondary_region

    @property
    def primary_region(self) -> NormalizedRect:
        return self._primary_region

    @primary_region.setter
    def primary_region(self, value: NormalizedRect) -> None:
        self._primary_region = value.clamp_to_canvas(self.min_region_size, self.max_region_size)

    @property
    def secondary_region(self) -> Optional[NormalizedRect]:
        return self._secondary_region

    @secondary_region.setter
    def secondary_region(self, value: Optional[NormalizedRect]) -> None:
        self._secondary_region = (
            value.clamp_to_canvas(self.min_region_size, self.max_region_size)
            if value is not None else None
        )


@dataclass(frozen=True)
class SplitLayoutPlan:
    """Resolved source regions in pixels and the output rows they fill."""

    preset: SplitLayoutPreset
    primary: tuple[int, int, int, int]
    secondary: Optional[tuple[int, int, int, int]]
    primary_output_height: int
    secondary_output_height: int

    @property
    def is_solo(self) -> bool:
        return self.secondary is None


def resolve_preset(
    config: SplitLayoutConfig,
    analyses: Sequence[FrameFaceAnalysis],
    source_width: int,
    source_height: int,
) -> tuple[SplitLayoutPreset, NormalizedRect, Optional[NormalizedRect]]:
    """
    Turn a preset into normalized (primary, secondary) source regions.

    AUTO picks LEFT_RIGHT regions around two distant face clusters and SOLO
    otherwise.
    """
    preset = config.preset
    if preset == SplitLayoutPreset.SOLO:
        return preset, FULL_FRAME, None
    if preset == SplitLayoutPreset.TOP_BOTTOM:
        return preset, NormalizedRect(0.0, 0.0, 1.0, 0.5), NormalizedRect(0.0, 0.5, 1.0, 0.5)
    if preset == SplitLayoutPreset.LEFT_RIGHT:
        return preset, NormalizedRect(0.0, 0.0, 0.5, 1.0), NormalizedRect(0.5, 0.0, 0.5, 1.0)
    if preset == SplitLayoutPreset.CUSTOM:
        return preset, config.primary_region, config.secondary_region

    if config.auto_detect_faces and analyses and source_width > 0 and source_height > 0:
        centers = faces_need_two_crops(analyses, source_width, source_height)
        if centers is not None:
            left, right = _regions_around(centers, source_width, source_height)
            logger.debug(f"Auto split layout: two speakers at x={centers[0]:.0f} and x={centers[1]:.0f}")
            return SplitLayoutPreset.LEFT_RIGHT, left, right

    return SplitLayoutPreset.SOLO, FULL_FRAME, None


def plan_split_layout(
    config: SplitLayoutConfig,
    source_width: int,
    source_height: int,
    output_height: int,
    analyses: Sequence[FrameFaceAnalysis] = (),
) -> SplitLayoutPlan:
    """
    Compute pixel regions and output row heights for a split layout.

    The output height is shared in proportion to the source heights of the
    two regions; each row keeps at least one pixel.
    """
    preset, primary, secondary = resolve_preset(config, analyses, source_width, source_height)
    primary = primary.clamp_to_canvas(config.min_region_size, config.max_region_size)
    primary_px = primary.to_pixels(source_width, source_height)

    if secondary is None or not config.enabled:
        return SplitLayoutPlan(
            preset=preset,
            primary=primary_px,
            secondary=None,
            primary_output_height=output_height,
            secondary_output_height=0,
        )

    secondary = secondary.clamp_to_canvas(config.min_region_size, config.max_region_size)
    secondary_px = secondary.to_pixels(source_width, source_height)

    ratio = primary_px[3] / (primary_px[3] + secondary_px[3])
    primary_height = int(round(output_height * ratio))
    primary_height = min(max(primary_height, 1), output_height - 1)
    # Even row heights keep the stacked canvas yuv420p friendly
    if primary_height % 2 and output_height % 2 == 0 and primary_height + 1 < output_height:
        primary_height += 1

    return SplitLayoutPlan(
        preset=preset,
        primary=primary_px,
        secondary=secondary_px,
        primary_output_height=primary_height,
        secondary_output_height=output_height - primary_height,
    )


def _regions_around(
    centers: tuple[float, float],
    source_width: int,
    source_height: int,
) -> tuple[NormalizedRect, NormalizedRect]:
    # Each speaker fills half the canvas height, so its region is twice as wide as a 9:16 crop
    width = min(1.0, 2 * crop_width_for(source_width, source_height, DEFAULT_TARGET_ASPECT) / source_width)
    rects = []
    for center_x in centers:
        x = center_x / source_width - width / 2
        rects.append(NormalizedRect(x=x, y=0.0, width=width, height=1.0))
    return rects[0], rects[1]


def _even(value: float, limit: int) -> int:
    size = int(round(value))
    size -= size % 2
    upper = limit - (limit % 2)
    return max(2, min(size, upper)) if upper >= 2 else max(1, limit)
