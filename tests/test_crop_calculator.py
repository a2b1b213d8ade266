"""
Tests for face-based crop calculation.
"""

import pytest

from clipforge.services.crop_calculator import (
    CropRectangle,
    CropStrategy,
    calculate_crop_region,
    cluster_faces,
    create_center_crop,
    create_manual_crop,
    crop_width_for,
    faces_need_two_crops,
)
from tests.conftest import make_analyses, make_face

SOURCE_WIDTH = 1920
SOURCE_HEIGHT = 1080
# round(1080 * 9 / 16)
CROP_WIDTH = 608


def assert_valid_region(result):
    region = result.region
    assert region.y == 0
    assert region.height == SOURCE_HEIGHT
    assert region.width == CROP_WIDTH
    assert 0 <= region.x <= SOURCE_WIDTH - region.width


class TestCalculateCropRegion:
    """Tests for calculate_crop_region strategies."""

    def test_no_faces_centers_crop(self):
        """Without detections the crop is centered on the frame."""
        analyses = make_analyses([], [], [])

        result = calculate_crop_region(analyses, SOURCE_WIDTH, SOURCE_HEIGHT, 1080, 1920)

        assert result.strategy == CropStrategy.CENTER_FALLBACK
        assert not result.based_on_face_detection
        assert result.faces_considered == 0
        assert result.region.x == (SOURCE_WIDTH - CROP_WIDTH) // 2
        assert_valid_region(result)

    def test_no_analyses_centers_crop(self):
        result = calculate_crop_region([], SOURCE_WIDTH, SOURCE_HEIGHT)
        assert result.strategy == CropStrategy.CENTER_FALLBACK

    def test_single_face_followed(self):
        analyses = make_analyses([make_face(400)], [make_face(420)], [make_face(410)])

        result = calculate_crop_region(analyses, SOURCE_WIDTH, SOURCE_HEIGHT, 1080, 1920)

        assert result.strategy == CropStrategy.SINGLE_FACE
        assert result.based_on_face_detection
        assert result.faces_considered == 3
        assert result.region.x == 410 - CROP_WIDTH // 2
        assert_valid_region(result)

    def test_dominant_cluster_counts_as_single(self):
        """A cluster holding 80% of faces wins even with a stray detection."""
        frames = [[make_face(1000)] for _ in range(8)] + [[make_face(200)]]
        result = calculate_crop_region(make_analyses(*frames), SOURCE_WIDTH, SOURCE_HEIGHT)

        assert result.strategy == CropStrategy.SINGLE_FACE
        assert result.region.x == 1000 - CROP_WIDTH // 2

    def test_face_near_edge_clamped(self):
        analyses = make_analyses([make_face(1900)])

        result = calculate_crop_region(analyses, SOURCE_WIDTH, SOURCE_HEIGHT)

        assert result.region.x == SOURCE_WIDTH - CROP_WIDTH
        assert_valid_region(result)

    def test_close_faces_share_crop(self):
        """Two speakers within reach of one crop are framed together."""
        analyses = make_analyses(
            [make_face(800), make_face(1200)],
            [make_face(805), make_face(1195)],
        )

        result = calculate_crop_region(analyses, SOURCE_WIDTH, SOURCE_HEIGHT)

        assert result.strategy == CropStrategy.MULTIPLE_FACES
        assert result.region.x == 1000 - CROP_WIDTH // 2
        assert_valid_region(result)

    def test_preferred_dominant_labels_shared_crop(self):
        analyses = make_analyses(
            [make_face(800), make_face(1200)],
            [make_face(805), make_face(1195)],
        )

        result = calculate_crop_region(
            analyses, SOURCE_WIDTH, SOURCE_HEIGHT,
            preferred_strategy=CropStrategy.DOMINANT_FACE,
        )

        assert result.strategy == CropStrategy.DOMINANT_FACE

    def test_distant_faces_follow_largest(self):
        """Faces too far apart for one crop follow the biggest face."""
        analyses = make_analyses(
            [make_face(200, size=80), make_face(1700, size=200)],
            [make_face(205, size=80), make_face(1705, size=200)],
        )

        result = calculate_crop_region(analyses, SOURCE_WIDTH, SOURCE_HEIGHT)

        assert result.strategy == CropStrategy.DOMINANT_FACE
        assert result.region.x == SOURCE_WIDTH - CROP_WIDTH
        assert_valid_region(result)

    def test_default_target_is_nine_by_sixteen(self):
        result = calculate_crop_region(make_analyses([make_face(960)]), SOURCE_WIDTH, SOURCE_HEIGHT)
        assert result.region.width == CROP_WIDTH

    def test_narrow_source_uses_full_width(self):
        """A source narrower than the target aspect is not cropped horizontally."""
        result = calculate_crop_region(make_analyses([make_face(200)]), 400, 1080)

        assert result.region == CropRectangle(x=0, y=0, width=400, height=1080)


class TestClusterFaces:
    """Tests for single-pass face clustering."""

    def test_groups_nearby_faces(self):
        faces = [make_face(100), make_face(150), make_face(900), make_face(130)]

        clusters = cluster_faces(faces)

        assert sorted(c.face_count for c in clusters) == [1, 3]

    def test_reclustering_centroids_is_stable(self):
        """Clustering cluster centers again yields the same number of clusters."""
        faces = [make_face(x) for x in (100, 140, 600, 640, 1500)]
        clusters = cluster_faces(faces)

        centers = [make_face(c.center_x, c.center_y) for c in clusters]
        again = cluster_faces(centers)

        assert len(again) == len(clusters)

    def test_empty(self):
        assert cluster_faces([]) == []


class TestCropHelpers:
    """Tests for center and manual crops."""

    def test_center_crop(self):
        result = create_center_crop(SOURCE_WIDTH, SOURCE_HEIGHT)

        assert result.strategy == CropStrategy.CENTER_FALLBACK
        assert result.region.to_filter_args() == f"{CROP_WIDTH}:1080:656:0"

    @pytest.mark.parametrize("offset,expected_x", [
        (-1.0, 0),
        (0.0, 656),
        (1.0, SOURCE_WIDTH - CROP_WIDTH),
        (5.0, SOURCE_WIDTH - CROP_WIDTH),
    ])
    def test_manual_crop(self, offset, expected_x):
        result = create_manual_crop(SOURCE_WIDTH, SOURCE_HEIGHT, 9 / 16, offset)

        assert result.strategy == CropStrategy.MANUAL
        assert result.region.x == expected_x

    def test_crop_width_never_exceeds_source(self):
        assert crop_width_for(300, 1080, 9 / 16) == 300
        assert crop_width_for(1920, 1080, 1.0) == 1080


class TestFacesNeedTwoCrops:

    def test_distant_speakers(self):
        analyses = make_analyses(
            [make_face(200), make_face(1700)],
            [make_face(210), make_face(1710)],
        )

        centers = faces_need_two_crops(analyses, SOURCE_WIDTH, SOURCE_HEIGHT)

        assert centers == (205, 1705)

    def test_single_speaker(self):
        analyses = make_analyses([make_face(500)], [make_face(510)])
        assert faces_need_two_crops(analyses, SOURCE_WIDTH, SOURCE_HEIGHT) is None

    def test_close_speakers(self):
        analyses = make_analyses([make_face(800), make_face(1200)])
        assert faces_need_two_crops(analyses, SOURCE_WIDTH, SOURCE_HEIGHT) is None
