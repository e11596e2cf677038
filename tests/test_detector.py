"""Tests for the multi-method lesion detector."""

from __future__ import annotations

import numpy as np
import pytest

from moleguide.guidance.models import Frame, PerformanceLevel, PixelFormat
from moleguide.performance.profiles import profile_for_level
from moleguide.processing.detector import PRIMARY_METHOD, LesionDetector
from moleguide.processing.roi import ROISelector
from tests.conftest import add_lesion, make_lesion_frame, make_skin_frame

HIGH = profile_for_level(PerformanceLevel.HIGH)
LOW = profile_for_level(PerformanceLevel.LOW)


@pytest.fixture
def detector(detection_config, roi_config) -> LesionDetector:
    return LesionDetector(detection_config, ROISelector(roi_config))


class TestLesionDetector:
    def test_detects_centered_lesion(self, detector):
        """A dark disc on skin should be found near its true center."""
        frame = make_lesion_frame(160, 120, radius=20)
        det = detector.detect(frame, HIGH)

        assert det is not None
        assert det.method == PRIMARY_METHOD
        assert abs(det.center[0] - 160) < 3
        assert abs(det.center[1] - 120) < 3
        assert 1000 < det.area < 1400
        assert det.confidence >= 0.8

    def test_confidence_in_unit_range(self, detector):
        for radius in (3, 8, 12, 20, 24):
            det = detector.detect(make_lesion_frame(radius=radius), HIGH)
            if det is not None:
                assert 0.0 <= det.confidence <= 1.0

    def test_accepts_frame_wrapper(self, detector):
        frame = Frame.from_array(make_lesion_frame(160, 120))
        det = detector.detect(frame, HIGH)
        assert det is not None

    def test_gray_frame(self, detector):
        """Gray frames use the dark-intensity threshold instead of HSV."""
        gray = np.full((240, 320), 200, dtype=np.uint8)
        gray[100:140, 140:180] = 50
        det = detector.detect(Frame.from_array(gray), HIGH)

        assert det is not None
        assert abs(det.center[0] - 159.5) < 2
        assert abs(det.center[1] - 119.5) < 2

    def test_coordinates_are_full_frame_with_roi(self, detector):
        """Detections inside a cropped ROI are reported in frame coordinates."""
        frame = make_lesion_frame(200, 130, radius=15)
        det = detector.detect(frame, LOW)

        assert det is not None
        assert abs(det.center[0] - 200) < 3
        assert abs(det.center[1] - 130) < 3
        assert det.bbox.contains(det.center)

    def test_records_detection_for_adaptive_roi(self, detection_config, roi_config):
        selector = ROISelector(roi_config)
        detector = LesionDetector(detection_config, selector)
        detector.detect(make_lesion_frame(), HIGH)
        assert selector.stats()["history_size"] == 1

    def test_filters_large_lesions(self, detection_config, roi_config):
        """Contours larger than max_contour_area are rejected."""
        detection_config.max_contour_area = 500
        detection_config.enable_multi_method = False
        detector = LesionDetector(detection_config, ROISelector(roi_config))
        assert detector.detect(make_lesion_frame(radius=20), HIGH) is None

    def test_filters_elongated_shapes(self, detection_config, roi_config):
        """A thin bar fails the aspect-ratio filter."""
        detection_config.enable_multi_method = False
        detector = LesionDetector(detection_config, ROISelector(roi_config))
        frame = make_skin_frame()
        frame[118:122, 60:260] = (40, 60, 90)
        assert detector.detect(frame, HIGH) is None

    def test_picks_largest_valid_contour(self, detector):
        frame = add_lesion(make_skin_frame(noise=4), 80, 120, radius=8)
        frame = add_lesion(frame, 230, 120, radius=18)
        det = detector.detect(frame, HIGH)

        assert det is not None
        assert abs(det.center[0] - 230) < 3

    def test_blank_frame_without_fallback(self, detection_config, roi_config):
        detection_config.enable_multi_method = False
        detector = LesionDetector(detection_config, ROISelector(roi_config))
        assert detector.detect(make_skin_frame(), HIGH) is None


class TestFallback:
    def test_watershed_runs_when_primary_finds_nothing(self, detector, monkeypatch):
        calls = []
        monkeypatch.setattr(detector, "_detect_watershed",
                            lambda image, fmt: calls.append(image.shape) or None)
        assert detector.detect(make_skin_frame(), HIGH) is None
        assert len(calls) == 1

    def test_watershed_skipped_without_advanced_filters(self, detector, monkeypatch):
        calls = []
        monkeypatch.setattr(detector, "_detect_watershed",
                            lambda image, fmt: calls.append(image.shape) or None)
        assert detector.detect(make_skin_frame(), LOW) is None
        assert calls == []

    def test_watershed_skipped_when_disabled(self, detection_config, roi_config,
                                              monkeypatch):
        detection_config.enable_multi_method = False
        detector = LesionDetector(detection_config, ROISelector(roi_config))
        calls = []
        monkeypatch.setattr(detector, "_detect_watershed",
                            lambda image, fmt: calls.append(image.shape) or None)
        detector.detect(make_skin_frame(), HIGH)
        assert calls == []


class TestInvalidFrames:
    def test_too_small_frame(self, detector):
        assert detector.detect(make_skin_frame(50, 50), HIGH) is None

    def test_wrong_dtype(self, detector):
        frame = make_lesion_frame().astype(np.float32)
        assert detector.detect(frame, HIGH) is None

    def test_wrong_shape(self, detector):
        frame = np.zeros((240, 320, 2), dtype=np.uint8)
        assert detector.detect(frame, HIGH) is None

    def test_internal_error_returns_none(self, detector, monkeypatch):
        def boom(image, fmt):
            raise RuntimeError("segmentation failed")
        monkeypatch.setattr(detector, "_detect_primary", boom)
        assert detector.detect(make_lesion_frame(), HIGH) is None

    def test_rgb_frame(self, detector):
        bgr = make_lesion_frame()
        rgb = np.ascontiguousarray(bgr[:, :, ::-1])
        det = detector.detect(Frame.from_array(rgb, pixel_format=PixelFormat.RGB), HIGH)
        assert det is not None
