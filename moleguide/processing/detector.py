"""Multi-method lesion segmentation: color threshold with a watershed fallback."""

from __future__ import annotations

import logging
import math

import cv2
import numpy as np
from scipy import ndimage

from moleguide.config import DetectionConfig
from moleguide.guidance.models import (
    DetectionCandidate,
    Frame,
    PixelFormat,
    Rect,
    clamp,
)
from moleguide.performance.profiles import DEFAULT_PROFILE, PerformanceProfile
from moleguide.processing.preprocessor import InvalidFrameError, Preprocessor
from moleguide.processing.roi import ROISelector

logger = logging.getLogger(__name__)

PRIMARY_METHOD = "primary_color"
WATERSHED_METHOD = "watershed"


class LesionDetector:
    """Finds the most plausible lesion contour in a frame.

    The primary method thresholds dark/pigmented tones; if it finds nothing
    and the profile allows advanced processing, an adaptive-threshold +
    watershed segmentation is tried. Contours are ranked by area and the
    first one passing the shape filter wins.
    """

    def __init__(self, config: DetectionConfig, roi_selector: ROISelector):
        self._cfg = config
        self._roi = roi_selector
        self._prep = Preprocessor(min_size=config.min_frame_size)

        # Pre-computed morphological kernels
        self._morph_kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE,
            (config.morph_kernel_size, config.morph_kernel_size),
        )
        self._open_kernel = np.ones((3, 3), dtype=np.uint8)

    def detect(self, frame: Frame | np.ndarray,
               profile: PerformanceProfile | None = None) -> DetectionCandidate | None:
        """Detect a lesion; coordinates are always in full-frame space.

        Returns None when nothing valid is found or the frame is unusable.
        """
        profile = profile or DEFAULT_PROFILE
        try:
            pixels, fmt = self._prep.unwrap(frame)
        except InvalidFrameError as exc:
            logger.warning("Rejected frame: %s", exc)
            return None

        try:
            roi = None
            working = pixels
            if profile.enable_roi:
                height, width = pixels.shape[:2]
                roi = self._roi.compute_roi((width, height), profile.roi_scale)
                working = self._roi.extract(pixels, roi)

            detection = self._detect_primary(working, fmt)
            if (detection is None and self._cfg.enable_multi_method
                    and profile.enable_advanced_filters):
                logger.debug("Primary method found nothing, trying watershed")
                detection = self._detect_watershed(working, fmt)

            if detection is None:
                logger.debug("No lesion detected in frame")
                return None

            if roi is not None:
                detection = detection.translated(roi.offset_x, roi.offset_y)

            logger.debug("Lesion detected: confidence=%.2f area=%.0f method=%s",
                         detection.confidence, detection.area, detection.method)
            self._roi.record_detection(detection.center)
            return detection
        except Exception:
            logger.exception("Error during lesion detection")
            return None

    def _detect_primary(self, image: np.ndarray,
                        fmt: PixelFormat) -> DetectionCandidate | None:
        """Threshold on darker/pigmented tones, then clean up with close+open."""
        if fmt == PixelFormat.GRAY:
            mask = cv2.inRange(image, 0, self._cfg.gray_max_value)
        else:
            bgr = self._prep.to_bgr(image, fmt)
            hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
            mask = cv2.inRange(hsv, np.array(self._cfg.hsv_lower, dtype=np.uint8),
                               np.array(self._cfg.hsv_upper, dtype=np.uint8))

        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, self._morph_kernel)
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, self._morph_kernel)
        return self._best_candidate(mask, PRIMARY_METHOD)

    def _detect_watershed(self, image: np.ndarray,
                          fmt: PixelFormat) -> DetectionCandidate | None:
        """Adaptive threshold, distance-transform seeds, watershed flooding."""
        gray = self._prep.to_gray(image, fmt)
        binary = cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV,
            self._cfg.adaptive_block_size, self._cfg.adaptive_c,
        )
        binary = cv2.morphologyEx(binary, cv2.MORPH_OPEN, self._open_kernel)

        dist = cv2.distanceTransform(binary, cv2.DIST_L2, 5)
        max_dist = float(dist.max())
        if max_dist <= 0:
            return None

        # Local maxima of the distance map above a fraction of the global peak
        peaks = (dist == ndimage.maximum_filter(dist, size=5)) & (
            dist >= self._cfg.seed_threshold_ratio * max_dist)
        seeds, n_seeds = ndimage.label(peaks)
        if n_seeds == 0:
            return None

        # Marker 1 is sure background, seeds are 2..n+1, 0 is left to flood
        sure_bg = cv2.dilate(binary, self._open_kernel, iterations=3)
        markers = np.zeros(gray.shape, dtype=np.int32)
        markers[sure_bg == 0] = 1
        markers[seeds > 0] = seeds[seeds > 0] + 1

        cv2.watershed(self._prep.to_bgr(image, fmt), markers)
        mask = np.where(markers > 1, 255, 0).astype(np.uint8)
        return self._best_candidate(mask, WATERSHED_METHOD)

    def _best_candidate(self, mask: np.ndarray,
                        method: str) -> DetectionCandidate | None:
        contours, _ = cv2.findContours(
            mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )
        ranked = sorted(contours, key=cv2.contourArea, reverse=True)
        logger.debug("%s: %d candidate contours", method, len(ranked))

        for contour in ranked:
            if not self._is_valid_contour(contour):
                continue
            candidate = self._to_candidate(contour, method)
            if candidate is not None:
                return candidate
        return None

    def _is_valid_contour(self, contour: np.ndarray) -> bool:
        """Area, compactness, solidity and aspect-ratio filter, in that order."""
        area = cv2.contourArea(contour)
        if area < self._cfg.min_contour_area or area > self._cfg.max_contour_area:
            return False

        perimeter = cv2.arcLength(contour, True)
        if perimeter <= 0:
            return False
        compactness = (4 * math.pi * area) / (perimeter * perimeter)
        if compactness < self._cfg.min_compactness:
            return False

        hull_area = cv2.contourArea(cv2.convexHull(contour))
        solidity = area / hull_area if hull_area > 0 else 0.0
        if solidity < self._cfg.min_solidity:
            return False

        _, _, w, h = cv2.boundingRect(contour)
        if h == 0:
            return False
        aspect = w / h
        if aspect < self._cfg.min_aspect_ratio or aspect > self._cfg.max_aspect_ratio:
            return False
        return True

    def _to_candidate(self, contour: np.ndarray,
                      method: str) -> DetectionCandidate | None:
        moments = cv2.moments(contour)
        if moments["m00"] == 0:
            return None
        cx = moments["m10"] / moments["m00"]
        cy = moments["m01"] / moments["m00"]
        x, y, w, h = cv2.boundingRect(contour)
        area = float(cv2.contourArea(contour))

        return DetectionCandidate(
            center=(float(cx), float(cy)),
            bbox=Rect(x, y, w, h),
            confidence=self._confidence(contour, area),
            area=area,
            method=method,
        )

    def _confidence(self, contour: np.ndarray, area: float) -> float:
        """Base score plus area, compactness and solidity bonuses."""
        confidence = 0.5
        if 100.0 <= area <= 300.0:
            confidence += 0.3
        elif 80.0 <= area <= 400.0:
            confidence += 0.2
        else:
            confidence += 0.1

        perimeter = cv2.arcLength(contour, True)
        if perimeter > 0:
            compactness = (4 * math.pi * area) / (perimeter * perimeter)
            confidence += min(compactness * 0.2, 0.2)

        hull_area = cv2.contourArea(cv2.convexHull(contour))
        if hull_area > 0:
            confidence += min((area / hull_area) * 0.1, 0.1)

        return clamp(confidence, 0.0, 1.0)
