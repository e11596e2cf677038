"""Lightweight detector that only looks for the lesion nearest the frame center."""

from __future__ import annotations

import logging
import math
from typing import Callable

import cv2
import numpy as np
from scipy.spatial.distance import cdist

from moleguide.config import CenteredDetectionConfig
from moleguide.guidance.models import DetectionCandidate, Frame, Rect, clamp
from moleguide.performance.profiles import PerformanceProfile
from moleguide.processing.preprocessor import InvalidFrameError, Preprocessor

logger = logging.getLogger(__name__)


class CenteredLesionDetector:
    """Reduced-fidelity detector for low-end deployments.

    Tries three progressively more permissive thresholding strategies and
    keeps the valid contour closest to the frame center.
    """

    def __init__(self, config: CenteredDetectionConfig):
        self._cfg = config
        self._prep = Preprocessor(min_size=config.min_frame_size)
        self._open_kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
        self._strategies: list[tuple[str, Callable[[np.ndarray], np.ndarray]]] = [
            ("centered_otsu", self._threshold_otsu),
            ("centered_relative", self._threshold_relative),
            ("centered_adaptive", self._threshold_adaptive),
        ]

    def detect(self, frame: Frame | np.ndarray,
               profile: PerformanceProfile | None = None) -> DetectionCandidate | None:
        """Same contract as LesionDetector.detect; the profile is not used."""
        try:
            pixels, fmt = self._prep.unwrap(frame)
        except InvalidFrameError as exc:
            logger.warning("Rejected frame: %s", exc)
            return None

        try:
            gray = self._prep.to_gray(pixels, fmt)
            k = self._cfg.blur_kernel
            blurred = cv2.GaussianBlur(gray, (k, k), 0)
            height, width = gray.shape
            center = (width / 2.0, height / 2.0)

            for method, threshold in self._strategies:
                mask = threshold(blurred)
                mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, self._open_kernel)
                candidate = self._nearest_to_center(mask, center, method)
                if candidate is not None:
                    logger.debug("Centered detection via %s: confidence=%.2f",
                                 method, candidate.confidence)
                    return candidate
            return None
        except Exception:
            logger.exception("Error during centered lesion detection")
            return None

    def is_in_center(self, candidate: DetectionCandidate,
                     frame_size: tuple[int, int]) -> bool:
        """True when the candidate lies within the central radius."""
        width, height = frame_size
        radius = self._cfg.center_radius_ratio * min(width, height)
        dx = candidate.center[0] - width / 2.0
        dy = candidate.center[1] - height / 2.0
        return math.hypot(dx, dy) <= radius

    def _threshold_otsu(self, gray: np.ndarray) -> np.ndarray:
        _, mask = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
        return mask

    def _threshold_relative(self, gray: np.ndarray) -> np.ndarray:
        # Anything noticeably darker than the frame average
        level = float(gray.mean()) - self._cfg.relative_std_factor * float(gray.std())
        _, mask = cv2.threshold(gray, max(0.0, level), 255, cv2.THRESH_BINARY_INV)
        return mask

    def _threshold_adaptive(self, gray: np.ndarray) -> np.ndarray:
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV,
            self._cfg.adaptive_block_size, self._cfg.adaptive_c,
        )

    def _nearest_to_center(self, mask: np.ndarray, center: tuple[float, float],
                           method: str) -> DetectionCandidate | None:
        contours, _ = cv2.findContours(
            mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )

        valid = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < self._cfg.min_contour_area or area > self._cfg.max_contour_area:
                continue
            perimeter = cv2.arcLength(contour, True)
            if perimeter <= 0:
                continue
            compactness = (4 * math.pi * area) / (perimeter * perimeter)
            if compactness < self._cfg.min_compactness:
                continue
            moments = cv2.moments(contour)
            if moments["m00"] == 0:
                continue
            centroid = (moments["m10"] / moments["m00"],
                        moments["m01"] / moments["m00"])
            valid.append((contour, area, compactness, centroid))

        if not valid:
            return None

        # Pick the centroid nearest to the frame center
        dists = cdist(np.array([center]), np.array([v[3] for v in valid]))[0]
        best = int(dists.argmin())
        contour, area, compactness, centroid = valid[best]

        max_dist = math.hypot(center[0], center[1])
        proximity = 1.0 - clamp(float(dists[best]) / max_dist, 0.0, 1.0)
        confidence = clamp(0.6 * proximity + 0.4 * min(compactness, 1.0), 0.0, 1.0)

        x, y, w, h = cv2.boundingRect(contour)
        return DetectionCandidate(
            center=(float(centroid[0]), float(centroid[1])),
            bbox=Rect(x, y, w, h),
            confidence=confidence,
            area=float(area),
            method=method,
        )
