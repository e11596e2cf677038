"""Image quality metrics: sharpness, brightness, contrast, exposure."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from moleguide.config import QualityConfig
from moleguide.guidance.models import Frame, HistogramAnalysis, QualityMetrics
from moleguide.performance.governor import PerformanceGovernor
from moleguide.performance.profiles import DEFAULT_PROFILE, PerformanceProfile
from moleguide.processing.preprocessor import InvalidFrameError, Preprocessor

logger = logging.getLogger(__name__)


class QualityAnalyzer:
    """Scores a frame for blur and exposure.

    Advanced mode uses Laplacian variance and pixel standard deviation;
    basic mode falls back to the cheaper mean Sobel magnitude and the
    max-minus-min range.
    """

    def __init__(self, config: QualityConfig, governor: PerformanceGovernor,
                 min_frame_size: int = 100):
        self._cfg = config
        self._governor = governor
        self._prep = Preprocessor(min_size=min_frame_size)

    def analyze(self, frame: Frame | np.ndarray,
                profile: PerformanceProfile | None = None) -> QualityMetrics:
        profile = profile or DEFAULT_PROFILE
        try:
            pixels, fmt = self._prep.unwrap(frame)
        except InvalidFrameError as exc:
            logger.warning("Rejected frame for quality analysis: %s", exc)
            return QualityMetrics.unavailable()

        gray_buf = self._governor.borrow_buffer(pixels.shape[:2], np.uint8)
        try:
            gray = self._prep.to_gray(pixels, fmt, dst=gray_buf)
            working = self._prep.downscale(gray, profile.resolution_scale)

            if profile.enable_advanced_filters:
                sharpness = self._sharpness_laplacian(working)
                contrast = float(working.std())
            else:
                sharpness = self._sharpness_sobel(working)
                contrast = float(int(working.max()) - int(working.min()))

            brightness = float(working.mean())
            return QualityMetrics(
                sharpness=max(0.0, sharpness),
                brightness=min(255.0, max(0.0, brightness)),
                contrast=contrast,
                is_blurry=sharpness < self._cfg.sharpness_threshold,
                is_overexposed=self._ratio_above(working) > self._cfg.exposure_pixel_ratio,
                is_underexposed=self._ratio_below(working) > self._cfg.exposure_pixel_ratio,
            )
        except Exception:
            logger.exception("Error during quality analysis")
            return QualityMetrics.unavailable()
        finally:
            self._governor.return_buffer(gray_buf)

    def analyze_histogram(self, frame: Frame | np.ndarray) -> HistogramAnalysis:
        """256-bin luminance histogram with a peak and a spread check."""
        pixels, fmt = self._prep.unwrap(frame)
        gray = self._prep.to_gray(pixels, fmt)
        hist = cv2.calcHist([gray], [0], None, [256], [0, 256]).ravel()
        total = float(hist.sum())

        # Each quarter of the range must hold at least 5% of the pixels
        well_distributed = total > 0 and all(
            float(segment.sum()) / total >= 0.05 for segment in np.split(hist, 4)
        )
        return HistogramAnalysis(
            distribution=tuple(float(v) for v in hist),
            peak=int(hist.argmax()),
            is_well_distributed=bool(well_distributed),
        )

    def _sharpness_laplacian(self, gray: np.ndarray) -> float:
        laplacian = cv2.Laplacian(gray, cv2.CV_64F)
        return float(laplacian.var())

    def _sharpness_sobel(self, gray: np.ndarray) -> float:
        gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
        return float(cv2.magnitude(gx, gy).mean())

    def _ratio_above(self, gray: np.ndarray) -> float:
        return float(np.count_nonzero(gray > self._cfg.overexposure_threshold)) / gray.size

    def _ratio_below(self, gray: np.ndarray) -> float:
        return float(np.count_nonzero(gray < self._cfg.underexposure_threshold)) / gray.size
