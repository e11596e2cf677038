"""Frame preparation: validation, color conversion, downscaling."""

from __future__ import annotations

import cv2
import numpy as np

from moleguide.guidance.models import Frame, PixelFormat

_TO_GRAY = {
    PixelFormat.BGR: cv2.COLOR_BGR2GRAY,
    PixelFormat.BGRA: cv2.COLOR_BGRA2GRAY,
    PixelFormat.RGB: cv2.COLOR_RGB2GRAY,
}

_TO_BGR = {
    PixelFormat.GRAY: cv2.COLOR_GRAY2BGR,
    PixelFormat.BGRA: cv2.COLOR_BGRA2BGR,
    PixelFormat.RGB: cv2.COLOR_RGB2BGR,
}


class InvalidFrameError(ValueError):
    """Raised when a frame cannot be processed (bad shape, dtype or size)."""


class Preprocessor:
    """Normalizes incoming frames for the detectors and the quality analyzer."""

    def __init__(self, min_size: int = 100):
        self._min_size = min_size

    def unwrap(self, frame: Frame | np.ndarray) -> tuple[np.ndarray, PixelFormat]:
        """Return the pixel array and its format, validating the shape.

        Raises InvalidFrameError for anything the pipeline cannot handle.
        """
        if isinstance(frame, Frame):
            pixels, fmt = frame.pixels, frame.pixel_format
        else:
            pixels = np.asarray(frame)
            fmt = None

        if pixels.dtype != np.uint8:
            raise InvalidFrameError(f"Unsupported dtype {pixels.dtype}")
        if pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]
        if pixels.ndim == 2:
            fmt = PixelFormat.GRAY
        elif pixels.ndim == 3 and pixels.shape[2] in (3, 4):
            if fmt is None or fmt == PixelFormat.GRAY:
                fmt = PixelFormat.BGRA if pixels.shape[2] == 4 else PixelFormat.BGR
        else:
            raise InvalidFrameError(f"Unsupported frame shape {pixels.shape}")

        height, width = pixels.shape[:2]
        if width < self._min_size or height < self._min_size:
            raise InvalidFrameError(
                f"Frame {width}x{height} is smaller than {self._min_size}px"
            )
        return pixels, fmt

    def to_gray(self, pixels: np.ndarray, fmt: PixelFormat,
                dst: np.ndarray | None = None) -> np.ndarray:
        """Grayscale copy of the pixels, written into dst when it fits."""
        if fmt == PixelFormat.GRAY:
            if dst is not None and dst.shape == pixels.shape:
                np.copyto(dst, pixels)
                return dst
            return pixels.copy()
        if dst is not None and dst.shape == pixels.shape[:2]:
            return cv2.cvtColor(pixels, _TO_GRAY[fmt], dst=dst)
        return cv2.cvtColor(pixels, _TO_GRAY[fmt])

    def to_bgr(self, pixels: np.ndarray, fmt: PixelFormat) -> np.ndarray:
        """Three-channel BGR image (no copy when already BGR)."""
        if fmt == PixelFormat.BGR:
            return pixels
        return cv2.cvtColor(pixels, _TO_BGR[fmt])

    def downscale(self, image: np.ndarray, scale: float) -> np.ndarray:
        """Shrink by scale (no-op at 1.0); never below 1 pixel per side."""
        if scale >= 1.0:
            return image
        height, width = image.shape[:2]
        size = (max(1, int(width * scale)), max(1, int(height * scale)))
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)
