"""YAML configuration loader with dataclass mapping."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ROIConfig:
    adaptive: bool = True
    history_size: int = 10
    min_roi_scale: float = 0.3
    max_roi_scale: float = 0.8
    expansion_factor: float = 1.2


@dataclass
class DetectionConfig:
    min_frame_size: int = 100
    min_contour_area: float = 10.0
    max_contour_area: float = 2000.0
    min_compactness: float = 0.1
    min_solidity: float = 0.3
    min_aspect_ratio: float = 0.15
    max_aspect_ratio: float = 3.0
    morph_kernel_size: int = 3
    gray_max_value: int = 90
    hsv_lower: tuple[int, int, int] = (0, 10, 0)
    hsv_upper: tuple[int, int, int] = (180, 255, 200)
    adaptive_block_size: int = 11
    adaptive_c: float = 2.0
    seed_threshold_ratio: float = 0.4
    enable_multi_method: bool = True


@dataclass
class CenteredDetectionConfig:
    min_frame_size: int = 100
    min_contour_area: float = 50.0
    max_contour_area: float = 5000.0
    min_compactness: float = 0.2
    blur_kernel: int = 5
    relative_std_factor: float = 1.0
    adaptive_block_size: int = 31
    adaptive_c: float = 5.0
    center_radius_ratio: float = 0.25


@dataclass
class QualityConfig:
    sharpness_threshold: float = 0.3
    overexposure_threshold: int = 240
    underexposure_threshold: int = 30
    exposure_pixel_ratio: float = 0.1


@dataclass
class ValidationConfig:
    centering_tolerance: float = 100.0
    min_area_ratio: float = 0.15
    max_area_ratio: float = 0.80
    min_confidence: float = 0.6
    enforce_geometry: bool = False


@dataclass
class PerformanceConfig:
    history_size: int = 10
    medium_processing_ms: float = 300.0
    low_processing_ms: float = 400.0
    minimal_processing_ms: float = 500.0
    medium_memory_pressure: float = 0.6
    low_memory_pressure: float = 0.7
    minimal_memory_pressure: float = 0.8
    low_battery_percent: float = 20.0


@dataclass
class ThermalConfig:
    provider: str = "noop"          # noop | signal | sensor
    light_celsius: float = 60.0
    moderate_celsius: float = 70.0
    severe_celsius: float = 80.0
    critical_celsius: float = 90.0
    emergency_celsius: float = 100.0


@dataclass
class AutoCaptureConfig:
    enabled: bool = False
    countdown_seconds: int = 3
    tick_interval: float = 1.0
    stability_duration: float = 1.0
    stability_frames: int = 2
    valid_gap: float = 2.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str | None = None


@dataclass
class GuidanceConfig:
    detector_mode: str = "full"     # full | centered
    roi: ROIConfig = field(default_factory=ROIConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    centered_detection: CenteredDetectionConfig = field(default_factory=CenteredDetectionConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    thermal: ThermalConfig = field(default_factory=ThermalConfig)
    auto_capture: AutoCaptureConfig = field(default_factory=AutoCaptureConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_dict(dc: object, data: dict) -> None:
    """Apply dictionary values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if hasattr(dc, key):
            current = getattr(dc, key)
            # YAML has no tuples; keep the declared shape for color bounds
            if isinstance(current, tuple) and isinstance(value, list):
                value = tuple(value)
            setattr(dc, key, value)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | Path | None = None) -> GuidanceConfig:
    """Load configuration from a YAML file, falling back to defaults."""
    config = GuidanceConfig()

    if path is None:
        path = os.environ.get("MOLEGUIDE_CONFIG", "config/default.yaml")

    path = Path(path)
    if path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        section_map = {
            "roi": config.roi,
            "detection": config.detection,
            "centered_detection": config.centered_detection,
            "quality": config.quality,
            "validation": config.validation,
            "performance": config.performance,
            "thermal": config.thermal,
            "auto_capture": config.auto_capture,
            "logging": config.logging,
        }

        for section_name, dc_instance in section_map.items():
            if section_name in raw and isinstance(raw[section_name], dict):
                _apply_dict(dc_instance, raw[section_name])

        if isinstance(raw.get("detector_mode"), str):
            config.detector_mode = raw["detector_mode"]

    # Environment variable overrides
    env_level = os.environ.get("MOLEGUIDE_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level

    env_auto = os.environ.get("MOLEGUIDE_AUTO_CAPTURE")
    if env_auto:
        config.auto_capture.enabled = _parse_bool(env_auto)

    env_mode = os.environ.get("MOLEGUIDE_DETECTOR_MODE")
    if env_mode:
        config.detector_mode = env_mode

    if config.detector_mode not in ("full", "centered"):
        raise ValueError(f"Unknown detector_mode: {config.detector_mode!r}")

    return config


def preset_config(name: str = "default") -> GuidanceConfig:
    """Return one of the bundled tuning presets.

    ``low_end`` relaxes the blur threshold for weaker cameras,
    ``high_precision`` tightens centering and sizing and turns geometry
    enforcement on.
    """
    config = GuidanceConfig()
    if name == "default":
        return config
    if name == "low_end":
        config.quality.sharpness_threshold = 0.25
        return config
    if name == "high_precision":
        config.validation.centering_tolerance = 30.0
        config.validation.min_area_ratio = 0.20
        config.validation.max_area_ratio = 0.70
        config.validation.enforce_geometry = True
        config.quality.sharpness_threshold = 0.4
        return config
    raise ValueError(f"Unknown preset: {name!r}")
