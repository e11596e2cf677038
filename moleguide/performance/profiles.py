"""Fixed lookup tables mapping performance tiers to processing knobs."""

from __future__ import annotations

from dataclasses import dataclass

from moleguide.guidance.models import PerformanceLevel, ThermalState


@dataclass(frozen=True)
class PerformanceProfile:
    processing_quality: float        # 0.0-1.0, reported in status() only
    frame_skip_rate: int             # frames dropped between processed ones
    resolution_scale: float          # quality analysis downscale
    max_concurrent_operations: int
    enable_advanced_filters: bool    # Laplacian/std metrics + watershed fallback
    enable_roi: bool
    roi_scale: float
    max_pool_size: int


LEVEL_PROFILES: dict[PerformanceLevel, PerformanceProfile] = {
    PerformanceLevel.HIGH: PerformanceProfile(
        processing_quality=1.0, frame_skip_rate=0, resolution_scale=1.0,
        max_concurrent_operations=4, enable_advanced_filters=True,
        enable_roi=True, roi_scale=1.0, max_pool_size=10,
    ),
    PerformanceLevel.MEDIUM: PerformanceProfile(
        processing_quality=0.8, frame_skip_rate=1, resolution_scale=0.9,
        max_concurrent_operations=3, enable_advanced_filters=True,
        enable_roi=True, roi_scale=0.8, max_pool_size=8,
    ),
    PerformanceLevel.LOW: PerformanceProfile(
        processing_quality=0.6, frame_skip_rate=2, resolution_scale=0.7,
        max_concurrent_operations=2, enable_advanced_filters=False,
        enable_roi=True, roi_scale=0.7, max_pool_size=6,
    ),
    PerformanceLevel.MINIMAL: PerformanceProfile(
        processing_quality=0.4, frame_skip_rate=3, resolution_scale=0.5,
        max_concurrent_operations=1, enable_advanced_filters=False,
        enable_roi=True, roi_scale=0.5, max_pool_size=4,
    ),
}

THERMAL_PROFILES: dict[ThermalState, PerformanceProfile] = {
    ThermalState.NONE: PerformanceProfile(
        processing_quality=1.0, frame_skip_rate=0, resolution_scale=1.0,
        max_concurrent_operations=4, enable_advanced_filters=True,
        enable_roi=True, roi_scale=1.0, max_pool_size=10,
    ),
    ThermalState.LIGHT: PerformanceProfile(
        processing_quality=0.9, frame_skip_rate=1, resolution_scale=0.9,
        max_concurrent_operations=3, enable_advanced_filters=True,
        enable_roi=True, roi_scale=0.9, max_pool_size=8,
    ),
    ThermalState.MODERATE: PerformanceProfile(
        processing_quality=0.7, frame_skip_rate=2, resolution_scale=0.8,
        max_concurrent_operations=2, enable_advanced_filters=True,
        enable_roi=True, roi_scale=0.8, max_pool_size=8,
    ),
    ThermalState.SEVERE: PerformanceProfile(
        processing_quality=0.5, frame_skip_rate=3, resolution_scale=0.6,
        max_concurrent_operations=2, enable_advanced_filters=False,
        enable_roi=True, roi_scale=0.6, max_pool_size=6,
    ),
    ThermalState.CRITICAL: PerformanceProfile(
        processing_quality=0.4, frame_skip_rate=4, resolution_scale=0.5,
        max_concurrent_operations=1, enable_advanced_filters=False,
        enable_roi=False, roi_scale=0.5, max_pool_size=4,
    ),
    ThermalState.EMERGENCY: PerformanceProfile(
        processing_quality=0.3, frame_skip_rate=5, resolution_scale=0.3,
        max_concurrent_operations=1, enable_advanced_filters=False,
        enable_roi=False, roi_scale=0.3, max_pool_size=4,
    ),
}

# Level the thermal axis corresponds to, for status reporting
THERMAL_TO_LEVEL: dict[ThermalState, PerformanceLevel] = {
    ThermalState.NONE: PerformanceLevel.HIGH,
    ThermalState.LIGHT: PerformanceLevel.HIGH,
    ThermalState.MODERATE: PerformanceLevel.MEDIUM,
    ThermalState.SEVERE: PerformanceLevel.LOW,
    ThermalState.CRITICAL: PerformanceLevel.MINIMAL,
    ThermalState.EMERGENCY: PerformanceLevel.MINIMAL,
}

DEFAULT_PROFILE = LEVEL_PROFILES[PerformanceLevel.HIGH]

# Worker-pool size that covers every profile's concurrency ceiling
MAX_CONCURRENCY = max(p.max_concurrent_operations
                      for table in (LEVEL_PROFILES, THERMAL_PROFILES)
                      for p in table.values())


def profile_for_level(level: PerformanceLevel) -> PerformanceProfile:
    return LEVEL_PROFILES[PerformanceLevel(level)]


def profile_for_thermal(state: ThermalState) -> PerformanceProfile:
    return THERMAL_PROFILES[ThermalState(state)]
