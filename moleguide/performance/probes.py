"""System probes for memory pressure and power-save mode via psutil."""

from __future__ import annotations

import logging

import psutil

logger = logging.getLogger(__name__)


class SystemProbe:
    """Reads process memory pressure and battery state.

    Every reading degrades to the no-restriction value (0.0 pressure,
    power-save off) when the platform cannot provide it.
    """

    def __init__(self, low_battery_percent: float = 20.0):
        self._low_battery_percent = low_battery_percent
        self._process = psutil.Process()

    def memory_pressure(self) -> float:
        """Resident memory of this process as a fraction of total RAM."""
        try:
            rss = self._process.memory_info().rss
            total = psutil.virtual_memory().total
        except (psutil.Error, OSError):
            logger.debug("Memory probe unavailable", exc_info=True)
            return 0.0
        if total <= 0:
            return 0.0
        return min(1.0, rss / total)

    def power_save(self) -> bool:
        """True when running on a low battery that is not charging."""
        try:
            battery = psutil.sensors_battery()
        except (psutil.Error, OSError, AttributeError):
            logger.debug("Battery probe unavailable", exc_info=True)
            return False
        if battery is None:
            return False
        return (not battery.power_plugged
                and battery.percent <= self._low_battery_percent)
