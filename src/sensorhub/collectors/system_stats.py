"""
Host statistics collector backed by psutil.

Exposes CPU, memory, and disk utilisation as separate logical sensors so each
can be toggled on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import psutil

from ..core.contracts import SensorCollector, SensorData

logger = logging.getLogger(__name__)


class SystemStatsCollector(SensorCollector):
    """Reports host utilisation percentages."""

    name = "collectors.system_stats"
    SENSORS: tuple[str, ...] = ("cpu_percent", "memory_percent", "disk_percent")

    def __init__(
        self,
        *,
        disk_path: str = "/",
        enabled: Iterable[str] | None = None,
    ) -> None:
        self._disk_path = disk_path
        wanted = set(self.SENSORS if enabled is None else enabled)
        unknown = wanted - set(self.SENSORS)
        if unknown:
            raise ValueError(f"Unknown system sensors: {sorted(unknown)}")
        self._enabled = {sensor: sensor in wanted for sensor in self.SENSORS}
        self._active = False

    def activate(self) -> bool:
        try:
            # Prime the CPU counter so the first non-blocking read is meaningful.
            psutil.cpu_percent(interval=None)
            psutil.disk_usage(self._disk_path)
        except (OSError, psutil.Error) as exc:
            logger.warning("System stats unavailable: %s", exc)
            return False
        self._active = True
        return True

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        if sensor not in self._enabled:
            raise KeyError(f"{self.name} has no sensor {sensor!r}")
        self._enabled[sensor] = enabled

    def is_enabled(self, sensor: str) -> bool:
        return self._enabled.get(sensor, False)

    def available_sensors(self) -> list[str]:
        return list(self.SENSORS)

    def collect_recent_readings(self, output: list[SensorData]) -> None:
        if not self._active:
            return
        for sensor in self.enabled_sensors():
            output.append(SensorData(name=sensor, value=self._read(sensor)))

    def close(self) -> None:
        self._active = False

    def _read(self, sensor: str) -> float:
        if sensor == "cpu_percent":
            return float(psutil.cpu_percent(interval=None))
        if sensor == "memory_percent":
            return float(psutil.virtual_memory().percent)
        return float(psutil.disk_usage(self._disk_path).percent)


__all__ = ["SystemStatsCollector"]
