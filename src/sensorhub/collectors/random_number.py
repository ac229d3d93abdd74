"""Collector that emits a uniform random number, useful for wiring checks."""

from __future__ import annotations

import logging
import random

from ..core.contracts import SensorCollector, SensorData

logger = logging.getLogger(__name__)


class RandomNumberCollector(SensorCollector):
    """Single `random` sensor producing values in [0, 1)."""

    name = "collectors.random_number"
    SENSOR_NAME = "random"

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._enabled = True

    def activate(self) -> bool:
        return True

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        self._enabled = enabled

    def is_enabled(self, sensor: str) -> bool:
        return self._enabled

    def available_sensors(self) -> list[str]:
        return [self.SENSOR_NAME]

    def collect_recent_readings(self, output: list[SensorData]) -> None:
        if not self._enabled:
            return
        output.append(SensorData(name=self.SENSOR_NAME, value=self._rng.random()))

    def close(self) -> None:
        return None


__all__ = ["RandomNumberCollector"]
