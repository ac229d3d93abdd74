"""Registry of sensor collectors owned by a single hub instance."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .contracts import SensorCollector
from .errors import HubStateError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistryEntry:
    """A registered collector and whether `activate` succeeded for it."""

    collector: SensorCollector
    active: bool = False

    @property
    def name(self) -> str:
        return self.collector.name


class SensorRegistry:
    """
    Ordered set of collectors.

    Registration is only allowed while the registry is unlocked, which the hub
    guarantees by locking it for the whole Running period. Per-sensor enabled
    state stays mutable at any time.
    """

    def __init__(self) -> None:
        self._entries: list[RegistryEntry] = []
        self._locked = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def locked(self) -> bool:
        return self._locked

    def lock(self) -> None:
        self._locked = True

    def unlock(self) -> None:
        self._locked = False

    def register(self, collector: SensorCollector) -> None:
        if self._locked:
            raise HubStateError(
                f"Cannot register {collector.name} while the hub is running; stop it first."
            )
        if any(entry.collector is collector for entry in self._entries):
            logger.debug("Collector %s already registered", collector.name)
            return
        self._entries.append(RegistryEntry(collector=collector))
        logger.info("Registered collector %s", collector.name)

    def entries(self) -> tuple[RegistryEntry, ...]:
        return tuple(self._entries)

    def readable_entries(self) -> list[RegistryEntry]:
        """Active entries with at least one enabled sensor, in registration order."""
        return [
            entry for entry in self._entries if entry.active and entry.collector.enabled_sensors()
        ]

    def available_sensors(self) -> list[str]:
        sensors: list[str] = []
        for entry in self._entries:
            sensors.extend(entry.collector.available_sensors())
        return sensors

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        """Toggle `sensor` on every collector that exposes it."""
        matched = False
        for entry in self._entries:
            if sensor in entry.collector.available_sensors():
                entry.collector.set_enabled(sensor, enabled)
                matched = True
        if not matched:
            raise KeyError(f"No registered collector exposes sensor {sensor!r}")
        logger.info("Sensor %s %s", sensor, "enabled" if enabled else "disabled")

    def activate_all(self) -> int:
        """Activate every collector; returns how many came up."""
        count = 0
        for entry in self._entries:
            try:
                entry.active = bool(entry.collector.activate())
            except Exception:
                logger.exception("Collector %s raised during activation", entry.name)
                entry.active = False
            if entry.active:
                count += 1
            else:
                logger.warning("Collector %s failed to activate; it will be skipped", entry.name)
        return count

    def close_all(self) -> None:
        for entry in self._entries:
            try:
                entry.collector.close()
            except Exception:  # pragma: no cover - contract says close never raises
                logger.exception("Collector %s failed to close cleanly", entry.name)
            entry.active = False


__all__ = ["RegistryEntry", "SensorRegistry"]
