"""
Contracts and payload schemas shared by the hub, its collectors, and channels.

Readings and batches are frozen Pydantic models so they can be handed between
the publish cycle and worker threads without copying. Collectors and
telemetry channels are expressed as an abstract base class and a protocol so
hardware drivers and wire transports can be plugged in without touching the hub.
"""

from __future__ import annotations

import abc
import datetime as dt
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class BasePayload(BaseModel):
    """Base class for all payloads leaving the agent."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class SensorData(BasePayload):
    """Single timestamped reading for a logical sensor."""

    name: str = Field(min_length=1, description="Logical sensor name, not the collector.")
    value: float
    timestamp_utc: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(tz=dt.UTC),
        description="Reading timestamp in UTC.",
    )


class TelemetryBatch(BasePayload):
    """Readings gathered from every collector during one publish tick."""

    device_id: str
    readings: tuple[SensorData, ...] = Field(default_factory=tuple)
    created_utc: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(tz=dt.UTC),
        description="Time the batch was assembled.",
    )

    def __len__(self) -> int:
        return len(self.readings)


class HealthStatus(BaseModel):
    """Structured health report for the hub and the agent."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class SensorCollector(abc.ABC):
    """
    Capability contract every pollable sensor source implements.

    A collector may expose several logical sensors. The hub calls `activate`
    once before first use, reads enabled sensors on every publish tick through
    `collect_recent_readings`, and calls `close` when it stops.
    """

    name: str = "collectors.base"

    @abc.abstractmethod
    def activate(self) -> bool:
        """Acquire the underlying resource and report whether it succeeded."""

    @abc.abstractmethod
    def set_enabled(self, sensor: str, enabled: bool) -> None:
        """Toggle an individual logical sensor."""

    @abc.abstractmethod
    def is_enabled(self, sensor: str) -> bool:
        """Return whether the named sensor is currently enabled."""

    @abc.abstractmethod
    def available_sensors(self) -> Sequence[str]:
        """Static, ordered list of sensor names this collector can read."""

    def enabled_sensors(self) -> list[str]:
        """Ordered subset of `available_sensors` that is currently enabled."""
        return [sensor for sensor in self.available_sensors() if self.is_enabled(sensor)]

    @abc.abstractmethod
    def collect_recent_readings(self, output: list[SensorData]) -> None:
        """
        Append current readings for all enabled sensors to `output`.

        Implementations must never clear or replace existing entries because the
        hub batches several collectors into one buffer per tick.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying resource; safe to call more than once."""


@runtime_checkable
class TelemetryChannel(Protocol):
    """Opaque publish sink for sensor batches."""

    async def send(self, batch: TelemetryBatch) -> None: ...

    async def close(self) -> None: ...


__all__ = [
    "BasePayload",
    "HealthStatus",
    "SensorCollector",
    "SensorData",
    "TelemetryBatch",
    "TelemetryChannel",
]
