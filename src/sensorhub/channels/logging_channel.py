"""Telemetry channel that only logs batches; the default when no URL is set."""

from __future__ import annotations

import logging

from ..core.contracts import TelemetryBatch

logger = logging.getLogger(__name__)


class LoggingTelemetryChannel:
    """Writes a one-line summary of every batch to the log."""

    def __init__(self, *, device_id: str) -> None:
        self._device_id = device_id
        self._closed = False
        self.batches_seen = 0

    async def send(self, batch: TelemetryBatch) -> None:
        self.batches_seen += 1
        summary = ", ".join(f"{reading.name}={reading.value:.4f}" for reading in batch.readings)
        logger.info("Telemetry for %s: %s", self._device_id, summary)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            logger.debug("Logging channel for %s closed", self._device_id)


__all__ = ["LoggingTelemetryChannel"]
