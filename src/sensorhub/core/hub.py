"""
Sensor hub: owns the collector registry and drives the collect-and-publish cycle.

A hub is bound to one set of identity parameters at a time. `start` loads the
device key material, activates collectors, opens the telemetry channel, and
schedules the publish cycle; `stop` tears all of that down again and only
returns once no background work remains.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Callable

from .contracts import HealthStatus, SensorCollector, SensorData, TelemetryBatch, TelemetryChannel
from .errors import ChannelSendError, SecurityError
from .keys import KeyMaterial, KeyMaterialProvider
from .metrics import AgentMetrics
from .parameters import Parameters
from .registry import RegistryEntry, SensorRegistry

logger = logging.getLogger(__name__)


ChannelFactory = Callable[[Parameters, KeyMaterial], Awaitable[TelemetryChannel]]


class HubState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class Hub:
    """Runtime for one active cloud identity."""

    def __init__(
        self,
        *,
        key_provider: KeyMaterialProvider,
        channel_factory: ChannelFactory,
        publish_interval: float = 5.0,
        collect_timeout: float = 2.0,
        send_timeout: float = 10.0,
        metrics: AgentMetrics | None = None,
    ) -> None:
        self._key_provider = key_provider
        self._channel_factory = channel_factory
        self._publish_interval = publish_interval
        self._collect_timeout = collect_timeout
        self._send_timeout = send_timeout
        self._metrics = metrics
        self._registry = SensorRegistry()
        self._state = HubState.STOPPED
        self._params: Parameters | None = None
        self._channel: TelemetryChannel | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending_reads: set[asyncio.Future[None]] = set()
        self._stop_event = asyncio.Event()
        self._lifecycle_lock = asyncio.Lock()
        self._ticks = 0
        self._last_batch_size = 0
        self._send_failures = 0
        self._collector_failures = 0

    @property
    def state(self) -> HubState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is HubState.RUNNING

    @property
    def params(self) -> Parameters | None:
        return self._params

    @property
    def registry(self) -> SensorRegistry:
        return self._registry

    def register_collector(self, collector: SensorCollector) -> None:
        """Add a collector; raises `HubStateError` while the hub is running."""
        self._registry.register(collector)

    def set_sensor_enabled(self, sensor: str, enabled: bool) -> None:
        self._registry.set_enabled(sensor, enabled)

    async def start(self, params: Parameters) -> None:
        """
        Bring the hub up for `params`, restarting it if it is already running.

        Key material failures raise `SecurityError` and leave the hub stopped.
        """
        async with self._lifecycle_lock:
            if self._state is HubState.RUNNING:
                logger.info("Hub already running for %s; restarting", self._describe())
                await self._stop_locked()

            try:
                key_material = await asyncio.to_thread(
                    self._key_provider.load_or_generate,
                    params.device_id,
                    params.key_algorithm.value,
                )
            except SecurityError:
                logger.error("Cannot load keypair for device %s", params.device_id)
                raise

            activation = asyncio.ensure_future(asyncio.to_thread(self._registry.activate_all))
            try:
                active = await asyncio.shield(activation)
                channel = await self._channel_factory(params, key_material)
            except BaseException:
                # Collectors may only be closed once activation has returned.
                if not activation.done():
                    await asyncio.wait({activation})
                self._registry.close_all()
                raise

            self._params = params
            self._channel = channel
            self._registry.lock()
            self._stop_event.clear()
            self._state = HubState.RUNNING
            if self._metrics:
                self._metrics.hub_running.set(1)
            self._task = asyncio.create_task(
                self._run_loop(), name=f"sensorhub-publish-{params.device_id}"
            )
            logger.info(
                "Hub started for %s with %d/%d active collectors, publishing every %.2fs",
                self._describe(),
                active,
                len(self._registry),
                self._publish_interval,
            )

    async def stop(self) -> None:
        """Stop the publish cycle and release the channel; no-op when stopped."""
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def health(self) -> HealthStatus:
        details = {
            "state": self._state.value,
            "device_id": self._params.device_id if self._params else None,
            "collectors": [entry.name for entry in self._registry.entries()],
            "ticks": self._ticks,
            "last_batch_size": self._last_batch_size,
            "send_failures": self._send_failures,
            "collector_failures": self._collector_failures,
        }
        if self._state is HubState.RUNNING and not (
            self._send_failures or self._collector_failures
        ):
            status = "healthy"
        else:
            status = "degraded"
        return HealthStatus(status=status, details=details)

    async def publish_once(self) -> TelemetryBatch | None:
        """
        Run one collect-and-send tick.

        Returns the batch that was handed to the channel, or None when nothing
        was collected. Send failures are logged and the batch is dropped.
        """
        channel = self._channel
        params = self._params
        if channel is None or params is None:
            logger.debug("Publish tick skipped; hub has no open channel.")
            return None
        self._ticks += 1
        entries = self._registry.readable_entries()
        results = await asyncio.gather(*(self._read_collector(entry) for entry in entries))
        readings: list[SensorData] = []
        for collected in results:
            readings.extend(collected)
        self._last_batch_size = len(readings)
        if not readings:
            logger.debug("No readings collected this tick.")
            return None

        batch = TelemetryBatch(device_id=params.device_id, readings=tuple(readings))
        try:
            await asyncio.wait_for(channel.send(batch), timeout=self._send_timeout)
        except ChannelSendError as exc:
            self._record_send_failure()
            logger.error("Dropping batch of %d readings: %s", len(batch), exc)
        except TimeoutError:
            self._record_send_failure()
            logger.error(
                "Dropping batch of %d readings: send exceeded %.1fs",
                len(batch),
                self._send_timeout,
            )
        else:
            if self._metrics:
                self._metrics.batches_sent.inc()
                self._metrics.readings_sent.inc(len(batch))
            logger.debug("Published %d readings", len(batch))
        return batch

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.publish_once()
            except Exception:  # pragma: no cover - logged and retried next tick
                logger.exception("Publish tick failed.")
            await self._wait_with_cancel(self._publish_interval)

    async def _wait_with_cancel(self, interval: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
        except TimeoutError:
            return

    async def _read_collector(self, entry: RegistryEntry) -> list[SensorData]:
        # Private buffer per read; a timed-out read never reaches the batch.
        buffer: list[SensorData] = []
        read = asyncio.ensure_future(
            asyncio.to_thread(entry.collector.collect_recent_readings, buffer)
        )
        self._pending_reads.add(read)
        read.add_done_callback(self._pending_reads.discard)
        try:
            await asyncio.wait_for(asyncio.shield(read), timeout=self._collect_timeout)
        except TimeoutError:
            self._record_collector_failure(entry)
            logger.warning(
                "Collector %s exceeded its %.1fs read budget; skipping this tick",
                entry.name,
                self._collect_timeout,
            )
            return []
        except Exception:
            self._record_collector_failure(entry)
            logger.exception("Collector %s failed to read", entry.name)
            return []
        return list(buffer)

    async def _stop_locked(self) -> None:
        if self._state is HubState.STOPPED:
            return
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self._drain_reads()
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception:  # pragma: no cover - logged for troubleshooting
                logger.exception("Telemetry channel failed to close cleanly.")
        await asyncio.to_thread(self._registry.close_all)
        self._registry.unlock()
        self._state = HubState.STOPPED
        if self._metrics:
            self._metrics.hub_running.set(0)
        logger.info("Hub stopped for %s", self._describe())

    async def _drain_reads(self) -> None:
        """Wait for collector reads still running in worker threads."""
        pending = set(self._pending_reads)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self._collect_timeout)
        if still_running:
            logger.warning(
                "%d collector read(s) still running %.1fs after stop; closing collectors anyway",
                len(still_running),
                self._collect_timeout,
            )

    def _record_send_failure(self) -> None:
        self._send_failures += 1
        if self._metrics:
            self._metrics.send_failures.inc()

    def _record_collector_failure(self, entry: RegistryEntry) -> None:
        self._collector_failures += 1
        if self._metrics:
            self._metrics.collector_failures.labels(collector=entry.name).inc()

    def _describe(self) -> str:
        if self._params is None:
            return "<unconfigured>"
        return f"{self._params.project_id}/{self._params.registry_id}/{self._params.device_id}"


__all__ = ["ChannelFactory", "Hub", "HubState"]
