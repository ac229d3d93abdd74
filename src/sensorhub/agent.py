"""
Agent that owns the provisioning poller and the active hub.

The host process calls `agent_start()` when the agent should run and
`agent_stop()` when it should release everything. In between, the poller keeps
the identity in sync with the local gateway and the agent swaps hubs whenever
the identity changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping

from .core.config import AgentSettings
from .core.contracts import HealthStatus, SensorCollector
from .core.errors import (
    ChannelSendError,
    IncompleteConfigError,
    InvalidAlgorithmError,
    ParseError,
    SecurityError,
)
from .core.hub import ChannelFactory, Hub
from .core.keys import KeyMaterialProvider
from .core.metrics import AgentMetrics
from .core.parameters import SUPPORTED_KEY_ALGORITHMS, Parameters
from .core.provisioning import ProvisioningClient, ProvisioningOutcome, ProvisioningPoller
from .core.store import ConfigStore

logger = logging.getLogger(__name__)

CollectorFactory = Callable[[], Iterable[SensorCollector]]


class SensorHubAgent:
    """Owning context for the poller and at most one running hub."""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        store: ConfigStore,
        key_provider: KeyMaterialProvider,
        channel_factory: ChannelFactory,
        collector_factory: CollectorFactory,
        launch_extras: Mapping[str, str] | None = None,
        provisioning_client: ProvisioningClient | None = None,
        gateway_resolver: Callable[[], str | None] | None = None,
        metrics: AgentMetrics | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._key_provider = key_provider
        self._channel_factory = channel_factory
        self._collector_factory = collector_factory
        self._launch_extras = dict(launch_extras or {})
        self._metrics = metrics
        self._hub: Hub | None = None
        self._hub_lock = asyncio.Lock()
        self._started = False
        provisioning = settings.provisioning
        self.poller = ProvisioningPoller(
            store=store,
            on_change=self.initialize_hub,
            client=provisioning_client,
            gateway_resolver=gateway_resolver,
            interval=provisioning.interval_seconds,
            port=provisioning.port,
            path=provisioning.path,
            endpoint_override=provisioning.endpoint_override,
            timeout=provisioning.timeout_seconds,
            metrics=metrics,
        )

    @property
    def hub(self) -> Hub | None:
        return self._hub

    async def agent_start(self) -> None:
        """Bring up the hub from persisted/launch config and start polling."""
        if self._started:
            logger.warning("Agent already started.")
            return
        self._started = True
        params = await self._read_parameters()
        if params is not None:
            self.poller.record(params)
            await self.initialize_hub(params)
        if self._settings.provisioning.enabled:
            self.poller.start()
        else:
            logger.info("Provisioning poller disabled by configuration.")

    async def agent_stop(self) -> None:
        """Stop polling and tear down the active hub."""
        if not self._started:
            logger.debug("Agent stop requested while not started.")
            return
        await self.poller.stop()
        async with self._hub_lock:
            if self._hub is not None:
                await self._hub.stop()
        self._started = False
        logger.info("Agent stopped.")

    async def check_provisioning(self) -> ProvisioningOutcome:
        """Run one reconciliation cycle immediately."""
        return await self.poller.run_once()

    async def initialize_hub(self, params: Parameters) -> None:
        """Replace the active hub with a fresh one bound to `params`."""
        async with self._hub_lock:
            if self._hub is not None:
                await self._hub.stop()
            logger.info("Initialization parameters:\n%s", params.describe())
            hub = self._build_hub()
            self._hub = hub
            try:
                await hub.start(params)
            except SecurityError as exc:
                logger.error("Cannot load keypair: %s", exc)
            except ChannelSendError as exc:
                logger.error("Cannot open telemetry channel: %s", exc)

    async def health(self) -> HealthStatus:
        if self._hub is None:
            return HealthStatus(
                status="degraded",
                details={"hub": None, "provisioning_fingerprint": self.poller.current_fingerprint},
            )
        hub_health = await self._hub.health()
        details = {
            "hub": hub_health.details,
            "provisioning_fingerprint": self.poller.current_fingerprint,
            "provisioning_in_flight": self.poller.in_flight,
        }
        return HealthStatus(status=hub_health.status, details=details)

    def _build_hub(self) -> Hub:
        hub_settings = self._settings.hub
        hub = Hub(
            key_provider=self._key_provider,
            channel_factory=self._channel_factory,
            publish_interval=hub_settings.publish_interval_seconds,
            collect_timeout=hub_settings.collect_timeout_seconds,
            send_timeout=hub_settings.send_timeout_seconds,
            metrics=self._metrics,
        )
        for collector in self._collector_factory():
            hub.register_collector(collector)
        return hub

    async def _read_parameters(self) -> Parameters | None:
        stored = await asyncio.to_thread(self._store.load)
        try:
            return Parameters.from_sources(stored, self._launch_extras)
        except IncompleteConfigError as exc:
            logger.warning(
                "Postponing initialization until enough parameters are set (missing: %s). "
                "Please configure via launch options, for example:\n"
                "sensorhub-agent --project-id <PROJECT_ID> --cloud-region <REGION> "
                "--registry-id <REGISTRY_ID> --device-id <DEVICE_ID> "
                "[--key-algorithm <one of %s>]",
                ", ".join(exc.missing),
                ",".join(SUPPORTED_KEY_ALGORITHMS),
            )
        except (InvalidAlgorithmError, ParseError) as exc:
            logger.warning("Ignoring stored/launch configuration: %s", exc)
        return None


__all__ = ["CollectorFactory", "SensorHubAgent"]
