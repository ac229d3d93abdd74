"""
Prometheus instrumentation for the provisioning loop and the publish cycle.

Metrics live in an injectable `CollectorRegistry` so tests and embedded hosts
can inspect them without touching the process-wide default registry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


def _default_server_factory(
    port: int, addr: str, registry: CollectorRegistry
) -> object:  # pragma: no cover - thin wrapper
    return start_http_server(port=port, addr=addr, registry=registry)


class AgentMetrics:
    """Counters and gauges shared by the hub and the provisioning poller."""

    def __init__(
        self,
        *,
        registry: CollectorRegistry | None = None,
        server_factory: Callable[[int, str, CollectorRegistry], object] | None = None,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self._server_factory = server_factory or _default_server_factory
        self._server: object | None = None
        self.provisioning_checks = Counter(
            "sensorhub_provisioning_checks",
            "Provisioning poller cycles by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.batches_sent = Counter(
            "sensorhub_batches_sent",
            "Telemetry batches delivered to the channel.",
            registry=self.registry,
        )
        self.readings_sent = Counter(
            "sensorhub_readings_sent",
            "Sensor readings delivered to the channel.",
            registry=self.registry,
        )
        self.send_failures = Counter(
            "sensorhub_send_failures",
            "Telemetry batches dropped after a failed send.",
            registry=self.registry,
        )
        self.collector_failures = Counter(
            "sensorhub_collector_failures",
            "Collector reads that raised or exceeded their time budget.",
            ["collector"],
            registry=self.registry,
        )
        self.hub_running = Gauge(
            "sensorhub_hub_running",
            "1 while a hub publish cycle is active.",
            registry=self.registry,
        )

    def serve(self, port: int, addr: str = "127.0.0.1") -> None:
        """Expose the registry over HTTP."""
        if self._server is None:
            self._server = self._server_factory(port, addr, self.registry)
            logger.info("Started Prometheus exporter on %s:%d", addr, port)

    def shutdown(self) -> None:
        server = getattr(self._server, "shutdown", None)
        if callable(server):
            server()
        self._server = None


__all__ = ["AgentMetrics"]
