"""
Provisioning poller that reconciles the device identity with the local gateway.

Every tick fetches `http://<gateway>:<port>/config.json`, parses it into
`Parameters`, and compares the fingerprint with the active one. Only a real
change is persisted and handed to the owning agent, which replaces the hub.
A tick that fires while the previous one is still running is skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import ipaddress
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

import httpx

from .errors import IncompleteConfigError, InvalidAlgorithmError, NetworkError, ParseError
from .metrics import AgentMetrics
from .parameters import Parameters
from .store import ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_PROVISIONING_PORT = 8000
DEFAULT_PROVISIONING_PATH = "/config.json"
PROC_ROUTE_TABLE = Path("/proc/net/route")
_RTF_UP = 0x0001
_RTF_GATEWAY = 0x0002


class ProvisioningOutcome(enum.StrEnum):
    SKIPPED = "skipped"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"


class ProvisioningClient(Protocol):
    """Fetches the raw discovery document."""

    async def fetch(self, url: str) -> str: ...


class HttpxProvisioningClient:
    """Discovery client implemented with httpx."""

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> str:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                raise NetworkError(f"GET {url} failed: {exc}") from exc
        if not response.is_success:
            raise NetworkError(f"GET {url} returned HTTP {response.status_code}")
        return response.text


def default_gateway(route_table: Path = PROC_ROUTE_TABLE) -> str | None:
    """
    Return the IPv4 gateway of the default route, or None when there is none.

    Reads the kernel routing table so the address reflects the active network
    at call time.
    """
    try:
        lines = route_table.read_text(encoding="ascii").splitlines()
    except OSError as exc:
        logger.debug("Cannot read routing table %s: %s", route_table, exc)
        return None
    for line in lines[1:]:
        fields = line.split()
        if len(fields) < 4:
            continue
        try:
            destination = int(fields[1], 16)
            gateway = int(fields[2], 16)
            flags = int(fields[3], 16)
        except ValueError:
            continue
        if destination != 0 or not flags & _RTF_UP or not flags & _RTF_GATEWAY:
            continue
        address = ipaddress.IPv4Address(gateway.to_bytes(4, "little"))
        if not address.is_unspecified:
            logger.debug("Gateway is %s (%s)", address, fields[0])
            return str(address)
    return None


class ProvisioningPoller:
    """Background reconciliation loop for the device identity."""

    def __init__(
        self,
        *,
        store: ConfigStore,
        on_change: Callable[[Parameters], Awaitable[None]],
        client: ProvisioningClient | None = None,
        gateway_resolver: Callable[[], str | None] | None = None,
        interval: float = 10.0,
        port: int = DEFAULT_PROVISIONING_PORT,
        path: str = DEFAULT_PROVISIONING_PATH,
        endpoint_override: str | None = None,
        timeout: float = 5.0,
        metrics: AgentMetrics | None = None,
    ) -> None:
        self._store = store
        self._on_change = on_change
        self._client = client or HttpxProvisioningClient(timeout=timeout)
        self._gateway_resolver = gateway_resolver or default_gateway
        self._interval = interval
        self._port = port
        self._path = path if path.startswith("/") else f"/{path}"
        self._endpoint_override = endpoint_override
        self._metrics = metrics
        self._in_flight = False
        self._fingerprint: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def current_fingerprint(self) -> str | None:
        return self._fingerprint

    @property
    def running(self) -> bool:
        return self._task is not None

    def record(self, params: Parameters) -> None:
        """Mark `params` as the active configuration without a hand-off."""
        self._fingerprint = params.fingerprint()

    def endpoint_url(self) -> str:
        if self._endpoint_override:
            return self._endpoint_override
        gateway = self._gateway_resolver()
        if not gateway:
            raise NetworkError("No gateway address found on the active network.")
        return f"http://{gateway}:{self._port}{self._path}"

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Provisioning poller already running.")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="sensorhub-provisioning")
        logger.info("Provisioning poller checking every %.1fs", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Provisioning poller stopped.")

    async def run_once(self) -> ProvisioningOutcome:
        """Run a single reconciliation cycle unless one is already in flight."""
        if self._in_flight:
            logger.info("Provisioning check already in progress; skipping tick")
            outcome = ProvisioningOutcome.SKIPPED
        else:
            self._in_flight = True
            logger.info("Starting provisioning check")
            try:
                outcome = await self._reconcile()
            finally:
                logger.info("Ending provisioning check")
                self._in_flight = False
        if self._metrics:
            self._metrics.provisioning_checks.labels(outcome=outcome.value).inc()
        return outcome

    async def _reconcile(self) -> ProvisioningOutcome:
        try:
            url = await asyncio.to_thread(self.endpoint_url)
            body = await self._client.fetch(url)
            params = Parameters.parse(body)
        except NetworkError as exc:
            logger.error("Could not connect to provisioning server: %s", exc)
            return ProvisioningOutcome.FAILED
        except ParseError as exc:
            logger.error("Failure parsing fetched json: %s", exc)
            return ProvisioningOutcome.FAILED
        except (IncompleteConfigError, InvalidAlgorithmError) as exc:
            logger.warning("Ignoring fetched provisioning config: %s", exc)
            return ProvisioningOutcome.FAILED

        fingerprint = params.fingerprint()
        previous, self._fingerprint = self._fingerprint, fingerprint
        if previous == fingerprint:
            logger.info("Provisioning information unchanged")
            return ProvisioningOutcome.UNCHANGED

        try:
            await asyncio.to_thread(self._store.save, params)
        except OSError as exc:
            logger.error("Could not persist provisioning config: %s", exc)
        await self._on_change(params)
        logger.info("Provisioning information updated")
        return ProvisioningOutcome.CHANGED

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                await self.run_once()
            except Exception:  # pragma: no cover - logged and retried next tick
                logger.exception("Provisioning cycle failed unexpectedly.")


__all__ = [
    "DEFAULT_PROVISIONING_PATH",
    "DEFAULT_PROVISIONING_PORT",
    "HttpxProvisioningClient",
    "ProvisioningClient",
    "ProvisioningOutcome",
    "ProvisioningPoller",
    "default_gateway",
]
