from __future__ import annotations

import asyncio
import textwrap
import time
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from sensorhub.core.config import ConfigService
from sensorhub.core.contracts import SensorCollector, SensorData, TelemetryBatch
from sensorhub.core.errors import ChannelSendError, SecurityError
from sensorhub.core.keys import KeyMaterial
from sensorhub.core.parameters import Parameters


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


class StubChannel:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[TelemetryBatch] = []
        self.closed = False
        self.sent = asyncio.Event()

    async def send(self, batch: TelemetryBatch) -> None:
        if self.fail:
            raise ChannelSendError("bridge unavailable")
        self.batches.append(batch)
        self.sent.set()

    async def close(self) -> None:
        self.closed = True


class ChannelRecorder:
    """Channel factory that keeps every channel it opened."""

    def __init__(self, *, fail_sends: bool = False) -> None:
        self.fail_sends = fail_sends
        self.channels: list[StubChannel] = []
        self.opened_for: list[Parameters] = []

    async def __call__(self, params: Parameters, key_material: KeyMaterial) -> StubChannel:
        channel = StubChannel(fail=self.fail_sends)
        self.channels.append(channel)
        self.opened_for.append(params)
        return channel

    @property
    def latest(self) -> StubChannel:
        return self.channels[-1]


class StubKeyProvider:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def load_or_generate(self, device_id: str, algorithm: str) -> KeyMaterial:
        self.calls.append((device_id, algorithm))
        if self.fail:
            raise SecurityError("keystore locked")
        return KeyMaterial(
            device_id=device_id,
            algorithm=algorithm,
            private_key_pem=b"private",
            public_key_pem=b"public",
        )


class StubCollector(SensorCollector):
    def __init__(
        self,
        name: str = "tests.stub",
        sensors: Sequence[str] = ("temperature",),
        *,
        value: float = 21.5,
        activate_ok: bool = True,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self._sensors = list(sensors)
        self._enabled = {sensor: True for sensor in self._sensors}
        self.value = value
        self.activate_ok = activate_ok
        self.delay = delay
        self.error = error
        self.activations = 0
        self.closes = 0
        self.reading = False
        self.closed_during_read = False

    def activate(self) -> bool:
        self.activations += 1
        return self.activate_ok

    def set_enabled(self, sensor: str, enabled: bool) -> None:
        self._enabled[sensor] = enabled

    def is_enabled(self, sensor: str) -> bool:
        return self._enabled.get(sensor, False)

    def available_sensors(self) -> list[str]:
        return list(self._sensors)

    def collect_recent_readings(self, output: list[SensorData]) -> None:
        self.reading = True
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            for sensor in self.enabled_sensors():
                output.append(SensorData(name=sensor, value=self.value))
        finally:
            self.reading = False

    def close(self) -> None:
        if self.reading:
            self.closed_during_read = True
        self.closes += 1


@pytest.fixture
def sample_params() -> Parameters:
    return Parameters.from_mapping(
        {
            "project_id": "p1",
            "cloud_region": "us-central1",
            "registry_id": "r1",
            "device_id": "d1",
            "key_algorithm": "RS256",
        }
    )


@pytest.fixture
def key_provider() -> StubKeyProvider:
    return StubKeyProvider()


@pytest.fixture
def failing_key_provider() -> StubKeyProvider:
    return StubKeyProvider(fail=True)


@pytest.fixture
def channel_recorder() -> ChannelRecorder:
    return ChannelRecorder()


@pytest.fixture
def failing_channel_recorder() -> ChannelRecorder:
    return ChannelRecorder(fail_sends=True)


@pytest.fixture
def make_collector() -> Callable[..., StubCollector]:
    return StubCollector


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    state_dir = tmp_path / "state"
    config_yaml = f"""
    provisioning:
      enabled: true
      interval_seconds: 0.05
      port: 8080
      path: "provision.json"
      timeout_seconds: 1

    hub:
      publish_interval_seconds: 0.05
      collect_timeout_seconds: 0.5
      send_timeout_seconds: 1
      collectors:
        - "random"
        - "system"

    telemetry:
      url: "https://bridge.example.test/v1/readings"
      token_lifetime_minutes: 15
      headers:
        x-fleet: "lab"

    storage:
      state_dir: "{state_dir.as_posix()}"

    identity:
      project_id: "lab-project"
      cloud_region: "europe-west1"
    """
    secrets_yaml = """
    metrics:
      enabled: false
      addr: "0.0.0.0"
      port: 9999
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)
