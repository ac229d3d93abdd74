import asyncio
import json

import pytest

from sensorhub.agent import SensorHubAgent
from sensorhub.core.config import AgentSettings
from sensorhub.core.parameters import KeyAlgorithm, Parameters
from sensorhub.core.provisioning import ProvisioningOutcome
from sensorhub.core.store import MemoryConfigStore


class StaticClient:
    def __init__(self, body: str) -> None:
        self.body = body
        self.calls = 0

    async def fetch(self, url: str) -> str:
        self.calls += 1
        return self.body


def _settings(*, polling: bool = False) -> AgentSettings:
    return AgentSettings.model_validate(
        {
            "provisioning": {"enabled": polling, "interval_seconds": 60},
            "hub": {"publish_interval_seconds": 60},
        }
    )


def _agent(
    *,
    store: MemoryConfigStore,
    key_provider,
    channel_recorder,
    make_collector,
    client=None,
    extras=None,
    polling: bool = False,
) -> SensorHubAgent:
    return SensorHubAgent(
        _settings(polling=polling),
        store=store,
        key_provider=key_provider,
        channel_factory=channel_recorder,
        collector_factory=lambda: [make_collector("tests.climate", ["temperature", "humidity"])],
        launch_extras=extras,
        provisioning_client=client,
        gateway_resolver=lambda: "192.168.4.1",
    )


@pytest.mark.asyncio
async def test_agent_starts_hub_from_persisted_store(
    sample_params: Parameters, key_provider, channel_recorder, make_collector
) -> None:
    agent = _agent(
        store=MemoryConfigStore(sample_params.to_mapping()),
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
    )

    await agent.agent_start()
    assert agent.hub is not None
    assert agent.hub.running
    assert agent.poller.current_fingerprint == sample_params.fingerprint()
    assert not agent.poller.running
    health = await agent.health()
    await agent.agent_stop()

    assert health.status == "healthy"
    assert health.details["hub"]["device_id"] == "d1"
    assert not agent.hub.running
    assert channel_recorder.latest.closed


@pytest.mark.asyncio
async def test_launch_extras_fill_gaps_and_default_the_algorithm(
    key_provider, channel_recorder, make_collector
) -> None:
    agent = _agent(
        store=MemoryConfigStore({"project_id": "p1", "cloud_region": "us-central1"}),
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
        extras={"registry_id": "r1", "device_id": "launch"},
    )

    await agent.agent_start()
    await agent.agent_stop()

    params = channel_recorder.opened_for[0]
    assert params.device_id == "launch"
    assert params.key_algorithm is KeyAlgorithm.RS256
    assert key_provider.calls == [("launch", "RS256")]


@pytest.mark.asyncio
async def test_incomplete_configuration_postpones_until_provisioned(
    sample_params: Parameters,
    key_provider,
    channel_recorder,
    make_collector,
    caplog: pytest.LogCaptureFixture,
) -> None:
    store = MemoryConfigStore({"project_id": "p1"})
    agent = _agent(
        store=store,
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
        client=StaticClient(json.dumps(sample_params.to_mapping())),
    )

    with caplog.at_level("WARNING", logger="sensorhub.agent"):
        await agent.agent_start()
    assert agent.hub is None
    assert "Postponing initialization" in caplog.text
    assert (await agent.health()).status == "degraded"

    outcome = await agent.check_provisioning()

    assert outcome is ProvisioningOutcome.CHANGED
    assert agent.hub is not None and agent.hub.running
    assert store.load() == sample_params.to_mapping()
    await agent.agent_stop()


@pytest.mark.asyncio
async def test_identical_discovery_does_not_restart_hub(
    sample_params: Parameters, key_provider, channel_recorder, make_collector
) -> None:
    client = StaticClient(json.dumps(sample_params.to_mapping()))
    agent = _agent(
        store=MemoryConfigStore(sample_params.to_mapping()),
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
        client=client,
    )

    await agent.agent_start()
    hub = agent.hub
    first = await agent.check_provisioning()
    second = await agent.check_provisioning()

    assert first is ProvisioningOutcome.UNCHANGED
    assert second is ProvisioningOutcome.UNCHANGED
    assert client.calls == 2
    assert agent.hub is hub
    assert len(channel_recorder.channels) == 1
    await agent.agent_stop()


@pytest.mark.asyncio
async def test_changed_device_replaces_hub_once_with_fresh_registry(
    sample_params: Parameters, key_provider, channel_recorder, make_collector
) -> None:
    moved = Parameters.merge(sample_params, {"device_id": "d2"})
    client = StaticClient(json.dumps(moved.to_mapping()))
    agent = _agent(
        store=MemoryConfigStore(sample_params.to_mapping()),
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
        client=client,
    )

    await agent.agent_start()
    old_hub = agent.hub
    assert old_hub is not None
    old_hub.set_sensor_enabled("humidity", False)

    assert await agent.check_provisioning() is ProvisioningOutcome.CHANGED
    assert await agent.check_provisioning() is ProvisioningOutcome.UNCHANGED

    new_hub = agent.hub
    assert new_hub is not None and new_hub is not old_hub
    assert not old_hub.running
    assert new_hub.running
    assert new_hub.params == moved
    assert [params.device_id for params in channel_recorder.opened_for] == ["d1", "d2"]
    assert channel_recorder.channels[0].closed
    (entry,) = new_hub.registry.entries()
    assert entry.collector.enabled_sensors() == ["temperature", "humidity"]
    await agent.agent_stop()


@pytest.mark.asyncio
async def test_key_failure_is_logged_and_hub_stays_stopped(
    sample_params: Parameters,
    failing_key_provider,
    channel_recorder,
    make_collector,
    caplog: pytest.LogCaptureFixture,
) -> None:
    agent = _agent(
        store=MemoryConfigStore(sample_params.to_mapping()),
        key_provider=failing_key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
    )

    with caplog.at_level("ERROR"):
        await agent.agent_start()

    assert agent.hub is not None
    assert not agent.hub.running
    assert channel_recorder.channels == []
    assert "Cannot load keypair" in caplog.text
    await agent.agent_stop()


@pytest.mark.asyncio
async def test_poller_runs_only_while_agent_is_started(
    sample_params: Parameters, key_provider, channel_recorder, make_collector
) -> None:
    agent = _agent(
        store=MemoryConfigStore(sample_params.to_mapping()),
        key_provider=key_provider,
        channel_recorder=channel_recorder,
        make_collector=make_collector,
        client=StaticClient(json.dumps(sample_params.to_mapping())),
        polling=True,
    )

    await agent.agent_start()
    assert agent.poller.running
    await agent.agent_stop()

    assert not agent.poller.running
    assert agent.hub is not None and not agent.hub.running


@pytest.mark.asyncio
async def test_agent_stop_during_hand_off_closes_new_collectors(
    sample_params: Parameters, key_provider, make_collector
) -> None:
    opening = asyncio.Event()
    built = []

    async def hanging_factory(params, key_material):
        opening.set()
        await asyncio.Event().wait()

    def collector_factory():
        collector = make_collector()
        built.append(collector)
        return [collector]

    agent = SensorHubAgent(
        AgentSettings.model_validate(
            {
                "provisioning": {"enabled": True, "interval_seconds": 0.02},
                "hub": {"publish_interval_seconds": 60},
            }
        ),
        store=MemoryConfigStore(),
        key_provider=key_provider,
        channel_factory=hanging_factory,
        collector_factory=collector_factory,
        provisioning_client=StaticClient(json.dumps(sample_params.to_mapping())),
        gateway_resolver=lambda: "192.168.4.1",
    )

    await agent.agent_start()
    await asyncio.wait_for(opening.wait(), timeout=1.0)
    await agent.agent_stop()

    assert len(built) == 1
    assert built[0].activations == 1
    assert built[0].closes == 1
    assert agent.hub is not None and not agent.hub.running
    assert not agent.poller.in_flight
