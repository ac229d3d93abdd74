from pathlib import Path

import pytest

from sensorhub.agent_entrypoint import (
    build_collector_sequence,
    launch_extras,
    main,
    make_channel_factory,
    make_collector_factory,
    parse_args,
)
from sensorhub.channels import HttpxTelemetryChannel, LoggingTelemetryChannel
from sensorhub.collectors import RandomNumberCollector, SystemStatsCollector
from sensorhub.core.config import AgentSettings, ConfigService
from sensorhub.core.parameters import Parameters


def test_collector_aliases_resolve_and_deduplicate() -> None:
    names = build_collector_sequence(["random", "system", "collectors.random_number", "PSUTIL"])

    assert names == ["collectors.random_number", "collectors.system_stats"]


def test_unknown_collector_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_collector_sequence(["thermocouple"])


def test_collector_factory_builds_fresh_instances() -> None:
    factory = make_collector_factory(["collectors.random_number", "collectors.system_stats"])

    first = factory()
    second = factory()

    assert [type(collector) for collector in first] == [RandomNumberCollector, SystemStatsCollector]
    assert all(a is not b for a, b in zip(first, second))


def test_cli_options_override_configured_identity(sample_config_service: ConfigService) -> None:
    args = parse_args(
        [
            "--registry-id",
            "cli-registry",
            "--device-id",
            "cli-device",
            "--cloud-region",
            "asia-east1",
            "--key-algorithm",
            "ES256",
            "--collector",
            "random",
        ]
    )

    extras = launch_extras(sample_config_service.snapshot, args)

    assert extras == {
        "project_id": "lab-project",
        "cloud_region": "asia-east1",
        "registry_id": "cli-registry",
        "device_id": "cli-device",
        "key_algorithm": "ES256",
    }
    assert args.collectors == ["random"]


def test_key_algorithm_choices_are_enforced() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--key-algorithm", "HS256"])


@pytest.mark.asyncio
async def test_channel_factory_falls_back_to_logging(
    sample_params: Parameters, key_provider
) -> None:
    factory = make_channel_factory(AgentSettings())
    material = key_provider.load_or_generate("d1", "RS256")

    channel = await factory(sample_params, material)

    assert isinstance(channel, LoggingTelemetryChannel)
    await channel.close()


@pytest.mark.asyncio
async def test_channel_factory_uses_http_when_url_configured(
    sample_config_service: ConfigService, sample_params: Parameters, key_provider
) -> None:
    factory = make_channel_factory(sample_config_service.snapshot)
    material = key_provider.load_or_generate("d1", "RS256")

    channel = await factory(sample_params, material)

    assert isinstance(channel, HttpxTelemetryChannel)
    await channel.close()
    assert channel.closed


def test_main_reports_configuration_errors(tmp_path: Path) -> None:
    assert main(["--config-dir", str(tmp_path / "missing")]) == 2


def test_main_reports_unknown_collectors(sample_config_dir: Path) -> None:
    assert main(["--config-dir", str(sample_config_dir), "--collector", "thermocouple"]) == 2
