"""
CLI entrypoint that runs the sensor hub agent until interrupted.

Loads Dynaconf settings, wires the persisted store, key provider, telemetry
channel, and collectors into a `SensorHubAgent`, then drives its
`agent_start()` / `agent_stop()` lifecycle from process signals.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import logging.handlers
import signal
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from .agent import SensorHubAgent
from .channels import HttpxTelemetryChannel, LoggingTelemetryChannel
from .collectors import RandomNumberCollector, SystemStatsCollector
from .core.config import AgentSettings, ConfigError, ConfigService
from .core.contracts import SensorCollector, TelemetryChannel
from .core.hub import ChannelFactory
from .core.keys import FileKeyMaterialProvider, KeyMaterial
from .core.metrics import AgentMetrics
from .core.parameters import REQUIRED_FIELDS, SUPPORTED_KEY_ALGORITHMS, Parameters
from .core.store import JsonFileConfigStore

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file:
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


COLLECTOR_REGISTRY: dict[str, Callable[[], SensorCollector]] = {
    "collectors.random_number": RandomNumberCollector,
    "collectors.system_stats": SystemStatsCollector,
}


COLLECTOR_ALIASES: dict[str, str] = {
    "random": "collectors.random_number",
    "random-number": "collectors.random_number",
    "system": "collectors.system_stats",
    "system-stats": "collectors.system_stats",
    "psutil": "collectors.system_stats",
}


def resolve_collector_name(label: str) -> str:
    """Return the fully qualified collector identifier for CLI-friendly aliases."""

    normalised = label.strip().lower()
    return COLLECTOR_ALIASES.get(normalised, label)


def build_collector_sequence(names: Iterable[str]) -> list[str]:
    """Resolve aliases, keep first-seen ordering, and reject unknown collectors."""

    unique: OrderedDict[str, None] = OrderedDict()
    for label in names:
        name = resolve_collector_name(label)
        if name not in COLLECTOR_REGISTRY:
            raise ValueError(
                f"Unknown collector '{label}'. Available: {sorted(COLLECTOR_REGISTRY)}"
            )
        unique.setdefault(name, None)
    return list(unique.keys())


def make_collector_factory(names: Sequence[str]) -> Callable[[], list[SensorCollector]]:
    """Every hub gets brand new collector instances with default enabled state."""

    def factory() -> list[SensorCollector]:
        return [COLLECTOR_REGISTRY[name]() for name in names]

    return factory


def make_channel_factory(settings: AgentSettings) -> ChannelFactory:
    telemetry = settings.telemetry

    async def factory(params: Parameters, key_material: KeyMaterial) -> TelemetryChannel:
        if not telemetry.url:
            LOGGER.info("No telemetry URL configured; readings will only be logged.")
            return LoggingTelemetryChannel(device_id=params.device_id)
        return HttpxTelemetryChannel(
            url=telemetry.url,
            params=params,
            key_material=key_material,
            timeout=telemetry.timeout_seconds,
            token_lifetime=dt.timedelta(minutes=telemetry.token_lifetime_minutes),
            headers=telemetry.headers,
        )

    return factory


def launch_extras(settings: AgentSettings, args: argparse.Namespace) -> dict[str, str]:
    """Launch-time identity: config `identity` section overridden by CLI options."""

    extras = dict(settings.identity)
    for field in REQUIRED_FIELDS:
        value = getattr(args, field, None)
        if value:
            extras[field] = value
    return extras


async def run_agent(
    *,
    settings: AgentSettings,
    collector_names: Sequence[str],
    extras: dict[str, str],
) -> None:
    """Instantiate the agent and run until a shutdown signal arrives."""

    settings.storage.ensure_directories()
    _ensure_rotating_file_handler(settings.storage.log_file)

    metrics = AgentMetrics()
    if settings.metrics.enabled:
        metrics.serve(settings.metrics.port, settings.metrics.addr)

    agent = SensorHubAgent(
        settings,
        store=JsonFileConfigStore(settings.storage.state_dir),
        key_provider=FileKeyMaterialProvider(settings.storage.key_dir),
        channel_factory=make_channel_factory(settings),
        collector_factory=make_collector_factory(collector_names),
        launch_extras=extras,
        metrics=metrics,
    )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await agent.agent_start()
    LOGGER.info(
        "SensorHub agent running with collectors %s. Press Ctrl+C to stop.",
        ", ".join(collector_names) or "<none>",
    )

    try:
        await stop_event.wait()
    finally:
        await agent.agent_stop()
        metrics.shutdown()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s, beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SensorHub device agent.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument("--project-id", dest="project_id", default=None)
    parser.add_argument("--cloud-region", dest="cloud_region", default=None)
    parser.add_argument("--registry-id", dest="registry_id", default=None)
    parser.add_argument("--device-id", dest="device_id", default=None)
    parser.add_argument(
        "--key-algorithm",
        dest="key_algorithm",
        choices=SUPPORTED_KEY_ALGORITHMS,
        default=None,
        help="Device key algorithm (default: RS256).",
    )
    parser.add_argument(
        "--collector",
        dest="collectors",
        action="append",
        default=[],
        metavar="COLLECTOR",
        help="Collector to register (alias like 'random' or full name); overrides config.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        settings = ConfigService(config_dir=args.config_dir).snapshot
        collector_names = build_collector_sequence(args.collectors or settings.hub.collectors)
        asyncio.run(
            run_agent(
                settings=settings,
                collector_names=collector_names,
                extras=launch_extras(settings, args),
            )
        )
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("SensorHub agent crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = [
    "build_collector_sequence",
    "launch_extras",
    "main",
    "make_channel_factory",
    "make_collector_factory",
    "run_agent",
]
