"""
Dynaconf-powered agent settings with Pydantic validation.

Settings are layered from `config.yaml` and an optional `secrets.yaml` in the
config directory, then `SENSORHUB_*` environment variables. The identity itself
is not part of these settings; it comes from the persisted store, launch
arguments, and the provisioning endpoint.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .provisioning import DEFAULT_PROVISIONING_PATH, DEFAULT_PROVISIONING_PORT


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return {str(k).lower(): v for k, v in value.items()}
    return {}


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"


def _positive(value: float, name: str) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


class ProvisioningSettings(BaseModel):
    """Discovery endpoint and reconciliation cadence."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    interval_seconds: float = Field(default=10.0)
    port: int = Field(default=DEFAULT_PROVISIONING_PORT, gt=0, lt=65536)
    path: str = Field(default=DEFAULT_PROVISIONING_PATH)
    timeout_seconds: float = Field(default=5.0)
    endpoint_override: str | None = Field(
        default=None, description="Fixed discovery URL that bypasses gateway lookup."
    )

    @field_validator("interval_seconds", "timeout_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        return _positive(value, "provisioning intervals and timeouts")


class HubSettings(BaseModel):
    """Publish cycle cadence and time budgets."""

    model_config = ConfigDict(extra="ignore")

    publish_interval_seconds: float = Field(default=5.0)
    collect_timeout_seconds: float = Field(default=2.0)
    send_timeout_seconds: float = Field(default=10.0)
    collectors: list[str] = Field(default_factory=lambda: ["random"])

    @field_validator("publish_interval_seconds", "collect_timeout_seconds", "send_timeout_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        return _positive(value, "hub intervals and timeouts")


class TelemetrySettings(BaseModel):
    """Where batches go; without a URL readings are only logged."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = Field(default=None)
    timeout_seconds: float = Field(default=10.0, gt=0)
    token_lifetime_minutes: int = Field(default=60, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)


class StorageSettings(BaseModel):
    """Local state: persisted identity, device keys, and log files."""

    model_config = ConfigDict(extra="ignore")

    state_dir: Path = Field(default_factory=lambda: _REPO_ROOT / "state")

    @field_validator("state_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value)

    @property
    def key_dir(self) -> Path:
        return self.state_dir / "keys"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "sensorhub.log"

    def ensure_directories(self) -> None:
        for directory in (self.state_dir, self.key_dir):
            directory.mkdir(parents=True, exist_ok=True)


class MetricsSettings(BaseModel):
    """Optional Prometheus exporter."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=False)
    addr: str = Field(default="127.0.0.1")
    port: int = Field(default=9095, gt=0, lt=65536)


class AgentSettings(BaseModel):
    """Validated view of every agent setting."""

    model_config = ConfigDict(extra="ignore")

    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    hub: HubSettings = Field(default_factory=HubSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    identity: dict[str, str] = Field(
        default_factory=dict,
        description="Optional launch-time identity fields, overridden by CLI options.",
    )


class ConfigService:
    """
    Runtime facade for loading and validating agent settings.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        if config_dir is not None and not self._config_dir.is_dir():
            raise ConfigError(f"Configuration directory {self._config_dir} does not exist.")
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        self._settings = settings or Dynaconf(
            envvar_prefix="SENSORHUB",
            settings_files=existing_files,
            load_dotenv=True,
            environments=False,
        )
        self._snapshot = self._build_snapshot()

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def snapshot(self) -> AgentSettings:
        """Latest validated settings."""
        return self._snapshot

    def refresh(self) -> AgentSettings:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def _build_snapshot(self) -> AgentSettings:
        raw = self._settings.as_dict()
        data = {
            "provisioning": _section(raw, "provisioning"),
            "hub": _section(raw, "hub"),
            "telemetry": _section(raw, "telemetry"),
            "storage": _section(raw, "storage"),
            "metrics": _section(raw, "metrics"),
            "identity": {
                k: str(v) for k, v in _section(raw, "identity").items() if v is not None
            },
        }
        try:
            return AgentSettings.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc


__all__ = [
    "AgentSettings",
    "ConfigError",
    "ConfigService",
    "HubSettings",
    "MetricsSettings",
    "ProvisioningSettings",
    "StorageSettings",
    "TelemetrySettings",
]
