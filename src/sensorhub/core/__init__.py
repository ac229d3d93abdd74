"""
Core infrastructure for the SensorHub agent.

Exposes the identity model, the collector contract, the hub runtime, and the
provisioning poller that keeps them in sync with the gateway.
"""

from .contracts import (
    BasePayload,
    HealthStatus,
    SensorCollector,
    SensorData,
    TelemetryBatch,
    TelemetryChannel,
)
from .errors import (
    ChannelSendError,
    ConfigError,
    HubStateError,
    IncompleteConfigError,
    InvalidAlgorithmError,
    NetworkError,
    ParseError,
    SecurityError,
    SensorHubError,
)
from .hub import Hub, HubState
from .parameters import KeyAlgorithm, Parameters
from .provisioning import ProvisioningOutcome, ProvisioningPoller
from .registry import SensorRegistry

__all__ = [
    "BasePayload",
    "ChannelSendError",
    "ConfigError",
    "HealthStatus",
    "Hub",
    "HubState",
    "HubStateError",
    "IncompleteConfigError",
    "InvalidAlgorithmError",
    "KeyAlgorithm",
    "NetworkError",
    "Parameters",
    "ParseError",
    "ProvisioningOutcome",
    "ProvisioningPoller",
    "SecurityError",
    "SensorCollector",
    "SensorData",
    "SensorHubError",
    "SensorRegistry",
    "TelemetryBatch",
    "TelemetryChannel",
]
