"""
SensorHub - device-side telemetry agent

Keeps the device's cloud identity in sync with the local provisioning
gateway and publishes readings from pluggable sensor collectors.
"""

__version__ = "0.1.0"

from sensorhub.agent import SensorHubAgent
from sensorhub.core import Hub, HubState, Parameters, ProvisioningPoller

__all__ = [
    "Hub",
    "HubState",
    "Parameters",
    "ProvisioningPoller",
    "SensorHubAgent",
]
