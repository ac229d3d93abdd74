"""
Error taxonomy shared by the provisioning loop, the hub, and its collaborators.

Every failure path in the agent is classified into one of these types so the
owning cycle can log it and carry on instead of catching broad exceptions.
"""

from __future__ import annotations

from collections.abc import Iterable


class SensorHubError(RuntimeError):
    """Base class for all agent errors."""


class IncompleteConfigError(SensorHubError):
    """Raised when one or more required identity fields are missing or empty."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"Incomplete configuration; missing: {', '.join(self.missing)}")


class ParseError(SensorHubError):
    """Raised when a discovery response is not a JSON object."""


class InvalidAlgorithmError(SensorHubError):
    """Raised when the key algorithm is not one of the supported identifiers."""


class NetworkError(SensorHubError):
    """Raised when the discovery endpoint is unresolvable, unreachable, or unhappy."""


class SecurityError(SensorHubError):
    """Raised when key material cannot be loaded or generated."""


class ChannelSendError(SensorHubError):
    """Raised when the telemetry channel fails to deliver a batch."""


class HubStateError(SensorHubError):
    """Raised when a hub operation is attempted in the wrong lifecycle state."""


class ConfigError(SensorHubError):
    """Raised when configuration files are invalid."""


__all__ = [
    "ChannelSendError",
    "ConfigError",
    "HubStateError",
    "IncompleteConfigError",
    "InvalidAlgorithmError",
    "NetworkError",
    "ParseError",
    "SecurityError",
    "SensorHubError",
]
