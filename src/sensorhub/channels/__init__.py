"""Telemetry channel implementations."""

from .http_channel import HttpxTelemetryChannel
from .logging_channel import LoggingTelemetryChannel

__all__ = ["HttpxTelemetryChannel", "LoggingTelemetryChannel"]
