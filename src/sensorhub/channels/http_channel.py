"""
HTTP telemetry channel that POSTs sensor batches as JSON.

Requests carry a short-lived JWT signed with the device private key, so the
receiving bridge can authenticate the device against its registered public
key. The audience is the cloud project id.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from typing import Any

import httpx
import jwt

from ..core.contracts import TelemetryBatch
from ..core.errors import ChannelSendError, SecurityError
from ..core.keys import KeyMaterial
from ..core.parameters import Parameters

logger = logging.getLogger(__name__)


class HttpxTelemetryChannel:
    """Telemetry channel implemented with httpx."""

    def __init__(
        self,
        *,
        url: str,
        params: Parameters,
        key_material: KeyMaterial,
        timeout: float = 10.0,
        token_lifetime: dt.timedelta = dt.timedelta(minutes=60),
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        if not url:
            raise ChannelSendError("Telemetry URL is required.")
        self._url = url
        self._params = params
        self._key_material = key_material
        self._token_lifetime = token_lifetime
        self._headers = dict(headers or {})
        self._clock = clock or (lambda: dt.datetime.now(tz=dt.UTC))
        self._token: str | None = None
        self._token_expires: dt.datetime | None = None
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    def build_token(self) -> str:
        """Return a cached JWT, minting a new one shortly before expiry."""
        now = self._clock()
        if self._token and self._token_expires and now < self._token_expires - dt.timedelta(
            minutes=1
        ):
            return self._token
        expires = now + self._token_lifetime
        claims = {"iat": now, "exp": expires, "aud": self._params.project_id}
        try:
            token = jwt.encode(
                claims,
                self._key_material.private_key_pem,
                algorithm=self._params.key_algorithm.value,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise SecurityError(f"Cannot sign telemetry token: {exc}") from exc
        self._token = token
        self._token_expires = expires
        return token

    async def send(self, batch: TelemetryBatch) -> None:
        if self._client.is_closed:
            raise ChannelSendError("Telemetry channel is closed.")
        try:
            token = self.build_token()
        except SecurityError as exc:
            raise ChannelSendError(str(exc)) from exc
        headers = {**self._headers, "Authorization": f"Bearer {token}"}
        try:
            response = await self._client.post(
                self._url, json=self._build_payload(batch), headers=headers
            )
        except httpx.HTTPError as exc:
            raise ChannelSendError(f"POST {self._url} failed: {exc}") from exc
        if not response.is_success:
            raise ChannelSendError(f"POST {self._url} returned HTTP {response.status_code}")

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    def _build_payload(self, batch: TelemetryBatch) -> dict[str, Any]:
        return {
            "project_id": self._params.project_id,
            "cloud_region": self._params.cloud_region,
            "registry_id": self._params.registry_id,
            "device_id": batch.device_id,
            "created_utc": batch.created_utc.isoformat(),
            "readings": [
                {
                    "name": reading.name,
                    "value": reading.value,
                    "timestamp_utc": reading.timestamp_utc.isoformat(),
                }
                for reading in batch.readings
            ],
        }


__all__ = ["HttpxTelemetryChannel"]
