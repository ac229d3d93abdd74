"""
Cloud identity parameters and their canonical fingerprint.

Parameters can originate from a launch-time bundle, the persisted store, or a
freshly fetched discovery document. Whatever the source, identical field values
produce identical fingerprints so the provisioning loop can tell a real change
from a repeat of the active configuration.
"""

from __future__ import annotations

import enum
import hashlib
import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import IncompleteConfigError, InvalidAlgorithmError, ParseError


class KeyAlgorithm(enum.StrEnum):
    RS256 = "RS256"
    ES256 = "ES256"


SUPPORTED_KEY_ALGORITHMS: tuple[str, ...] = tuple(algorithm.value for algorithm in KeyAlgorithm)
DEFAULT_KEY_ALGORITHM = KeyAlgorithm.RS256
REQUIRED_FIELDS: tuple[str, ...] = (
    "project_id",
    "cloud_region",
    "registry_id",
    "device_id",
    "key_algorithm",
)


class Parameters(BaseModel):
    """Immutable identity of the device in the cloud registry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_id: str = Field(min_length=1)
    cloud_region: str = Field(min_length=1)
    registry_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    key_algorithm: KeyAlgorithm

    @classmethod
    def parse(cls, raw: str | bytes) -> Parameters:
        """Decode a discovery document into validated parameters."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ParseError(f"Discovery response is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(
                f"Discovery response must be a JSON object, got {type(data).__name__}."
            )
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Parameters:
        """
        Build parameters from a key-value bundle.

        Missing or blank fields raise `IncompleteConfigError` naming every absent
        key; the algorithm must match a supported identifier exactly.
        """
        values = {field: _clean(field, data.get(field)) for field in REQUIRED_FIELDS}
        missing = [field for field, value in values.items() if not value]
        if missing:
            raise IncompleteConfigError(missing)
        algorithm = values["key_algorithm"]
        if algorithm not in SUPPORTED_KEY_ALGORITHMS:
            raise InvalidAlgorithmError(
                f"Unsupported key algorithm {algorithm!r}; "
                f"expected one of {', '.join(SUPPORTED_KEY_ALGORITHMS)}."
            )
        return cls(**values)

    @classmethod
    def merge(
        cls,
        initial: Mapping[str, Any] | Parameters | None,
        override: Mapping[str, Any] | Parameters | None,
    ) -> Parameters:
        """Combine a baseline with overrides; present override fields win."""
        merged = dict(_as_mapping(initial))
        for field, value in _as_mapping(override).items():
            if field in REQUIRED_FIELDS and _clean(field, value):
                merged[field] = value
        return cls.from_mapping(merged)

    @classmethod
    def from_sources(
        cls,
        stored: Mapping[str, Any] | None,
        extras: Mapping[str, Any] | None,
    ) -> Parameters:
        """
        Reconcile the persisted baseline with launch-time arguments.

        The key algorithm is optional at launch and falls back to RS256 when
        neither source provides one.
        """
        baseline = {"key_algorithm": DEFAULT_KEY_ALGORITHM.value, **_as_mapping(stored)}
        return cls.merge(baseline, extras)

    def to_mapping(self) -> dict[str, str]:
        """Plain string mapping of the five identity fields."""
        return {
            "project_id": self.project_id,
            "cloud_region": self.cloud_region,
            "registry_id": self.registry_id,
            "device_id": self.device_id,
            "key_algorithm": self.key_algorithm.value,
        }

    def fingerprint(self) -> str:
        raw = json.dumps(self.to_mapping(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def describe(self) -> str:
        """Human readable multi-line summary used in startup logs."""
        return (
            f"   Project ID: {self.project_id}\n"
            f"    Region ID: {self.cloud_region}\n"
            f"  Registry ID: {self.registry_id}\n"
            f"    Device ID: {self.device_id}\n"
            f"Key algorithm: {self.key_algorithm.value}"
        )


def _as_mapping(source: Mapping[str, Any] | Parameters | None) -> Mapping[str, Any]:
    if source is None:
        return {}
    if isinstance(source, Parameters):
        return source.to_mapping()
    return source


def _clean(field: str, value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        value = value.value
    if not isinstance(value, str):
        raise ParseError(f"Field {field!r} must be a string, got {type(value).__name__}.")
    value = value.strip()
    return value or None


__all__ = [
    "DEFAULT_KEY_ALGORITHM",
    "KeyAlgorithm",
    "Parameters",
    "REQUIRED_FIELDS",
    "SUPPORTED_KEY_ALGORITHMS",
]
