"""
Persisted key-value store for the active cloud identity.

The store lives under the fixed `cloud_iot_config` namespace and holds the five
identity fields as plain strings. It is read once at startup and rewritten
whenever reconciliation accepts new parameters.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from .parameters import REQUIRED_FIELDS, Parameters

logger = logging.getLogger(__name__)

CONFIG_NAMESPACE = "cloud_iot_config"


class ConfigStore(Protocol):
    """Storage backend for persisted identity parameters."""

    def load(self) -> dict[str, str]: ...

    def save(self, params: Parameters) -> None: ...


class MemoryConfigStore:
    """In-process store, handy for embedding and tests."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self.saves = 0

    def load(self) -> dict[str, str]:
        return dict(self._values)

    def save(self, params: Parameters) -> None:
        self._values = params.to_mapping()
        self.saves += 1


class JsonFileConfigStore:
    """Store backed by `<state_dir>/cloud_iot_config.json`."""

    def __init__(self, state_dir: str | Path, *, namespace: str = CONFIG_NAMESPACE) -> None:
        self._path = Path(state_dir) / f"{namespace}.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, str]:
        if not self._path.exists():
            logger.info("No persisted configuration at %s", self._path)
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable persisted configuration %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring persisted configuration %s: not a JSON object", self._path)
            return {}
        return {
            key: value
            for key, value in data.items()
            if key in REQUIRED_FIELDS and isinstance(value, str)
        }

    def save(self, params: Parameters) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(params.to_mapping(), f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)
        logger.debug("Persisted configuration to %s", self._path)


__all__ = ["CONFIG_NAMESPACE", "ConfigStore", "JsonFileConfigStore", "MemoryConfigStore"]
