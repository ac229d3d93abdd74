"""
Device key material used to authenticate the telemetry session.

`FileKeyMaterialProvider` keeps one PEM private key per device and algorithm in
the state directory, generating it on first use. Hosts with hardware-backed key
storage can supply their own `KeyMaterialProvider` instead.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .errors import SecurityError
from .parameters import SUPPORTED_KEY_ALGORITHMS, KeyAlgorithm

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048


@dataclass(frozen=True, slots=True)
class KeyMaterial:
    device_id: str
    algorithm: str
    private_key_pem: bytes
    public_key_pem: bytes


class KeyMaterialProvider(Protocol):
    """Loads or creates the key pair for a device identity."""

    def load_or_generate(self, device_id: str, algorithm: str) -> KeyMaterial: ...


class FileKeyMaterialProvider:
    """PEM key store on the local filesystem."""

    def __init__(self, key_dir: str | Path) -> None:
        self._key_dir = Path(key_dir)

    def key_path(self, device_id: str, algorithm: str) -> Path:
        """Key file for the device; raises `SecurityError` if it would leave `key_dir`."""
        if device_id in {"", ".", ".."} or Path(device_id).name != device_id or "\\" in device_id:
            raise SecurityError(f"Device id {device_id!r} cannot be used as a key file name.")
        path = self._key_dir / f"{device_id}_{algorithm.lower()}_private.pem"
        if path.resolve().parent != self._key_dir.resolve():
            raise SecurityError(f"Key path for {device_id!r} escapes {self._key_dir}.")
        return path

    def load_or_generate(self, device_id: str, algorithm: str) -> KeyMaterial:
        if algorithm not in SUPPORTED_KEY_ALGORITHMS:
            raise SecurityError(f"Cannot create keys for unsupported algorithm {algorithm!r}.")
        path = self.key_path(device_id, algorithm)
        try:
            if path.exists():
                private_key = serialization.load_pem_private_key(path.read_bytes(), password=None)
                logger.info("Loaded %s key for device %s from %s", algorithm, device_id, path)
            else:
                private_key = self._generate(KeyAlgorithm(algorithm))
                self._write_private_key(path, private_key)
                logger.info("Generated new %s key for device %s at %s", algorithm, device_id, path)
        except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise SecurityError(f"Cannot load keypair for {device_id}: {exc}") from exc

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return KeyMaterial(
            device_id=device_id,
            algorithm=algorithm,
            private_key_pem=private_pem,
            public_key_pem=public_pem,
        )

    @staticmethod
    def _generate(algorithm: KeyAlgorithm) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
        if algorithm is KeyAlgorithm.RS256:
            return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
        return ec.generate_private_key(ec.SECP256R1())

    @staticmethod
    def _write_private_key(
        path: Path, private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)


__all__ = ["FileKeyMaterialProvider", "KeyMaterial", "KeyMaterialProvider"]
