"""
Local keyring for management public keys.

Keys are stored as PEM files named after their key id. The key id is the
last 16 hex digits of the SHA-256 digest of the key's DER
SubjectPublicKeyInfo, upper case.
"""

import logging
from pathlib import Path
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_public_key,
    load_pem_public_key,
)

from config import KEYRING_DIR

logger = logging.getLogger(__name__)

# Raw Ed25519 public key size
RAW_KEY_SIZE = 32
KEY_ID_LENGTH = 16


def load_public_key(material: bytes):
    """
    Parse public key material.

    Accepts PEM or DER SubjectPublicKeyInfo, or a raw 32-byte Ed25519 key.
    Raises ValueError if the material is not a supported public key.
    """
    try:
        if material.lstrip().startswith(b"-----BEGIN"):
            return load_pem_public_key(material.strip())
        if len(material) == RAW_KEY_SIZE:
            return ed25519.Ed25519PublicKey.from_public_bytes(material)
        return load_der_public_key(material)
    except UnsupportedAlgorithm as e:
        raise ValueError(f"Unsupported public key: {e}") from e


def spki_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=Encoding.DER,
        format=PublicFormat.SubjectPublicKeyInfo,
    )


def extract_key_id(material: bytes) -> str:
    """Derive the key id for ``material``."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(spki_bytes(load_public_key(material)))
    return digest.finalize().hex().upper()[-KEY_ID_LENGTH:]


class Keyring:
    """Directory of imported public keys."""

    def __init__(self, directory: Path = KEYRING_DIR):
        self._dir = directory

    def import_key(self, material: bytes) -> str:
        """Import ``material`` and return its key id."""
        public_key = load_public_key(material)
        key_id = extract_key_id(material)

        pem = public_key.public_bytes(
            encoding=Encoding.PEM,
            format=PublicFormat.SubjectPublicKeyInfo,
        )
        self._dir.mkdir(parents=True, exist_ok=True)
        (self._dir / f"{key_id}.pem").write_bytes(pem)
        logger.info(f"Imported public key {key_id}")
        return key_id

    def extract_key_id(self, material: bytes) -> str:
        return extract_key_id(material)

    def get(self, key_id: str) -> Optional[bytes]:
        path = self._dir / f"{key_id.upper()}.pem"
        if not path.exists():
            return None
        return path.read_bytes()

    def key_ids(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.pem"))
