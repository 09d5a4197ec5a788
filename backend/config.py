"""Application-wide configuration constants and the management settings handle."""

import asyncio
import os
from pathlib import Path

from pydantic import BaseModel, PrivateAttr


def _env(name: str, default: str) -> str:
    return os.environ.get(f"FLEET_{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(f"FLEET_{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Identity ---
APP_ID = "fleet-agent-v1"
SERVICE_TYPE = _env("SERVICE_TYPE", "urn:fleet-agent:management:peer:5")

# --- Management workload ---
MANAGEMENT_CONTAINER = _env("MANAGEMENT_CONTAINER", "management")
LOCAL_MANAGEMENT_ADDRESS = _env("LOCAL_MANAGEMENT_ADDRESS", "10.10.10.1")
LOCAL_MANAGEMENT_PORT = int(_env("LOCAL_MANAGEMENT_PORT", "8443"))
FINGERPRINT_PATH = "/rest/v1/security/keyman/getpublickeyfingerprint"

# --- Discovery ---
MONITOR_INTERVAL = float(_env("MONITOR_INTERVAL", "30"))  # seconds
PROBE_INTERVAL = float(_env("PROBE_INTERVAL", "30"))  # seconds
LISTEN_WINDOW = float(_env("LISTEN_WINDOW", "2"))  # seconds
ADVERTISE_MAX_AGE = 3600  # seconds
HOST_PLACEHOLDER_LENGTH = 6  # hosts this short are treated as unset
HTTP_TIMEOUT = 5.0  # seconds

# --- API ---
API_HOST = _env("API_HOST", "0.0.0.0")
API_PORT = int(_env("API_PORT", "8765"))

# --- Storage ---
CONFIG_DIR = Path(_env("CONFIG_DIR", str(Path.home() / ".fleet-agent")))
DISCOVERY_DB = CONFIG_DIR / "discovery.json"
KEYRING_DIR = CONFIG_DIR / "keyring"


class ManagementSettings(BaseModel):
    """Live connection settings for the management endpoint.

    Passed explicitly to every component that needs it. Only pairing writes
    ``host`` and only the key exchange writes ``gpg_user``; all writes go
    through :meth:`update` so concurrent discovery tasks never interleave.
    """
    fingerprint: str = ""
    host: str = ""
    port: str = "8443"
    rest_public_key: str = "/rest/v1/security/keyman/getpublickeyring"
    allow_insecure: bool = True
    gpg_user: str = ""

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @classmethod
    def from_env(cls) -> "ManagementSettings":
        return cls(
            fingerprint=_env("MGMT_FINGERPRINT", ""),
            host=_env("MGMT_HOST", ""),
            port=_env("MGMT_PORT", "8443"),
            rest_public_key=_env(
                "MGMT_REST_PUBLIC_KEY", "/rest/v1/security/keyman/getpublickeyring"
            ),
            allow_insecure=_env_bool("MGMT_ALLOW_INSECURE", True),
            gpg_user=_env("MGMT_GPG_USER", ""),
        )

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def update(self, **fields) -> None:
        """Assign fields under the settings lock."""
        async with self._lock:
            self.assign(**fields)

    def assign(self, **fields) -> None:
        """Assign fields; the caller must already hold :attr:`lock`."""
        for name, value in fields.items():
            if name not in type(self).model_fields:
                raise AttributeError(f"Unknown management setting: {name}")
            setattr(self, name, value)

    def snapshot(self) -> dict:
        return self.model_dump()
