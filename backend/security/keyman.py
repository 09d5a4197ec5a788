"""
Key management calls against the management server.

Both HTTPS calls are single attempts with a short timeout. Failures are
logged and reported as absence (empty string / None), never raised.
"""

import ipaddress
import logging
from typing import Optional

import httpx

from config import (
    FINGERPRINT_PATH,
    HTTP_TIMEOUT,
    LOCAL_MANAGEMENT_ADDRESS,
    LOCAL_MANAGEMENT_PORT,
    ManagementSettings,
)
from security.keyring import Keyring

logger = logging.getLogger(__name__)


class ManagementClient:
    """HTTPS client for the management server's key endpoints."""

    def __init__(
        self,
        settings: ManagementSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=not self._settings.allow_insecure,
            timeout=HTTP_TIMEOUT,
            transport=self._transport,
        )

    async def _get(self, url: str, what: str) -> Optional[bytes]:
        try:
            async with self._client() as client:
                resp = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Getting {what}: {e}")
            return None

        if resp.status_code != 200:
            logger.warning(f"Failed to fetch {what}. Status Code {resp.status_code}")
            return None
        return resp.content

    async def fetch_fingerprint(self) -> str:
        """Ask the locally hosted management server for its fingerprint."""
        url = f"https://{LOCAL_MANAGEMENT_ADDRESS}:{LOCAL_MANAGEMENT_PORT}{FINGERPRINT_PATH}"
        body = await self._get(url, "Management host GPG fingerprint")
        if body is None:
            return ""
        return body.decode("utf-8", errors="replace").strip()

    def public_key_url(self) -> str:
        host = self._settings.host.strip().strip("/")
        try:
            if ipaddress.ip_address(host).version == 6:
                host = f"[{host}]"
        except ValueError:
            pass
        return f"https://{host}:{self._settings.port}{self._settings.rest_public_key}"

    async def fetch_public_key(self) -> Optional[bytes]:
        """Fetch the paired management server's public key."""
        return await self._get(self.public_key_url(), "Management host Public Key")


class KeyExchange:
    """Imports the management public key and records its key id."""

    def __init__(
        self,
        settings: ManagementSettings,
        client: ManagementClient,
        keyring: Keyring,
    ) -> None:
        self._settings = settings
        self._client = client
        self._keyring = keyring

    async def import_management_key(self) -> Optional[str]:
        """Fetch and import the key. Returns the key id, or None."""
        key = await self._client.fetch_public_key()
        if key is None:
            return None

        try:
            self._keyring.import_key(key)
            key_id = self._keyring.extract_key_id(key)
        except ValueError as e:
            logger.warning(f"Management host returned an unusable public key: {e}")
            return None
        except OSError as e:
            logger.warning(f"Importing management public key failed: {e}")
            return None

        await self._settings.update(gpg_user=key_id)
        logger.info(f"Management public key imported as {key_id}")
        return key_id
