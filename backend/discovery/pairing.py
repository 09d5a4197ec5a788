"""Records the chosen management endpoint durably and in live settings."""

import logging
from pathlib import Path

from config import DISCOVERY_DB, ManagementSettings
from discovery.models import PairingEvent
from discovery.store import DiscoveryStore, StoreUnavailableError

logger = logging.getLogger(__name__)


class PairingPersister:
    """Writes accepted endpoints to the store, then to the settings.

    Pairing is last-write-wins. Registered hooks are called after every
    successful pairing to reset clients that depend on the endpoint.
    """

    def __init__(self, settings: ManagementSettings, store_path: Path = DISCOVERY_DB) -> None:
        self._settings = settings
        self._store_path = store_path
        self._hooks: list = []  # callbacks: async def fn(event: PairingEvent)

    def on_paired(self, callback) -> None:
        """Register a dependent-client reset hook."""
        self._hooks.append(callback)

    async def save(self, endpoint: str) -> bool:
        """Pair with ``endpoint``. Returns False if nothing was changed."""
        async with self._settings.lock:
            try:
                with DiscoveryStore.open(self._store_path) as store:
                    store.save_discovery(endpoint)
            except (StoreUnavailableError, OSError) as e:
                logger.warning(f"Pairing with {endpoint} aborted: {e}")
                return False

            previous = self._settings.host
            self._settings.assign(host=endpoint)

        event = PairingEvent(
            endpoint=endpoint,
            previous=previous,
            changed=previous.strip().lower() != endpoint.strip().lower(),
        )
        if event.changed:
            logger.info(f"Paired with management endpoint {endpoint}")

        for cb in self._hooks:
            try:
                await cb(event)
            except Exception as e:
                logger.error(f"Pairing hook error: {e}", exc_info=True)
        return True


async def restore_pairing(settings: ManagementSettings, store_path: Path = DISCOVERY_DB) -> bool:
    """Load a previously stored endpoint into ``settings`` if no host is set."""
    if settings.host.strip():
        return False

    try:
        with DiscoveryStore.open(store_path, readonly=True) as store:
            record = store.load_discovery()
    except StoreUnavailableError as e:
        logger.warning(f"Could not restore management pairing: {e}")
        return False

    if record is None or not record.endpoint.strip():
        return False

    await settings.update(host=record.endpoint)
    logger.info(f"Restored management endpoint {record.endpoint}")
    return True
