"""REST API routes for the fleet agent."""

import logging

from fastapi import APIRouter, HTTPException

from config import DISCOVERY_DB
from discovery.store import DiscoveryStore, StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_settings = None
_discovery_service = None
_key_exchange = None
_store_path = DISCOVERY_DB


def init_routes(settings, discovery_service, key_exchange, store_path=DISCOVERY_DB) -> None:
    """Inject service dependencies into the routes module."""
    global _settings, _discovery_service, _key_exchange, _store_path
    _settings = settings
    _discovery_service = discovery_service
    _key_exchange = key_exchange
    _store_path = store_path


# --- Management ---

@router.get("/management")
async def get_management():
    """Return the live management connection settings."""
    role = _discovery_service.role
    return {
        "settings": _settings.snapshot(),
        "role": role.value if role else None,
    }


@router.post("/management/key")
async def import_management_key():
    """Fetch and import the paired management server's public key now."""
    if not _settings.host:
        raise HTTPException(status_code=409, detail="Not paired with a management host")

    key_id = await _key_exchange.import_management_key()
    if key_id is None:
        raise HTTPException(status_code=502, detail="Management host did not return a public key")
    return {"gpg_user": key_id}


# --- Discovery ---

@router.get("/discovery")
async def get_discovery():
    """Return the stored discovery record."""
    try:
        with DiscoveryStore.open(_store_path, readonly=True) as store:
            record = store.load_discovery()
    except StoreUnavailableError as e:
        logger.warning(f"Reading discovery record failed: {e}")
        raise HTTPException(status_code=503, detail="Discovery store unavailable")

    if record is None:
        raise HTTPException(status_code=404, detail="No management endpoint discovered")
    return record.model_dump()
