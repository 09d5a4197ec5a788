"""
Fleet Agent FastAPI application entry point.

Starts management discovery on startup and serves a small status API
and a WebSocket event stream.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api.routes import init_routes, router
from api.websocket import ConnectionManager
from config import API_HOST, API_PORT, DISCOVERY_DB, KEYRING_DIR, ManagementSettings
from discovery.models import PairingEvent
from discovery.pairing import PairingPersister, restore_pairing
from discovery.service import DiscoveryService
from security.keyman import KeyExchange, ManagementClient
from security.keyring import Keyring

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: ManagementSettings | None = None,
    store_path: Path = DISCOVERY_DB,
    keyring_dir: Path = KEYRING_DIR,
    transport=None,
    discovery_service: DiscoveryService | None = None,
) -> FastAPI:
    """Wire the agent's services together and build the FastAPI app."""
    settings = settings or ManagementSettings.from_env()
    ws_manager = ConnectionManager()
    management_client = ManagementClient(settings, transport=transport)
    key_exchange = KeyExchange(settings, management_client, Keyring(keyring_dir))
    persister = PairingPersister(settings, store_path=store_path)
    discovery = discovery_service or DiscoveryService(settings, persister, management_client)
    background: set[asyncio.Task] = set()

    async def import_key() -> None:
        key_id = await key_exchange.import_management_key()
        if key_id:
            await ws_manager.key_imported(key_id)

    async def on_paired(event: PairingEvent) -> None:
        await ws_manager.paired(event)
        # Only refetch the key when the endpoint moved or none is imported yet
        if event.changed or not settings.gpg_user:
            task = asyncio.create_task(import_key())
            background.add(task)
            task.add_done_callback(background.discard)

    persister.on_paired(on_paired)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info("Starting Fleet Agent services...")

        try:
            await restore_pairing(settings, store_path)
            await discovery.start()
            logger.info(f"Fleet Agent ready, API: {API_HOST}:{API_PORT}")
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down Fleet Agent services...")
            await discovery.stop()
            pending = list(background)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    app = FastAPI(
        title="Fleet Agent",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.persister = persister
    app.state.background = background

    init_routes(settings, discovery, key_exchange, store_path=store_path)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)
        except Exception:
            await ws_manager.disconnect(websocket)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        create_app(),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
