"""WebSocket fan-out of discovery events."""

import asyncio
import json
import logging

from fastapi import WebSocket

from discovery.models import PairingEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected WebSocket clients and pushes agent events to them."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info(f"WebSocket client connected. Total: {self.count}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        logger.info(f"WebSocket client disconnected. Total: {self.count}")

    async def broadcast(self, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            targets = list(self._connections)
        results = await asyncio.gather(
            *(ws.send_text(message) for ws in targets),
            return_exceptions=True,
        )
        dead = [ws for ws, result in zip(targets, results) if isinstance(result, Exception)]
        if dead:
            async with self._lock:
                self._connections.difference_update(dead)

    async def paired(self, event: PairingEvent) -> None:
        """Pairing hook: tell clients which endpoint was chosen."""
        if event.changed:
            await self.broadcast("management_paired", event.model_dump())

    async def key_imported(self, key_id: str) -> None:
        await self.broadcast("management_key_imported", {"gpg_user": key_id})
