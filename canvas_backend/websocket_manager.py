"""
WebSocket Manager - Handles real-time connections and broadcasts.

Connected clients (the canvas frontend, possibly several tabs) receive:
- diagram_updated: the graph changed; fetch GET /api/graph
- session_state: the session moved to a new phase
- identity_changed: a first save assigned the document its id
- viewport_reset: the camera must jump to the given viewport
- notification: a toast to show
"""
import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """
    Manages WebSocket connections and broadcasts.

    Failed sends drop the client; a broken socket never stops the
    broadcast to the others.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        async with self._lock:
            self._connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self._connections)}")

    async def broadcast(self, message: dict):
        """Send a message to all connected clients."""
        if not self._connections:
            return

        # Serialize once for all clients
        message_text = json.dumps(message, default=str)

        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception as e:
                    logger.debug(f"Dropping WebSocket client after failed send: {e}")
                    failed.add(websocket)

            self._connections -= failed

    async def notify_diagram_updated(self, document_id: Optional[str], change: str):
        """Tell clients the graph changed. They fetch the latest state via GET /api/graph."""
        await self.broadcast({
            "type": "diagram_updated",
            "document_id": document_id,
            "change": change,
        })

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)
