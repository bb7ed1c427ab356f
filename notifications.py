import logging
from typing import Any, Set

from fastapi import WebSocket
from fastapi.requests import HTTPConnection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Open dashboard sockets. Broadcasts are fire-and-forget: nothing is
    queued for sessions that are not connected when an event fires."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()

    def __len__(self):
        return len(self._connections)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("Dashboard connected (%d open)", len(self._connections))

    def disconnect(self, websocket: WebSocket):
        self._connections.discard(websocket)
        logger.info("Dashboard disconnected (%d open)", len(self._connections))

    async def broadcast(self, event: str, data: Any) -> int:
        """Send ``{"event", "data"}`` to every open socket; returns how many
        sends succeeded."""
        message = {"event": event, "data": data}
        delivered = 0
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping dashboard socket after failed send: %s", exc)
                self._connections.discard(websocket)
        return delivered


def get_registry(connection: HTTPConnection) -> ConnectionRegistry:
    # Shared by HTTP routes and the socket endpoint.
    return connection.app.state.registry
