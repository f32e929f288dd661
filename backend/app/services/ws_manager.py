"""WebSocket connection manager for real-time chat updates.

Tracks connected WebSocket clients and the rooms they subscribed to
(``cohort:<id>`` or ``conversation:<id>``). Events are only delivered to
subscribers of the room they were published to.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)


def cohort_room(cohort_id: str) -> str:
    return f"cohort:{cohort_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


@dataclass
class WSClient:
    """A connected WebSocket client with its room subscriptions."""

    ws: WebSocket
    user_id: str | None = None
    rooms: set[str] = field(default_factory=set)


class ConnectionManager:
    """Manages WebSocket connections and per-room delivery.

    Safe for async usage within a single event loop (FastAPI).
    """

    def __init__(self) -> None:
        # Map of connection_id -> WSClient
        self._clients: dict[int, WSClient] = {}

    @property
    def active_count(self) -> int:
        return len(self._clients)

    async def accept(self, ws: WebSocket, user_id: str | None = None) -> int:
        """Accept a new WebSocket connection and return its connection ID."""
        await ws.accept()
        conn_id = id(ws)
        self._clients[conn_id] = WSClient(ws=ws, user_id=user_id)
        logger.info("WS client connected: %s (user=%s)", conn_id, user_id)
        return conn_id

    def disconnect(self, ws: WebSocket) -> None:
        conn_id = id(ws)
        if conn_id in self._clients:
            del self._clients[conn_id]
            logger.info("WS client disconnected: %s", conn_id)

    def subscribe(self, ws: WebSocket, rooms: list[str]) -> None:
        client = self._clients.get(id(ws))
        if client:
            client.rooms.update(rooms)
            logger.debug("WS %s subscribed to rooms: %s", id(ws), rooms)

    def unsubscribe(self, ws: WebSocket, rooms: list[str]) -> None:
        client = self._clients.get(id(ws))
        if client:
            client.rooms -= set(rooms)

    def subscribers(self, room: str) -> int:
        return sum(1 for client in self._clients.values() if room in client.rooms)

    async def publish(self, room: str, event: dict) -> int:
        """Send an event to every client subscribed to ``room``.

        Returns the number of clients the event was delivered to.
        """
        payload = json.dumps(event)
        dead: list[int] = []
        delivered = 0

        for conn_id, client in self._clients.items():
            if room not in client.rooms:
                continue
            try:
                if client.ws.client_state == WebSocketState.CONNECTED:
                    await client.ws.send_text(payload)
                    delivered += 1
                else:
                    dead.append(conn_id)
            except Exception:
                logger.warning("Failed to send to WS %s, removing", conn_id)
                dead.append(conn_id)

        # Clean up dead connections
        for conn_id in dead:
            self._clients.pop(conn_id, None)
        return delivered

    async def close_all(self) -> None:
        """Close all connections gracefully (for shutdown)."""
        for client in self._clients.values():
            try:
                if client.ws.client_state == WebSocketState.CONNECTED:
                    await client.ws.close(code=1001, reason="Server shutting down")
            except RuntimeError:
                logger.debug("WS already closed during shutdown")
        self._clients.clear()


# Singleton instance used by the FastAPI process
ws_manager = ConnectionManager()
