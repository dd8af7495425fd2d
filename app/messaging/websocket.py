# ============================================================================
# RELAY Chat - WebSocket Transport
# ============================================================================
# Connection table for live sockets and JSON envelope delivery.
# Delivery is best effort: a failed send is logged and skipped, never queued.
# ============================================================================

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from fastapi import WebSocket

from .events import envelope

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Push side of the chat protocol, addressed by connection id."""

    @abstractmethod
    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        """Deliver one event to one connection. False if it is gone."""

    @abstractmethod
    async def broadcast(self, event: str, data: Any, exclude: Optional[Iterable[str]] = None) -> int:
        """Deliver one event to every open connection. Returns how many got it."""


class ConnectionManager(Transport):
    """
    Manages WebSocket connections for the chat endpoint.

    Features:
    - Connection id assignment on accept
    - Send to one connection
    - Broadcast to all connections, optionally excluding some
    """

    def __init__(self):
        # connection_id -> WebSocket
        self._connections: Dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str:
        """Accept the socket and register it under a fresh connection id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        async with self._lock:
            self._connections[connection_id] = websocket
        logger.info(f"[WS] Connection {connection_id} opened. Total connections: {len(self._connections)}")
        return connection_id

    async def disconnect(self, connection_id: str):
        async with self._lock:
            websocket = self._connections.pop(connection_id, None)
        if websocket is not None:
            logger.info(f"[WS] Connection {connection_id} closed. Total connections: {len(self._connections)}")

    def __len__(self) -> int:
        return len(self._connections)

    async def _send_to_websocket(self, ws: WebSocket, message: Dict) -> bool:
        try:
            await ws.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"[WS] Send failed: {e}")
            return False

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        async with self._lock:
            websocket = self._connections.get(connection_id)
        if websocket is None:
            return False
        return await self._send_to_websocket(websocket, envelope(event, data))

    async def broadcast(self, event: str, data: Any, exclude: Optional[Iterable[str]] = None) -> int:
        excluded = set(exclude or ())
        async with self._lock:
            targets = [(cid, ws) for cid, ws in self._connections.items() if cid not in excluded]

        message = envelope(event, data)
        sent = 0
        for connection_id, websocket in targets:
            if await self._send_to_websocket(websocket, message):
                sent += 1
        return sent
