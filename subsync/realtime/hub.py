"""
subsync/realtime/hub.py
In-memory pubsub hub for per-user main streams.

Each connected client subscribes to its own user's stream; account updates
(meUpdated) are pushed to every socket of that user.
"""

from typing import Any, Dict, Set
from fastapi import WebSocket
import asyncio
import logging

from subsync.core.metrics import (
    main_stream_active_connections,
    main_stream_messages_sent_total,
)

logger = logging.getLogger(__name__)


class MainStreamHub:
    """
    In-memory stream-per-user broadcast hub.

    Maps user_id -> Set[WebSocket], allows safe concurrent access.
    """

    def __init__(self):
        self._streams: Dict[str, Set[WebSocket]] = {}
        self._global_count: int = 0
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._streams.setdefault(user_id, set())
            if websocket in sockets:
                return
            sockets.add(websocket)
            self._global_count += 1
            main_stream_active_connections.set(self._global_count)
            logger.debug(f"[HUB] Registered socket for user {user_id}. Total: {len(self._streams[user_id])}")

    async def unregister(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._streams.get(user_id)
            if sockets and websocket in sockets:
                sockets.discard(websocket)
                self._global_count = max(0, self._global_count - 1)
                if not sockets:
                    del self._streams[user_id]
            main_stream_active_connections.set(self._global_count)

    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> int:
        """
        Send {"type": event_name, "body": payload} to every socket of the user.

        Dead sockets are pruned. Returns the number of sockets reached.
        """
        async with self._lock:
            sockets = set(self._streams.get(user_id, set()))
        if not sockets:
            return 0

        message = {"type": event_name, "body": payload}
        delivered = 0
        dead_sockets = []
        for ws in sockets:
            try:
                await ws.send_json(message)
                delivered += 1
                main_stream_messages_sent_total.inc(labels={"event_type": event_name})
            except Exception as e:
                logger.debug(f"[HUB] Failed to send to socket: {e}")
                dead_sockets.append(ws)

        if dead_sockets:
            async with self._lock:
                live = self._streams.get(user_id, set())
                for ws in dead_sockets:
                    if ws in live:
                        live.discard(ws)
                        self._global_count = max(0, self._global_count - 1)
                if user_id in self._streams and not live:
                    del self._streams[user_id]
                main_stream_active_connections.set(self._global_count)
            logger.debug(f"[HUB] Pruned {len(dead_sockets)} dead sockets for user {user_id}")
        return delivered

    async def get_stream_size(self, user_id: str) -> int:
        async with self._lock:
            return len(self._streams.get(user_id, set()))


class HubEventPublisher:
    """EventPublisher backed by a MainStreamHub."""

    def __init__(self, hub: MainStreamHub):
        self.hub = hub

    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        await self.hub.publish(user_id, event_name, payload)


# Process-wide hub shared by the websocket endpoint and the webhook wiring
hub = MainStreamHub()
