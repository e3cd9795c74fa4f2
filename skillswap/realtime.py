"""
Live notification fan-out over WebSockets.

ConnectionRegistry keeps user_id -> set of open sockets for this process only.
Delivery is best effort: sockets that are not open are skipped, nothing is
queued, and clients reconcile through the REST endpoints.
"""

from typing import Dict, Set, Iterable, Any
from starlette.websockets import WebSocketState
import logging

logger = logging.getLogger(__name__)


def is_open(connection) -> bool:
    return (
        getattr(connection, "client_state", None) == WebSocketState.CONNECTED
        and getattr(connection, "application_state", None) == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Set[Any]] = {}

    def join(self, user_id: str, connection):
        self._connections.setdefault(user_id, set()).add(connection)
        logger.info("User %s joined live channel (%d connections)", user_id, len(self._connections[user_id]))

    def leave(self, connection):
        # A socket belongs to at most one user, but every set is checked
        for user_id in list(self._connections):
            sockets = self._connections[user_id]
            if connection in sockets:
                sockets.discard(connection)
                logger.info("User %s left live channel", user_id)
            if not sockets:
                del self._connections[user_id]

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def user_ids(self):
        return set(self._connections)

    async def notify(self, conversation_id: str, recipient_ids: Iterable[str], message: dict) -> int:
        """Push a new_message event to every open connection of the recipients."""
        event = {"type": "new_message", "conversationId": conversation_id, "message": message}
        delivered = 0
        for user_id in set(recipient_ids):
            # Snapshot: join/leave may run while a send is awaited
            for connection in list(self._connections.get(user_id, ())):
                if not is_open(connection):
                    logger.debug("Dropping event for %s, connection not open", user_id)
                    continue
                try:
                    await connection.send_json(event)
                    delivered += 1
                except Exception as exc:
                    logger.warning("Live delivery to %s failed: %s", user_id, exc)
        return delivered

    async def shutdown(self):
        for user_id in list(self._connections):
            for connection in list(self._connections.get(user_id, ())):
                if is_open(connection):
                    try:
                        await connection.close(code=1001)
                    except Exception as exc:
                        logger.debug("Closing connection for %s failed: %s", user_id, exc)
        self._connections.clear()
        logger.info("Live connection registry cleared")
