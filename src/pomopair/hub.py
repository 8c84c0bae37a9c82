"""
Realtime hub.

Keeps one live WebSocket per user and the set of connected users per room,
and fans a user's state snapshot out to everyone in that user's room after
each change. Delivery is best effort: closed sockets are skipped, failed
sends are logged, nothing is retried or queued.
"""

import logging
from typing import Any

from pydantic import ValidationError as MessageValidationError
from fastapi.websockets import WebSocket, WebSocketState

from pomopair.models import InboundMessage, User
from pomopair.projection import StateProjector
from pomopair.store import RecordStore

logger = logging.getLogger(__name__)

# Policy violation: the handshake carried no known identity
CLOSE_NOT_AUTHENTICATED = 1008

MSG_PING = "ping"
MSG_PONG = "pong"
MSG_STATE_REQUEST = "state:request"
MSG_USER_STATE = "user:state"


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class RealtimeHub:
    """Connection registry and room fan-out for one server process."""

    def __init__(self, store: RecordStore, projector: StateProjector):
        self.store = store
        self.projector = projector
        self.connections: dict[str, WebSocket] = {}
        self.rooms: dict[str, set[str]] = {}

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    async def connect(self, websocket: WebSocket, user_id: str | None) -> User | None:
        """Accept and register ``websocket`` for ``user_id``.

        Unknown identities are refused before the handshake completes. On
        success the whole room gets a fresh snapshot of the user, so a partner
        who is already connected sees the newcomer straight away.
        """
        user = await self.store.get_user(user_id) if user_id else None
        if user is None:
            await websocket.close(code=CLOSE_NOT_AUTHENTICATED, reason="Not authenticated")
            return None

        await websocket.accept()
        self.register(user, websocket)
        logger.info("WebSocket connected: %s (%s) room=%s", user.name, user.id, user.room_id)

        await self.notify_user(user.id)
        return user

    def register(self, user: User, websocket: WebSocket) -> None:
        previous = self.connections.get(user.id)
        if previous is not None and previous is not websocket:
            logger.info("Replacing existing connection for user %s", user.id)
        self.connections[user.id] = websocket
        if user.room_id is not None:
            self.rooms.setdefault(user.room_id, set()).add(user.id)

    def disconnect(self, user: User, websocket: WebSocket) -> bool:
        """Forget ``websocket``. Partners are not notified.

        A socket that was already replaced by a reconnect is ignored, so that
        its late close does not evict the newer connection.
        """
        if self.connections.get(user.id) is not websocket:
            return False

        del self.connections[user.id]
        members = self.rooms.get(user.room_id)
        if members is not None:
            members.discard(user.id)
            if not members:
                del self.rooms[user.room_id]

        logger.info("WebSocket disconnected: %s (%s)", user.name, user.id)
        return True

    async def handle_message(self, websocket: WebSocket, user_id: str, raw: str) -> None:
        """Dispatch one frame received on ``websocket``.

        Replies go back on the socket the frame arrived on. Bad or unknown
        frames never close it.
        """
        try:
            message = InboundMessage.model_validate_json(raw)
        except MessageValidationError:
            logger.warning("Dropping malformed message from user %s: %.200r", user_id, raw)
            return

        if message.type == MSG_PING:
            await self._send(websocket, user_id, {"type": MSG_PONG})
        elif message.type == MSG_STATE_REQUEST:
            await self.notify_user(user_id)
        else:
            logger.info("Ignoring unknown message type %r from user %s", message.type, user_id)

    async def notify_user(self, user_id: str) -> int:
        """Push ``user_id``'s current state to every connection in their room.

        Includes the user's own connection. Returns the number of sockets
        written to.
        """
        try:
            user = await self.store.get_user(user_id)
            state = await self.projector.user_state(user_id) if user else None
        except Exception:
            logger.exception("Failed to project state for user %s", user_id)
            return 0
        if user is None or state is None:
            return 0

        message = {
            "type": MSG_USER_STATE,
            "userId": user.id,
            "data": state.model_dump(mode="json", by_alias=True),
        }
        if user.room_id is None:
            return int(await self.send_to_user(user.id, message))
        return await self.broadcast_to_room(user.room_id, message)

    async def broadcast_to_room(self, room_id: str, message: dict[str, Any]) -> int:
        delivered = 0
        for member_id in list(self.rooms.get(room_id, ())):
            if await self.send_to_user(member_id, message):
                delivered += 1
        return delivered

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> bool:
        websocket = self.connections.get(user_id)
        if websocket is None:
            return False
        return await self._send(websocket, user_id, message)

    async def _send(self, websocket: WebSocket, user_id: str, message: dict[str, Any]) -> bool:
        if not _is_open(websocket):
            return False
        try:
            await websocket.send_json(message)
        except Exception:
            logger.warning("Send to user %s failed", user_id, exc_info=True)
            return False
        return True
