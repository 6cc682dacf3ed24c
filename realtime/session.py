import asyncio
import json
import uuid
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from logging_config import get_logger
from realtime.connections import Connection, ConnectionState
from realtime.errors import AuthError, RoomError
from realtime.rooms import parse_room_id
from schemas.messages import JOIN_TYPES, client_message_adapter

logger = get_logger(__name__)


def system_message(message: str, **fields) -> dict:
    return {"type": "system", "message": message, **fields, "timestamp": datetime.now().isoformat()}


def error_message(code: str, message: str, room_id: Optional[str] = None) -> dict:
    error = {"type": "error", "code": code, "message": message}
    if room_id is not None:
        error["room_id"] = room_id
    error["timestamp"] = datetime.now().isoformat()
    return error


class ClientSession:
    """One client socket, from handshake to close.

    Connecting -> Authenticated on a valid credential, Connecting -> Disconnected otherwise.
    Authenticated <-> Subscribed as resource rooms are joined and left. ``close`` always
    deregisters, whatever state the session is in.
    """

    def __init__(self, hub, connection_id: Optional[str] = None):
        self.hub = hub
        self.connection_id = connection_id or str(uuid.uuid4())
        self.connection: Optional[Connection] = None
        self._state = ConnectionState.CONNECTING

    @property
    def state(self) -> ConnectionState:
        if self.connection is not None:
            return self.connection.state
        return self._state

    @property
    def identity(self):
        return self.connection.identity if self.connection else None

    async def authenticate(self, credential: Optional[str]) -> Connection:
        if self._state != ConnectionState.CONNECTING:
            raise RuntimeError(f"Session {self.connection_id} already left the connecting state")
        try:
            identity = await self.hub.authenticator.authenticate(credential)
        except AuthError as e:
            self._state = ConnectionState.DISCONNECTED
            logger.warning(f"Connection {self.connection_id} refused: {e.code} ({e})")
            raise
        except Exception:
            self._state = ConnectionState.DISCONNECTED
            raise
        self.connection = self.hub.registry.register(self.connection_id, identity)
        self._state = ConnectionState.AUTHENTICATED
        logger.info(f"User {identity.user_id} ({identity.email}) connected as {self.connection_id}")
        return self.connection

    def welcome(self) -> dict:
        return system_message(
            "connected",
            connection_id=self.connection_id,
            user_id=self.identity.user_id,
            rooms=sorted(self.hub.registry.rooms_of(self.connection_id)),
        )

    async def handle_text(self, data: str) -> dict:
        """Apply one client frame and queue the reply on the connection's channel."""
        try:
            message = client_message_adapter.validate_python(json.loads(data))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.debug(f"Invalid message from connection {self.connection_id}: {e}")
            return self._reply(error_message("invalid_message", "Expected join_room or leave_room with a room_id"))

        room_id = message.room_id
        try:
            if message.type in JOIN_TYPES:
                await self.join(room_id)
                reply = {"type": "room_joined", "room_id": room_id, "timestamp": datetime.now().isoformat()}
            else:
                self.leave(room_id)
                reply = {"type": "room_left", "room_id": room_id, "timestamp": datetime.now().isoformat()}
        except RoomError as e:
            logger.info(f"Room request from connection {self.connection_id} rejected: {e.code} {room_id}")
            reply = error_message(e.code, e.message, room_id=room_id)
        return self._reply(reply)

    async def join(self, room_id: str) -> bool:
        connection = self._require_connection(room_id)
        room = parse_room_id(room_id)
        if not room.is_personal:
            loop = asyncio.get_running_loop()
            allowed = await loop.run_in_executor(None, self.hub.room_policy.can_join, connection.identity, room)
            if not allowed:
                raise RoomError("forbidden", room_id=room_id, message="Not allowed to join this room")
        joined = self.hub.registry.join(self.connection_id, room_id)
        if joined:
            logger.info(f"Connection {self.connection_id} joined room {room_id}")
        return joined

    def leave(self, room_id: str) -> bool:
        self._require_connection(room_id)
        left = self.hub.registry.leave(self.connection_id, room_id)
        if left:
            logger.info(f"Connection {self.connection_id} left room {room_id}")
        return left

    def close(self):
        if self.connection is not None:
            self.hub.registry.deregister(self.connection_id)
            logger.info(f"User {self.identity.user_id} disconnected ({self.connection_id})")
        self._state = ConnectionState.DISCONNECTED

    def _require_connection(self, room_id: str) -> Connection:
        if self.connection is None or not self.connection.is_live:
            raise RoomError("not_connected", room_id=room_id)
        return self.connection

    def _reply(self, reply: dict) -> dict:
        if self.connection is not None:
            self.connection.channel.send_nowait(reply)
        return reply
