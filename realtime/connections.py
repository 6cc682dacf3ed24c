import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from logging_config import get_logger
from realtime.auth import Identity
from realtime.errors import RoomError
from realtime.rooms import RoomManager, parse_room_id, room_for_user

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


class OutboundChannel:
    """Bounded per-connection mailbox.

    ``send_nowait`` never blocks and its answer is final: a slot is reserved under a lock in
    the calling thread, so a full or closed channel drops the message right there. When
    called from a thread other than the owning event loop, the put itself is scheduled on
    that loop.
    """

    def __init__(self, maxsize: int = 100, loop: Optional[asyncio.AbstractEventLoop] = None):
        # unbounded underneath; the bound is enforced by the reservation count
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop = loop
        self._lock = threading.Lock()
        self._reserved = 0
        self.maxsize = maxsize
        self.closed = False
        self.dropped = 0

    def send_nowait(self, message: Dict[str, Any]) -> bool:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        same_loop = self._loop is None or running is self._loop
        with self._lock:
            if self.closed:
                return False
            if not same_loop and self._loop.is_closed():
                return False
            if self._reserved >= self.maxsize:
                self.dropped += 1
                return False
            self._reserved += 1
        if same_loop:
            self._queue.put_nowait(message)
        else:
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
            except RuntimeError:
                # owning loop closed after the check
                self._release()
                return False
        return True

    def _release(self):
        with self._lock:
            self._reserved -= 1

    async def receive(self) -> Dict[str, Any]:
        message = await self._queue.get()
        self._release()
        return message

    def get_nowait(self) -> Dict[str, Any]:
        message = self._queue.get_nowait()
        self._release()
        return message

    def pending(self) -> int:
        with self._lock:
            return self._reserved

    def close(self):
        with self._lock:
            self.closed = True


@dataclass
class Connection:
    connection_id: str
    identity: Identity
    channel: OutboundChannel
    state: ConnectionState = ConnectionState.AUTHENTICATED
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def personal_room(self) -> str:
        return room_for_user(self.identity.user_id)

    @property
    def is_live(self) -> bool:
        return self.state != ConnectionState.DISCONNECTED


class ConnectionRegistry:
    """Owns every live Connection and guards membership writes made on their behalf.

    Lock order is registry first, then the room manager's own lock. ``deregister`` removes
    the record and purges its rooms before releasing the registry lock, so a join can never
    resurrect a departed connection.
    """

    def __init__(self, rooms: RoomManager, outbound_queue_size: int = 100):
        self.rooms = rooms
        self.outbound_queue_size = outbound_queue_size
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str, identity: Identity, loop: Optional[asyncio.AbstractEventLoop] = None) -> Connection:
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        channel = OutboundChannel(maxsize=self.outbound_queue_size, loop=loop)
        connection = Connection(connection_id=connection_id, identity=identity, channel=channel)
        with self._lock:
            if connection_id in self._connections:
                raise ValueError(f"Connection {connection_id} is already registered")
            self._connections[connection_id] = connection
            self.rooms.join(connection_id, connection.personal_room)
        logger.info(f"Registered connection {connection_id} for user {identity.user_id} (live connections: {len(self)})")
        return connection

    def deregister(self, connection_id: str) -> bool:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False
            connection.channel.close()
            connection.state = ConnectionState.DISCONNECTED
            rooms = self.rooms.remove_everywhere(connection_id)
        logger.info(f"Deregistered connection {connection_id} for user {connection.identity.user_id}, left {len(rooms)} rooms")
        return True

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def rooms_of(self, connection_id: str) -> FrozenSet[str]:
        return self.rooms.rooms_of(connection_id)

    def join(self, connection_id: str, room_id: str) -> bool:
        room = parse_room_id(room_id)
        with self._lock:
            connection = self._require(connection_id, room_id)
            if room.is_personal and str(room) != connection.personal_room:
                raise RoomError("forbidden", room_id=room_id, message="Cannot join another user's room")
            joined = self.rooms.join(connection_id, str(room))
            self._refresh_state(connection)
        return joined

    def leave(self, connection_id: str, room_id: str) -> bool:
        room = parse_room_id(room_id)
        with self._lock:
            connection = self._require(connection_id, room_id)
            if str(room) == connection.personal_room:
                raise RoomError("cannot_leave_personal_room", room_id=room_id)
            left = self.rooms.leave(connection_id, str(room))
            self._refresh_state(connection)
        return left

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id) -> bool:
        with self._lock:
            return connection_id in self._connections

    def _require(self, connection_id: str, room_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise RoomError("not_connected", room_id=room_id)
        return connection

    def _refresh_state(self, connection: Connection):
        subscribed = any(room != connection.personal_room for room in self.rooms.rooms_of(connection.connection_id))
        connection.state = ConnectionState.SUBSCRIBED if subscribed else ConnectionState.AUTHENTICATED
