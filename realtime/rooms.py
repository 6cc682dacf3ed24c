import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Set

from logging_config import get_logger
from realtime.errors import RoomError

logger = get_logger(__name__)

USER_ROOM_PREFIX = "user"
PORTFOLIO_ROOM_PREFIX = "portfolio"
ROOM_KINDS = (USER_ROOM_PREFIX, PORTFOLIO_ROOM_PREFIX)
MAX_ROOM_KEY_LENGTH = 128


@dataclass(frozen=True)
class RoomId:
    kind: str
    key: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.key}"

    @property
    def is_personal(self) -> bool:
        return self.kind == USER_ROOM_PREFIX


def room_for_user(user_id) -> str:
    return f"{USER_ROOM_PREFIX}:{user_id}"


def room_for_portfolio(portfolio_id) -> str:
    return f"{PORTFOLIO_ROOM_PREFIX}:{portfolio_id}"


def parse_room_id(room_id) -> RoomId:
    """Validate a canonical room id (``user:<id>`` or ``portfolio:<id>``)."""
    if not isinstance(room_id, str) or ":" not in room_id:
        raise RoomError("malformed_room_id", room_id=room_id if isinstance(room_id, str) else None)
    kind, _, key = room_id.partition(":")
    key = key.strip()
    if kind not in ROOM_KINDS or not key or ":" in key or len(key) > MAX_ROOM_KEY_LENGTH:
        raise RoomError("malformed_room_id", room_id=room_id)
    return RoomId(kind=kind, key=key)


class RoomManager:
    """In-memory room membership.

    Rooms exist only while they have members. Every read and write happens under one
    lock, so ``members_of`` never observes a half-applied join or leave.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._members: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = defaultdict(set)

    def join(self, connection_id: str, room_id: str) -> bool:
        room = str(parse_room_id(room_id))
        with self._lock:
            members = self._members.setdefault(room, set())
            if connection_id in members:
                return False
            members.add(connection_id)
            self._memberships[connection_id].add(room)
            count = len(members)
        logger.debug(f"Connection {connection_id} joined room {room} ({count} members)")
        return True

    def leave(self, connection_id: str, room_id: str) -> bool:
        room = str(parse_room_id(room_id))
        with self._lock:
            removed = self._discard(connection_id, room)
        if removed:
            logger.debug(f"Connection {connection_id} left room {room}")
        return removed

    def remove_everywhere(self, connection_id: str) -> Set[str]:
        """Drop a connection from every room it belongs to. Returns the rooms it left."""
        with self._lock:
            rooms = set(self._memberships.get(connection_id, ()))
            for room in rooms:
                self._discard(connection_id, room)
            self._memberships.pop(connection_id, None)
        return rooms

    def members_of(self, room_id: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._members.get(room_id, ()))

    def member_count(self, room_id: str) -> int:
        with self._lock:
            return len(self._members.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._memberships.get(connection_id, ()))

    def room_ids(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._members)

    def _discard(self, connection_id: str, room: str) -> bool:
        # caller holds the lock
        members = self._members.get(room)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._members[room]
        joined = self._memberships.get(connection_id)
        if joined is not None:
            joined.discard(room)
            if not joined:
                del self._memberships[connection_id]
        return True
