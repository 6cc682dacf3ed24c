from typing import Optional, Protocol

from logging_config import get_logger
from realtime.auth import Identity
from realtime.rooms import PORTFOLIO_ROOM_PREFIX, RoomId

logger = get_logger(__name__)


class PortfolioAccessStore(Protocol):
    def get_portfolio_access(self, portfolio_id: str) -> Optional[dict]:
        """Return ``{"user_id": ..., "is_published": bool}`` or None when unknown."""
        ...


class RoomAccessPolicy(Protocol):
    def can_join(self, identity: Identity, room: RoomId) -> bool:
        ...


class OpenRoomPolicy:
    """Any authenticated identity may watch any portfolio room (public live preview)."""

    name = "open"

    def can_join(self, identity: Identity, room: RoomId) -> bool:
        return True


class OwnerOrPublishedRoomPolicy:
    """Portfolio rooms are open to the owner, and to everyone once the portfolio is published."""

    name = "owner_or_published"

    def __init__(self, store: PortfolioAccessStore):
        self.store = store

    def can_join(self, identity: Identity, room: RoomId) -> bool:
        if room.kind != PORTFOLIO_ROOM_PREFIX:
            return True
        access = self.store.get_portfolio_access(room.key)
        if not access:
            logger.info(f"Refusing {identity.user_id} access to unknown portfolio {room.key}")
            return False
        if str(access.get("user_id")) == str(identity.user_id):
            return True
        return bool(access.get("is_published"))


def build_room_policy(name: str, store: Optional[PortfolioAccessStore] = None) -> RoomAccessPolicy:
    if name == OpenRoomPolicy.name:
        return OpenRoomPolicy()
    if name == OwnerOrPublishedRoomPolicy.name:
        if store is None:
            raise ValueError("owner_or_published policy needs a portfolio access store")
        return OwnerOrPublishedRoomPolicy(store)
    raise ValueError(f"Unknown portfolio room policy: {name}")
