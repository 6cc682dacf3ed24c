from typing import Optional

from realtime.auth import IdentityStore, SessionAuthenticator
from realtime.bridge import MutationBridge
from realtime.connections import ConnectionRegistry
from realtime.dispatcher import EventDispatcher
from realtime.policy import OpenRoomPolicy, RoomAccessPolicy
from realtime.rooms import RoomManager
from realtime.session import ClientSession


class RealtimeHub:
    """Wires the realtime components together for one process.

    Build one per application and pass it around; tests build their own with fakes.
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        outbound_queue_size: int = 100,
        room_policy: Optional[RoomAccessPolicy] = None,
    ):
        self.rooms = RoomManager()
        self.registry = ConnectionRegistry(self.rooms, outbound_queue_size=outbound_queue_size)
        self.authenticator = SessionAuthenticator(identity_store, jwt_secret, jwt_algorithm)
        self.dispatcher = EventDispatcher(self.rooms, self.registry)
        self.bridge = MutationBridge(self.dispatcher)
        self.room_policy = room_policy or OpenRoomPolicy()

    def open_session(self, connection_id: Optional[str] = None) -> ClientSession:
        return ClientSession(self, connection_id=connection_id)

    def notify(self, event_type: str, room_id: str, payload: dict):
        return self.bridge.notify(event_type, room_id, payload)
