from dataclasses import dataclass

from logging_config import get_logger
from realtime.connections import ConnectionRegistry
from realtime.errors import DispatchError
from realtime.rooms import RoomManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    room_id: str
    event_type: str
    recipients: int
    delivered: int
    dropped: int


class EventDispatcher:
    """Fans one event out to the members of its room.

    Members are read as a snapshot; each one gets a non-blocking push into its outbound
    channel. A member that is gone, closed or saturated is skipped and the rest still get
    the event. Nothing here is retried and nothing is raised to the caller.
    """

    def __init__(self, rooms: RoomManager, registry: ConnectionRegistry):
        self.rooms = rooms
        self.registry = registry

    def dispatch(self, event) -> DispatchResult:
        room_id = event.room_id
        try:
            members = self.rooms.members_of(room_id)
            message = event.to_message()
        except Exception as e:
            logger.error(f"Error preparing {event.event_type} dispatch to room {room_id}: {e}", exc_info=True)
            return DispatchResult(room_id, event.event_type, 0, 0, 0)

        delivered = 0
        dropped = 0
        for connection_id in members:
            try:
                if self._push(connection_id, message):
                    delivered += 1
                else:
                    dropped += 1
            except DispatchError as e:
                dropped += 1
                logger.warning(f"Dropped {event.event_type} for connection {connection_id} in room {room_id}: {e}")
            except Exception as e:
                dropped += 1
                logger.error(f"Error pushing {event.event_type} to connection {connection_id} in room {room_id}: {e}", exc_info=True)

        if dropped:
            logger.warning(f"Dispatched {event.event_type} to room {room_id}: {delivered} delivered, {dropped} dropped")
        else:
            logger.debug(f"Dispatched {event.event_type} to room {room_id}: {delivered} delivered")
        return DispatchResult(room_id, event.event_type, len(members), delivered, dropped)

    def _push(self, connection_id: str, message) -> bool:
        connection = self.registry.get(connection_id)
        if connection is None or not connection.is_live:
            # deregistered after the snapshot was taken
            return False
        if connection.channel.closed:
            return False
        sent = connection.channel.send_nowait(dict(message))
        if not sent and not connection.channel.closed:
            raise DispatchError(f"outbound channel full ({connection.channel.pending()} pending)")
        return sent
