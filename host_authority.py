from typing import TYPE_CHECKING, Optional

from logging_config import get_logger

if TYPE_CHECKING:
    from backend import Room

logger = get_logger(__name__)


class HostAuthority:
    """Applies host policy to room records. Callers hold the room lock.

    First joiner of a hostless room becomes host, the last claim received wins,
    and a departing host hands over to the longest-connected member. Client ids
    are not authenticated.
    """

    def assign_if_vacant(self, room: "Room", client_id: str) -> bool:
        if room.state.host_id is not None:
            return False
        room.state.host_id = client_id
        logger.info(f"Client {client_id} is the first host of room {room.room_id}")
        return True

    def claim(self, room: "Room", client_id: str) -> str:
        previous = room.state.host_id
        room.state.host_id = client_id
        if previous != client_id:
            logger.info(f"Client {client_id} claimed host of room {room.room_id} (was {previous})")
        return client_id

    def succeed(self, room: "Room", departed_client_id: str) -> bool:
        """Re-elect after a member left. Returns True when the host id changed."""
        if room.state.host_id != departed_client_id:
            return False
        # Another connection of the same client keeps the role
        if room.has_client(departed_client_id):
            return False
        successor: Optional[str] = None
        for member in room.members.values():
            successor = member.client_id
            break
        room.state.host_id = successor
        logger.info(f"Host {departed_client_id} left room {room.room_id}, new host: {successor}")
        return True

    def is_host(self, room: "Room", client_id: Optional[str]) -> bool:
        return client_id is not None and room.state.host_id == client_id
