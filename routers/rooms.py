from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import OnlineUser, RoomDetailsResponse, RoomSummary
from backend import RoomStore
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def _store(request: Request) -> RoomStore:
    return request.app.state.store


@rooms_router.get("/", response_model=list[RoomSummary])
async def list_rooms(request: Request):
    """Active rooms on this process. A room exists only while somebody is connected to it."""
    rooms = _store(request).rooms()
    logger.debug(f"Listing {len(rooms)} active rooms")
    return [
        RoomSummary(
            room_id=room.room_id,
            host_id=room.state.host_id,
            user_count=len(room.members),
            media_ref=room.state.media_ref,
            playing=room.state.playing,
        )
        for room in rooms
    ]


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get room details with the playback position projected to now.

    Returns:
    - room_id: Room key as supplied by the first joiner
    - host_id: Client id of the current host, if any
    - user_count: Number of connected sessions
    - online_users: Connected sessions in join order
    - state: Playback state (position projected, updatedAt = now)
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    store = _store(request)
    room = store.get(room_id)
    if not room:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    snapshot = await store.snapshot(room)
    online_users = [
        OnlineUser(
            client_id=member.client_id,
            display_name=member.username,
            connected_at=member.connected_at,
            is_host=member.client_id == snapshot.host_id,
        )
        for member in room.recipients()
    ]

    return RoomDetailsResponse(
        room_id=room.room_id,
        host_id=snapshot.host_id,
        user_count=snapshot.user_count,
        online_users=online_users,
        state=snapshot.state,
    )
