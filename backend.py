import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from clock import clamp_position, now_ms, project_position
from host_authority import HostAuthority
from logging_config import get_logger
from schemas.messages import WireState

logger = get_logger(__name__)


def _finite_float(value: Any) -> Optional[float]:
    # bool is an int subclass but never a valid position or rate
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


@dataclass
class PlaybackState:
    media_ref: str = ""
    playing: bool = False
    position: float = 0.0
    rate: float = 1.0
    updated_at: int = field(default_factory=now_ms)
    host_id: Optional[str] = None

    def to_wire(self) -> WireState:
        return WireState(
            mediaRef=self.media_ref,
            playing=self.playing,
            position=self.position,
            rate=self.rate,
            updatedAt=self.updated_at,
        )


@dataclass
class Member:
    session_id: str
    client_id: str
    username: str
    connection: Any
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class Room:
    room_id: str
    state: PlaybackState = field(default_factory=PlaybackState)
    # session_id -> member, insertion ordered by join time
    members: Dict[str, Member] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def has_client(self, client_id: str) -> bool:
        return any(m.client_id == client_id for m in self.members.values())

    def recipients(self) -> List[Member]:
        return list(self.members.values())


@dataclass
class RoomSnapshot:
    host_id: Optional[str]
    user_count: int
    state: WireState


@dataclass
class PatchResult:
    host_id: Optional[str]
    state: WireState
    recipients: List[Member]


@dataclass
class Departure:
    empty: bool
    host_changed: bool
    host_id: Optional[str]
    user_count: int
    recipients: List[Member]


class RoomStore:
    """In-memory authority for every room served by this process.

    Room creation and destruction go through the registry lock; state and
    membership changes of one room go through that room's lock. Lock order is
    always registry first, then room.
    """

    def __init__(self, authority: Optional[HostAuthority] = None, clock: Callable[[], int] = now_ms):
        self.authority = authority or HostAuthority()
        self.clock = clock
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        logger.info("Initializing in-memory RoomStore")

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def _get_or_create(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id=room_id, state=PlaybackState(updated_at=self.clock()))
            self._rooms[room_id] = room
            logger.info(f"Created room {room_id} (active rooms: {len(self._rooms)})")
        return room

    async def get_or_create(self, room_id: str) -> Room:
        async with self._lock:
            return self._get_or_create(room_id)

    async def add_member(self, room_id: str, member: Member) -> tuple[Room, RoomSnapshot, List[Member]]:
        """Register a member, creating the room on first use.

        Returns the room, the join snapshot for the new member and the
        recipients of the membership broadcast (new member included).
        """
        async with self._lock:
            room = self._get_or_create(room_id)
            async with room.lock:
                room.members[member.session_id] = member
                self.authority.assign_if_vacant(room, member.client_id)
                logger.debug(f"Added {member.client_id} ({member.username}) to room {room_id} "
                             f"(members: {len(room.members)})")
                return room, self._snapshot(room, 0.0), room.recipients()

    def _next_stamp(self, room: Room) -> int:
        stamp = self.clock()
        if stamp <= room.state.updated_at:
            stamp = room.state.updated_at + 1
        return stamp

    async def apply_patch(self, room: Room, requester_id: str, patch: Mapping[str, Any]) -> Optional[PatchResult]:
        """Apply a host patch field by field.

        Returns the literal (not projected) new state with its broadcast
        recipients, or None when the requester is not host or no field of the
        patch was acceptable.
        """
        async with room.lock:
            if not self.authority.is_host(room, requester_id):
                logger.debug(f"Ignoring patch from non-host {requester_id} in room {room.room_id}")
                return None
            state = room.state
            accepted = []

            media_ref = patch.get("mediaRef")
            if isinstance(media_ref, str):
                state.media_ref = media_ref.strip()
                accepted.append("mediaRef")

            playing = patch.get("playing")
            if isinstance(playing, bool):
                state.playing = playing
                accepted.append("playing")

            position = _finite_float(patch.get("position"))
            if position is not None:
                state.position = clamp_position(position)
                accepted.append("position")

            rate = _finite_float(patch.get("rate"))
            if rate is not None and rate > 0:
                state.rate = rate
                accepted.append("rate")

            if not accepted:
                logger.debug(f"Patch for room {room.room_id} had no usable fields: {sorted(patch)}")
                return None
            state.updated_at = self._next_stamp(room)
            logger.debug(f"Room {room.room_id} patched by {requester_id}: {accepted}")
            return PatchResult(host_id=state.host_id, state=state.to_wire(), recipients=room.recipients())

    def _snapshot(self, room: Room, latency_bias: float) -> RoomSnapshot:
        now = self.clock()
        state = room.state
        position = project_position(state.position, state.playing, state.rate,
                                    state.updated_at, now, latency_bias)
        return RoomSnapshot(
            host_id=state.host_id,
            user_count=len(room.members),
            state=WireState(
                mediaRef=state.media_ref,
                playing=state.playing,
                position=clamp_position(position),
                rate=state.rate,
                updatedAt=now,
            ),
        )

    async def snapshot(self, room: Room, latency_bias: float = 0.0) -> RoomSnapshot:
        """State with the position projected to now, for join and resync replies."""
        async with room.lock:
            return self._snapshot(room, latency_bias)

    async def claim_host(self, room: Room, client_id: str) -> tuple[str, List[Member]]:
        async with room.lock:
            host_id = self.authority.claim(room, client_id)
            return host_id, room.recipients()

    async def remove_member(self, room: Room, session_id: str) -> Departure:
        async with room.lock:
            member = room.members.pop(session_id, None)
            host_changed = False
            if member is not None:
                host_changed = self.authority.succeed(room, member.client_id)
                logger.debug(f"Removed {member.client_id} from room {room.room_id} "
                             f"(members: {len(room.members)})")
            return Departure(
                empty=not room.members,
                host_changed=host_changed,
                host_id=room.state.host_id,
                user_count=len(room.members),
                recipients=room.recipients(),
            )

    async def discard(self, room: Room) -> bool:
        """Destroy the room if nobody rejoined it in the meantime."""
        async with self._lock:
            async with room.lock:
                if room.members or self._rooms.get(room.room_id) is not room:
                    return False
                del self._rooms[room.room_id]
                logger.info(f"Destroyed empty room {room.room_id} (active rooms: {len(self._rooms)})")
                return True
