import asyncio
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel
from starlette.websockets import WebSocketState

from backend import Member, RoomStore
from clock import now_ms
from constants import CHAT_MAX_LENGTH, DEFAULT_USERNAME, SEND_QUEUE_SIZE, SEND_TIMEOUT, USERNAME_MAX_LENGTH
from logging_config import get_logger
from schemas.messages import (
    ChatBroadcast,
    ChatMessage,
    HostChangedMessage,
    JoinMessage,
    PingMessage,
    PongMessage,
    RoomStateMessage,
    SetHostMessage,
    SyncPatchMessage,
    SyncRequestMessage,
    SyncStateMessage,
    UserCountMessage,
    parse_inbound,
)

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def sanitize_username(name: Any, fallback: str) -> str:
    if not isinstance(name, str):
        return fallback
    cleaned = _WHITESPACE.sub(" ", name.strip())
    if not cleaned:
        return fallback
    return cleaned[:USERNAME_MAX_LENGTH]


@dataclass
class Session:
    """One websocket connection: Unbound until `join`, Bound afterwards, then Closed."""
    connection: Any
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    room_id: Optional[str] = None
    member: Optional[Member] = None
    closed: bool = False
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=SEND_QUEUE_SIZE), repr=False)
    writer: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def bound(self) -> bool:
        return self.member is not None

    @property
    def client_id(self) -> Optional[str]:
        return self.member.client_id if self.member else None


class SessionRelay:
    """Routes client frames to the room store and fans results out to room members."""

    def __init__(self, store: RoomStore, send_timeout: float = SEND_TIMEOUT):
        self.store = store
        self.send_timeout = send_timeout
        # session_id -> open session, for routing queued frames to its writer
        self._sessions: Dict[str, Session] = {}
        self._handlers = {
            SetHostMessage: self._on_set_host,
            SyncPatchMessage: self._on_sync,
            SyncRequestMessage: self._on_sync_request,
            ChatMessage: self._on_chat,
            PingMessage: self._on_ping,
        }

    def open_session(self, connection) -> Session:
        """Register a connection and start its writer. Must be called from the running loop."""
        session = Session(connection=connection)
        session.writer = asyncio.create_task(self._write_loop(session))
        self._sessions[session.session_id] = session
        return session

    async def handle_message(self, session: Session, raw: str) -> None:
        if session.closed:
            return
        message = parse_inbound(raw)
        if message is None:
            return
        if isinstance(message, JoinMessage):
            await self._on_join(session, message)
            return
        if not session.bound:
            logger.debug(f"Ignoring {type(message).__name__} from unbound session {session.session_id}")
            return
        room = self.store.get(session.room_id)
        if room is None:
            return
        await self._handlers[type(message)](session, room, message)

    async def _on_join(self, session: Session, message: JoinMessage) -> None:
        if session.bound:
            logger.debug(f"Session {session.session_id} already bound to {session.room_id}, ignoring join")
            return
        room_id = message.roomId.strip()
        client_id = message.clientId.strip()
        if not room_id or not client_id:
            return
        username = sanitize_username(message.username, f"{DEFAULT_USERNAME}-{client_id[:4]}")
        member = Member(
            session_id=session.session_id,
            client_id=client_id,
            username=username,
            connection=session.connection,
        )
        room, snapshot, recipients = await self.store.add_member(room_id, member)
        session.room_id = room.room_id
        session.member = member
        logger.info(f"Client {client_id} ({username}) joined room {room_id}")

        self._send(member, RoomStateMessage(
            hostId=snapshot.host_id,
            userCount=snapshot.user_count,
            state=snapshot.state,
        ))
        self.broadcast(recipients, UserCountMessage(count=snapshot.user_count))

    async def _on_set_host(self, session: Session, room, message: SetHostMessage) -> None:
        host_id, recipients = await self.store.claim_host(room, session.client_id)
        self.broadcast(recipients, HostChangedMessage(hostId=host_id))

    async def _on_sync(self, session: Session, room, message: SyncPatchMessage) -> None:
        result = await self.store.apply_patch(room, session.client_id, message.patch)
        if result is None:
            return
        # The sender already holds this state locally
        self.broadcast(result.recipients, SyncStateMessage(hostId=result.host_id, state=result.state),
                       skip=session.session_id)

    async def _on_sync_request(self, session: Session, room, message: SyncRequestMessage) -> None:
        snapshot = await self.store.snapshot(room)
        self._send(session.member, SyncStateMessage(hostId=snapshot.host_id, state=snapshot.state))

    async def _on_chat(self, session: Session, room, message: ChatMessage) -> None:
        text = message.text.strip()
        if not text:
            return
        self.broadcast(room.recipients(), ChatBroadcast(
            clientId=session.client_id,
            username=session.member.username,
            text=text[:CHAT_MAX_LENGTH],
            ts=now_ms(),
        ))

    async def _on_ping(self, session: Session, room, message: PingMessage) -> None:
        self._send(session.member, PongMessage(ts=message.ts))

    async def disconnect(self, session: Session) -> None:
        if session.closed:
            return
        session.closed = True
        self._sessions.pop(session.session_id, None)
        if session.writer is not None:
            session.writer.cancel()
            await asyncio.gather(session.writer, return_exceptions=True)
        if not session.bound:
            return
        room = self.store.get(session.room_id)
        if room is None:
            return
        departure = await self.store.remove_member(room, session.session_id)
        logger.info(f"Client {session.client_id} left room {room.room_id} ({departure.user_count} remaining)")
        if departure.host_changed:
            self.broadcast(departure.recipients, HostChangedMessage(hostId=departure.host_id))
        if departure.empty:
            await self.store.discard(room)
        else:
            self.broadcast(departure.recipients, UserCountMessage(count=departure.user_count))

    def broadcast(self, recipients: Iterable[Member], message: BaseModel, skip: Optional[str] = None) -> None:
        """Queue a frame for every recipient; each connection's writer delivers it on its own."""
        payload = json.dumps(message.model_dump())
        targets = [m for m in recipients if m.session_id != skip]
        queued = sum(self._enqueue(m.session_id, payload) for m in targets)
        if targets:
            logger.debug(f"Broadcast {message.type} queued for {queued}/{len(targets)} connection(s)")

    def _send(self, member: Member, message: BaseModel) -> None:
        self._enqueue(member.session_id, json.dumps(message.model_dump()))

    def _enqueue(self, session_id: str, payload: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        try:
            session.outbox.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Send queue full for session {session_id}, dropping frame")
            return False

    async def _write_loop(self, session: Session) -> None:
        while True:
            payload = await session.outbox.get()
            await self._deliver(session, payload)

    async def _deliver(self, session: Session, payload: str) -> bool:
        connection = session.connection
        if getattr(connection, "client_state", WebSocketState.CONNECTED) != WebSocketState.CONNECTED:
            logger.debug(f"Skipping closed connection of session {session.session_id}")
            return False
        try:
            await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send to session {session.session_id} timed out after {self.send_timeout}s, skipping")
        except Exception as e:
            logger.warning(f"Error sending to session {session.session_id} ({session.client_id}): {e}")
        return False
