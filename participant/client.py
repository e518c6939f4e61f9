import asyncio
import json
import uuid
from typing import Any, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError

from clock import now_ms
from constants import PING_INTERVAL, RESYNC_INTERVAL
from logging_config import get_logger
from participant.player import PlayerSurface
from participant.reconciler import Reconciler

logger = get_logger(__name__)

StatusCallback = Callable[[str], None]
ChatCallback = Callable[[Dict[str, Any]], None]


class SyncClient:
    """One participant's connection to a watchsync room.

    Outbound frames go through a queue drained by a sender task. The sender,
    the ping loop and the resync loop live exactly as long as the connection
    and are cancelled together when it ends. There is no automatic reconnect;
    call `run` again to rejoin.
    """

    def __init__(self, url: str, room_id: str, player: PlayerSurface,
                 client_id: Optional[str] = None, username: Optional[str] = None,
                 ping_interval: float = PING_INTERVAL, resync_interval: float = RESYNC_INTERVAL,
                 on_status: Optional[StatusCallback] = None, on_chat: Optional[ChatCallback] = None):
        self.url = url
        self.room_id = room_id
        self.client_id = client_id or str(uuid.uuid4())
        self.username = username
        self.ping_interval = ping_interval
        self.resync_interval = resync_interval
        self.on_status = on_status
        self.on_chat = on_chat
        self.reconciler = Reconciler(player, self.send_patch)
        self.host_id: Optional[str] = None
        self.user_count = 0
        self.joined = False
        self.status = "Disconnected"
        self._ws = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_host(self) -> bool:
        return self.host_id == self.client_id

    def set_status(self, text: str) -> None:
        self.status = text
        logger.info(text)
        if self.on_status:
            self.on_status(text)

    # outbound

    def send(self, payload: Dict[str, Any]) -> bool:
        if not self.joined:
            return False
        self._outbox.put_nowait(payload)
        return True

    def send_patch(self, patch: Dict[str, Any]) -> None:
        if self.is_host:
            self.send({"type": "sync", "patch": patch})

    def claim_host(self) -> bool:
        return self.send({"type": "set_host"})

    def send_chat(self, text: str) -> bool:
        text = text.strip()
        return bool(text) and self.send({"type": "chat", "text": text})

    def request_sync(self) -> bool:
        return self.send({"type": "sync_request"})

    # connection lifecycle

    async def run(self) -> None:
        """Connect, join and process frames until the socket closes or `close` is called."""
        try:
            async with websockets.connect(self.url) as ws:
                await self._attach(ws)
                try:
                    async for raw in ws:
                        self.handle_raw(raw)
                except websockets.ConnectionClosed as e:
                    logger.debug(f"Connection closed: {e}")
                finally:
                    await self._detach()
        except (OSError, websockets.WebSocketException) as e:
            self.set_status(f"WebSocket failed. Check URL: {self.url} ({e})")
            return
        self.set_status("Disconnected")

    async def _attach(self, ws) -> None:
        self._ws = ws
        self.joined = True
        join = {"type": "join", "roomId": self.room_id, "clientId": self.client_id}
        if self.username:
            join["username"] = self.username
        # join goes out before anything queued by the loops
        await ws.send(json.dumps(join))
        self.set_status(f'Connected to room "{self.room_id}" via {self.url}')
        self._tasks = [
            asyncio.create_task(self._sender_loop()),
            asyncio.create_task(self._ping_loop()),
            asyncio.create_task(self._resync_loop()),
        ]

    async def _detach(self) -> None:
        self.joined = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ws = None
        while not self._outbox.empty():
            self._outbox.get_nowait()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()

    async def _sender_loop(self) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                await self._ws.send(json.dumps(payload))
            except websockets.ConnectionClosed:
                logger.debug(f"Dropping {payload.get('type')} frame, connection closed")
                return

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            self.send({"type": "ping", "ts": now_ms()})

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.resync_interval)
            if not self.is_host:
                self.request_sync()

    # inbound

    def handle_raw(self, raw) -> None:
        try:
            message = json.loads(raw)
        except (ValueError, TypeError):
            logger.debug("Ignoring unparsable frame from server")
            return
        if isinstance(message, dict):
            self.handle_message(message)

    def handle_message(self, message: Dict[str, Any]) -> None:
        msg_type = message.get("type")
        try:
            if msg_type == "room_state":
                self._set_host(message.get("hostId"))
                self.user_count = message.get("userCount", self.user_count)
                self.set_status(f"Connected. Host: {'You' if self.is_host else 'Another user'}")
                self.reconciler.apply_remote_state(message["state"])
            elif msg_type == "host_changed":
                self._set_host(message.get("hostId"))
                self.set_status(f"Host changed: {'You are host' if self.is_host else 'Another user'}")
            elif msg_type == "user_count":
                self.user_count = message.get("count", self.user_count)
            elif msg_type == "sync":
                if "hostId" in message:
                    self._set_host(message["hostId"])
                # the host is the source of truth and never corrects itself
                if not self.is_host:
                    self.reconciler.apply_remote_state(message["state"])
            elif msg_type == "chat":
                if self.on_chat:
                    self.on_chat(message)
            elif msg_type == "pong":
                ts = message.get("ts")
                if isinstance(ts, (int, float)) and not isinstance(ts, bool):
                    self.reconciler.record_round_trip(ts)
        except (KeyError, ValidationError, OverflowError) as e:
            logger.debug(f"Ignoring malformed {msg_type} frame: {e}")

    def _set_host(self, host_id: Optional[str]) -> None:
        self.host_id = host_id
        self.reconciler.is_host = self.is_host
