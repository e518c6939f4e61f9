import json
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError

from logging_config import get_logger

logger = get_logger(__name__)


# Shared playback state as it travels on the wire
class WireState(BaseModel):
    mediaRef: StrictStr = ""
    playing: StrictBool = False
    position: Union[StrictInt, StrictFloat] = 0.0
    rate: Union[StrictInt, StrictFloat] = 1.0
    updatedAt: Union[StrictInt, StrictFloat] = 0


# client -> server

class JoinMessage(BaseModel):
    type: Literal["join"]
    roomId: StrictStr
    clientId: StrictStr
    username: Optional[Any] = None

class SetHostMessage(BaseModel):
    type: Literal["set_host"]

class SyncPatchMessage(BaseModel):
    type: Literal["sync"]
    patch: Dict[str, Any]

class SyncRequestMessage(BaseModel):
    type: Literal["sync_request"]

class ChatMessage(BaseModel):
    type: Literal["chat"]
    text: StrictStr

class PingMessage(BaseModel):
    type: Literal["ping"]
    ts: Union[StrictInt, StrictFloat]


INBOUND_MODELS: Dict[str, Type[BaseModel]] = {
    "join": JoinMessage,
    "set_host": SetHostMessage,
    "sync": SyncPatchMessage,
    "sync_request": SyncRequestMessage,
    "chat": ChatMessage,
    "ping": PingMessage,
}


def parse_inbound(raw: str) -> Optional[BaseModel]:
    """Decode one client frame. Returns None for anything malformed or unknown."""
    try:
        data = json.loads(raw)
    except (ValueError, TypeError):
        logger.debug("Dropping unparsable frame")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        logger.debug("Dropping frame without a type discriminator")
        return None
    model = INBOUND_MODELS.get(data["type"])
    if model is None:
        logger.debug(f"Dropping frame with unknown type: {data['type']}")
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping malformed {data['type']} frame: {e.error_count()} error(s)")
        return None


# server -> client

class RoomStateMessage(BaseModel):
    type: Literal["room_state"] = "room_state"
    hostId: Optional[str]
    userCount: int
    state: WireState

class HostChangedMessage(BaseModel):
    type: Literal["host_changed"] = "host_changed"
    hostId: Optional[str]

class UserCountMessage(BaseModel):
    type: Literal["user_count"] = "user_count"
    count: int

class SyncStateMessage(BaseModel):
    type: Literal["sync"] = "sync"
    hostId: Optional[str]
    state: WireState

class ChatBroadcast(BaseModel):
    type: Literal["chat"] = "chat"
    clientId: str
    username: str
    text: str
    ts: int

class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"
    ts: Union[int, float]
