from pydantic import BaseModel
from typing import Optional

from schemas.messages import WireState


class RoomSummary(BaseModel):
    room_id: str
    host_id: Optional[str]
    user_count: int
    media_ref: str
    playing: bool

class OnlineUser(BaseModel):
    client_id: str
    display_name: str
    connected_at: str
    is_host: bool

class RoomDetailsResponse(BaseModel):
    room_id: str
    host_id: Optional[str]
    user_count: int
    online_users: list[OnlineUser]
    state: WireState
