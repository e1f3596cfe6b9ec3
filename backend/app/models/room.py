from enum import Enum
from pydantic import BaseModel
from typing import List, Optional


class Role(str, Enum):
    CONTROLLER = "controller"
    REGULAR = "regular"


class QueueEntry(BaseModel):
    media_id: str
    display_title: str = "Unknown title"
    thumbnail_ref: Optional[str] = None
    added_by_display_name: str = "Someone"


class PlaybackState(BaseModel):
    media_id: str
    position_seconds: float = 0.0
    is_playing: bool = False
    last_update_timestamp: float = 0.0 # Server time of the last authoritative write
    controller_has_started_playback: bool = False


class Participant(BaseModel):
    connection_id: str
    identity: Optional[str] = None # Username from the verified credential
    display_name: str
    role: Role = Role.REGULAR
    joined_at: float = 0.0
    last_activity: float = 0.0

    @property
    def is_controller(self) -> bool:
        return self.role == Role.CONTROLLER


class Occupancy(BaseModel):
    total: int = 0
    controllers: int = 0
    regulars: int = 0
    controller_has_ever_joined: bool = False


class Snapshot(BaseModel):
    """Full room state as sent in init_state / sync_state."""
    media_id: str
    position_seconds: float
    is_playing: bool
    last_update_timestamp: float
    controller_has_started_playback: bool
    controller_id: Optional[str] = None
    is_controller: bool = False
    queue: List[QueueEntry] = []
    force: bool = False
    server_timestamp: float
