from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class MediaItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    external_id: str = Field(min_length=1)
    title: str
    thumbnail_ref: Optional[str] = None
    source_channel: Optional[str] = None


class QueueEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_id: int # Unique per room, never reused
    item: MediaItem
    added_by: Optional[str] = None # Connection id of the participant who added it
    added_at: float


class Capability(str, Enum):
    EDIT_QUEUE = "edit_queue"
    SKIP = "skip"
    MANAGE_PARTICIPANTS = "manage_participants"


class Role(str, Enum):
    GUEST = "guest"
    MEMBER = "member" # Guest that was granted queue permission
    OWNER = "owner"


_CAPABILITIES = {
    Role.GUEST: frozenset(),
    Role.MEMBER: frozenset({Capability.EDIT_QUEUE, Capability.SKIP}),
    Role.OWNER: frozenset(Capability),
}


def capabilities(role: Role) -> FrozenSet[Capability]:
    return _CAPABILITIES[role]


class UserIdentity(BaseModel):
    identity_id: str
    username: Optional[str] = None
    avatar: Optional[str] = None


class Participant(BaseModel):
    connection_id: str
    display_name: str
    identity_id: Optional[str] = None # None means guest / unauthenticated
    avatar: Optional[str] = None
    role: Role = Role.GUEST
    joined_at: float
    join_seq: int = Field(default=0, exclude=True) # Tie-break for equal joined_at

    @computed_field
    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER

    @computed_field
    @property
    def has_queue_permission(self) -> bool:
        return Capability.EDIT_QUEUE in capabilities(self.role)

    def can(self, capability: Capability) -> bool:
        return capability in capabilities(self.role)


class RoomState(BaseModel):
    """Full snapshot sent to a (re)joining connection."""
    room_id: str
    current_item: Optional[QueueEntry] = None
    playhead_seconds: float = 0.0
    is_playing: bool = False
    queue: List[QueueEntry] = []
    participants: List[Participant] = []
    participant_count: int = 0
    owner: Optional[str] = None
    last_updated: float
    server_time: float


class RoomSummary(BaseModel):
    room_id: str
    participant_count: int
    queue_length: int
    is_playing: bool
    current_item: Optional[QueueEntry] = None
    created_at: float


class ErrorKind(str, Enum):
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    IDENTITY = "identity"


@dataclass(frozen=True)
class Result:
    """Outcome of a room operation. Truthy exactly when the operation succeeded."""
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def denied(cls, reason: str) -> "Result":
        return cls(ok=False, error=ErrorKind.AUTHORIZATION, reason=reason)

    @classmethod
    def not_found(cls, reason: str) -> "Result":
        return cls(ok=False, error=ErrorKind.NOT_FOUND, reason=reason)

    @classmethod
    def invalid(cls, reason: str) -> "Result":
        return cls(ok=False, error=ErrorKind.VALIDATION, reason=reason)


@dataclass(frozen=True)
class Enqueued:
    entry: QueueEntry
    # Set when the enqueue started playback on an idle room
    now_playing: Optional[QueueEntry] = None
