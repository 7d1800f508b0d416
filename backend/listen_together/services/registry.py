import logging
import threading
import time
from typing import Dict, Iterator, List, Optional, Tuple

from listen_together.models.room import Participant, UserIdentity
from listen_together.services.room import Clock, Room

logger = logging.getLogger(__name__)


class RoomRegistry:
    """
    Owns every live room. A room is created by the first join to its id and
    destroyed as soon as its last participant leaves.
    """

    def __init__(self, clock: Clock = time.time):
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __iter__(self) -> Iterator[Room]:
        with self._lock:
            return iter(list(self._rooms.values()))

    def get(self, room_id: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(room_id)

    def join(self, room_id: str, connection_id: str,
             identity: Optional[UserIdentity] = None) -> Tuple[Room, Participant]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id, clock=self._clock)
                self._rooms[room_id] = room
                logger.info(f"Created room {room_id}")
            participant = room.join(connection_id, identity)
            return room, participant

    def leave(self, room_id: str, connection_id: str) -> Tuple[bool, Optional[Room]]:
        """Remove a participant. Returns (removed, room) where room is None once destroyed."""
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False, None
            removed = room.leave(connection_id)
            if removed and self.discard_if_empty(room_id):
                return True, None
            return removed, room

    def discard_if_empty(self, room_id: str) -> bool:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            with room.lock:
                if not room.is_empty:
                    return False
                del self._rooms[room_id]
            logger.info(f"Destroyed empty room {room_id}")
            return True

    def rooms_for_periodic_sync(self) -> List[Tuple[str, float]]:
        """(room_id, playhead) for every room with several participants and an item advancing."""
        targets = []
        for room in self:
            with room.lock:
                if len(room.participants) > 1 and room.is_playing and room.current_item is not None:
                    targets.append((room.room_id, room.compute_current_playhead()))
        return targets

    def stats(self) -> dict:
        rooms = list(self)
        total_participants = 0
        active_rooms = 0
        for room in rooms:
            with room.lock:
                total_participants += len(room.participants)
                if room.current_item is not None and room.participants:
                    active_rooms += 1
        return {
            "total_rooms": len(rooms),
            "active_rooms": active_rooms,
            "total_participants": total_participants,
            "average_participants_per_room": total_participants / len(rooms) if rooms else 0,
        }
