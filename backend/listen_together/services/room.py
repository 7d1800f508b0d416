import logging
import math
import threading
import time
from collections import Counter
from typing import Callable, Dict, List, Optional, Sequence

from listen_together.models.room import (
    Capability,
    Enqueued,
    MediaItem,
    Participant,
    QueueEntry,
    Result,
    Role,
    RoomState,
    RoomSummary,
    UserIdentity,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def guest_name(connection_id: str) -> str:
    return f"Guest-{connection_id[-6:]}"


class Room:
    """
    Single authority for the state of one room.

    Every public operation runs under the room's reentrant lock, so callers on
    different threads or tasks never observe a half-applied change. Callers that
    need to combine a check with an operation (skip = permission check + advance)
    can hold ``room.lock`` themselves.
    """

    def __init__(self, room_id: str, clock: Clock = time.time):
        self.room_id = room_id
        self.lock = threading.RLock()
        self._clock = clock

        self.participants: Dict[str, Participant] = {}
        self.queue: List[QueueEntry] = []
        self.current_item: Optional[QueueEntry] = None
        self.playhead_seconds: float = 0.0
        self.is_playing: bool = False
        self.last_updated: float = clock()
        self.created_at: float = self.last_updated

        self._next_entry_id = 1
        self._next_join_seq = 1

    # Participants

    @property
    def owner(self) -> Optional[Participant]:
        with self.lock:
            return next((p for p in self.participants.values() if p.role is Role.OWNER), None)

    @property
    def is_empty(self) -> bool:
        return not self.participants

    def get_participant(self, connection_id: str) -> Optional[Participant]:
        return self.participants.get(connection_id)

    def list_participants(self) -> List[Participant]:
        with self.lock:
            ordered = sorted(self.participants.values(), key=lambda p: (p.joined_at, p.join_seq))
            return [p.model_copy() for p in ordered]

    def can(self, connection_id: str, capability: Capability) -> bool:
        with self.lock:
            participant = self.participants.get(connection_id)
            return participant is not None and participant.can(capability)

    def join(self, connection_id: str, identity: Optional[UserIdentity] = None) -> Participant:
        with self.lock:
            existing = self.participants.get(connection_id)
            if existing:
                return existing

            display_name = guest_name(connection_id)
            if identity and identity.username:
                display_name = identity.username

            participant = Participant(
                connection_id=connection_id,
                display_name=display_name,
                identity_id=identity.identity_id if identity else None,
                avatar=identity.avatar if identity else None,
                role=Role.OWNER if not self.participants else Role.GUEST,
                joined_at=self._clock(),
                join_seq=self._next_join_seq,
            )
            self._next_join_seq += 1
            self.participants[connection_id] = participant
            logger.debug(
                f"Participant {connection_id} ({display_name}) joined room {self.room_id} "
                f"as {participant.role.value} ({len(self.participants)} total)"
            )
            return participant

    def leave(self, connection_id: str) -> bool:
        with self.lock:
            removed = self.participants.pop(connection_id, None)
            if removed is None:
                return False

            if removed.role is Role.OWNER and self.participants:
                # Earliest joined remaining participant inherits ownership
                successor = min(self.participants.values(), key=lambda p: (p.joined_at, p.join_seq))
                successor.role = Role.OWNER
                logger.info(f"Ownership of room {self.room_id} transferred to {successor.connection_id}")
            return True

    def _owner_action(self, requester_id: str, target_id: str, action: str) -> Result:
        requester = self.participants.get(requester_id)
        if requester is None or not requester.can(Capability.MANAGE_PARTICIPANTS):
            return Result.denied(f"Only the room owner can {action}")
        if target_id not in self.participants:
            return Result.not_found(f"Participant {target_id} is not in the room")
        return Result.success(self.participants[target_id])

    def grant_queue_permission(self, requester_id: str, target_id: str) -> Result:
        with self.lock:
            check = self._owner_action(requester_id, target_id, "grant permissions")
            if not check:
                return check
            target = check.value
            if target.role is Role.GUEST:
                target.role = Role.MEMBER
            return Result.success(target.model_copy())

    def revoke_queue_permission(self, requester_id: str, target_id: str) -> Result:
        with self.lock:
            check = self._owner_action(requester_id, target_id, "revoke permissions")
            if not check:
                return check
            target = check.value
            if target.role is Role.OWNER:
                return Result.invalid("The owner's queue permission cannot be revoked")
            target.role = Role.GUEST
            return Result.success(target.model_copy())

    def kick(self, requester_id: str, target_id: str) -> Result:
        with self.lock:
            if requester_id == target_id:
                if requester_id in self.participants and self.participants[requester_id].is_owner:
                    return Result.invalid("Cannot kick yourself")
                return Result.denied("Only the room owner can kick participants")
            check = self._owner_action(requester_id, target_id, "kick participants")
            if not check:
                return check
            self.leave(target_id)
            return Result.success(check.value.model_copy())

    # Queue

    def enqueue(self, requester_id: str, item: MediaItem) -> Result:
        """
        Append ``item`` to the queue.

        When nothing is current the new entry is advanced into ``current_item``
        within the same locked step, so enqueueing into an idle room starts
        playback. The returned ``Enqueued.now_playing`` tells the caller that
        happened.
        """
        with self.lock:
            if not self.can(requester_id, Capability.EDIT_QUEUE):
                return Result.denied("You do not have permission to edit the queue")

            entry = QueueEntry(
                entry_id=self._next_entry_id,
                item=item,
                added_by=requester_id,
                added_at=self._clock(),
            )
            self._next_entry_id += 1
            self.queue.append(entry)
            logger.debug(f"Entry {entry.entry_id} ({item.title}) queued in room {self.room_id}")

            now_playing = None
            if self.current_item is None:
                now_playing = self.advance()
            return Result.success(Enqueued(entry=entry, now_playing=now_playing))

    def dequeue(self, requester_id: str, entry_id: int) -> Result:
        with self.lock:
            if not self.can(requester_id, Capability.EDIT_QUEUE):
                return Result.denied("You do not have permission to edit the queue")
            for i, entry in enumerate(self.queue):
                if entry.entry_id == entry_id:
                    del self.queue[i]
                    return Result.success(entry)
            return Result.not_found(f"Entry {entry_id} is not queued")

    def reorder(self, requester_id: str, new_order: Sequence[int]) -> Result:
        with self.lock:
            if not self.can(requester_id, Capability.EDIT_QUEUE):
                return Result.denied("You do not have permission to edit the queue")

            # Must be a permutation of the live ids; anything else means the
            # client edited a stale copy of the queue
            if Counter(new_order) != Counter(e.entry_id for e in self.queue):
                return Result.invalid("Queue changed since it was last seen; reorder rejected")

            by_id = {e.entry_id: e for e in self.queue}
            self.queue = [by_id[entry_id] for entry_id in new_order]
            return Result.success(list(self.queue))

    # Playback

    def advance(self) -> Optional[QueueEntry]:
        with self.lock:
            self.playhead_seconds = 0.0
            self.last_updated = self._clock()
            if self.queue:
                self.current_item = self.queue.pop(0)
                self.is_playing = True
            else:
                self.current_item = None
                self.is_playing = False
            return self.current_item

    def compute_current_playhead(self) -> float:
        with self.lock:
            if not self.is_playing or self.current_item is None:
                return self.playhead_seconds
            return max(0.0, self.playhead_seconds + (self._clock() - self.last_updated))

    def set_playing(self, is_playing: bool) -> Result:
        with self.lock:
            if is_playing and self.current_item is None:
                return Result.invalid("Nothing to play")
            # Fold elapsed time into the stored playhead before switching
            self.playhead_seconds = self.compute_current_playhead()
            self.last_updated = self._clock()
            self.is_playing = is_playing
            return Result.success(self.playhead_seconds)

    def seek(self, target_seconds: float) -> Result:
        with self.lock:
            if self.current_item is None:
                return Result.invalid("Nothing is playing")
            if not _valid_position(target_seconds):
                return Result.invalid(f"Invalid seek position: {target_seconds}")
            self.playhead_seconds = float(target_seconds)
            self.last_updated = self._clock()
            return Result.success(self.playhead_seconds)

    def report_client_time(self, seconds: float) -> Result:
        """Last report wins: a client's observed position replaces the extrapolated one."""
        with self.lock:
            if not self.is_playing or self.current_item is None:
                return Result.invalid("Nothing is playing")
            if not _valid_position(seconds):
                return Result.invalid(f"Invalid position: {seconds}")
            old = self.compute_current_playhead()
            self.playhead_seconds = float(seconds)
            self.last_updated = self._clock()
            logger.debug(f"Room {self.room_id} playhead corrected {old:.1f}s -> {seconds:.1f}s")
            return Result.success(self.playhead_seconds)

    # Snapshots

    def snapshot(self) -> RoomState:
        with self.lock:
            owner = self.owner
            return RoomState(
                room_id=self.room_id,
                current_item=self.current_item,
                playhead_seconds=self.compute_current_playhead(),
                is_playing=self.is_playing,
                queue=list(self.queue),
                participants=self.list_participants(),
                participant_count=len(self.participants),
                owner=owner.connection_id if owner else None,
                last_updated=self.last_updated,
                server_time=self._clock(),
            )

    def summary(self) -> RoomSummary:
        with self.lock:
            return RoomSummary(
                room_id=self.room_id,
                participant_count=len(self.participants),
                queue_length=len(self.queue),
                is_playing=self.is_playing,
                current_item=self.current_item,
                created_at=self.created_at,
            )


def _valid_position(seconds) -> bool:
    return isinstance(seconds, (int, float)) and not isinstance(seconds, bool) \
        and math.isfinite(seconds) and seconds >= 0
