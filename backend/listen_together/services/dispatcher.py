import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from listen_together import events
from listen_together.config import Settings
from listen_together.models.room import Capability, ErrorKind, MediaItem, Result, UserIdentity
from listen_together.services.auth import AuthService, IdentityError
from listen_together.services.media import MediaSearch, MediaSearchError
from listen_together.services.registry import RoomRegistry
from listen_together.services.room import Room
from listen_together.services.sync import SyncScheduler

logger = logging.getLogger(__name__)


def _arg(data: Any, key: str) -> Any:
    # Clients may send either a bare value or an object {key: value}
    if isinstance(data, dict):
        return data.get(key)
    return data


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ProtocolDispatcher:
    """
    Maps Socket.IO events onto room operations and fans the results out.

    Holds only per-connection bookkeeping: the room a connection is in and the
    identity it authenticated with. All room state lives in the registry.
    """

    def __init__(self, sio, registry: RoomRegistry, scheduler: SyncScheduler,
                 auth: AuthService, media: MediaSearch, settings: Settings):
        self.sio = sio
        self.registry = registry
        self.scheduler = scheduler
        self.auth = auth
        self.media = media
        self.manual_tolerance = settings.SYNC_TOLERANCE_MANUAL
        self.connections: Dict[str, str] = {}
        self.identities: Dict[str, UserIdentity] = {}

    def register(self):
        handlers = {
            events.CONNECT: self.on_connect,
            events.DISCONNECT: self.on_disconnect,
            events.AUTHENTICATE: self.on_authenticate,
            events.JOIN_ROOM: self.on_join_room,
            events.LEAVE_ROOM: self.on_leave_room,
            events.GRANT_PERMISSION: self.on_grant_permission,
            events.REVOKE_PERMISSION: self.on_revoke_permission,
            events.KICK_PARTICIPANT: self.on_kick_participant,
            events.ENQUEUE_ITEM: self.on_enqueue_item,
            events.DEQUEUE_ITEM: self.on_dequeue_item,
            events.REORDER_QUEUE: self.on_reorder_queue,
            events.PLAY: self.on_play,
            events.PAUSE: self.on_pause,
            events.SEEK: self.on_seek,
            events.SKIP: self.on_skip,
            events.ITEM_ENDED: self.on_item_ended,
            events.REPORT_TIME: self.on_report_time,
        }
        for event, handler in handlers.items():
            self.sio.on(event, self._guarded(event, handler))

    def _guarded(self, event: str, handler):
        async def wrapper(sid, *args):
            try:
                return await handler(sid, *args)
            except Exception as e:
                logger.error(f"Error in {event} from {sid}: {e}", exc_info=True)
                if event not in (events.CONNECT, events.DISCONNECT):
                    await self.sio.emit(events.REQUEST_REJECTED, {"message": "Internal server error"}, to=sid)
        return wrapper

    # Helpers

    def room_of(self, sid: str) -> Optional[Room]:
        room_id = self.connections.get(sid)
        if room_id is None:
            return None
        return self.registry.get(room_id)

    async def _reply_failure(self, sid: str, event: str, result: Result):
        if result.error is ErrorKind.AUTHORIZATION:
            logger.info(f"Denied {event} from {sid}: {result.reason}")
            await self.sio.emit(events.PERMISSION_DENIED, {"message": result.reason}, to=sid)
        elif result.error is ErrorKind.NOT_FOUND:
            # Target already gone, the requested end state holds
            logger.debug(f"Ignored {event} from {sid}: {result.reason}")
        else:
            logger.info(f"Rejected {event} from {sid}: {result.reason}")
            await self.sio.emit(events.REQUEST_REJECTED, {"message": result.reason}, to=sid)

    async def _reject(self, sid: str, event: str, reason: str):
        await self._reply_failure(sid, event, Result.invalid(reason))

    @staticmethod
    def _participants_payload(room: Room) -> dict:
        with room.lock:
            participants = room.list_participants()
            return {
                "participant_count": len(participants),
                "participants": [p.model_dump() for p in participants],
            }

    @staticmethod
    def _queue_payload(room: Room) -> dict:
        with room.lock:
            return {"queue": [e.model_dump() for e in room.queue]}

    async def _broadcast_advance(self, room: Room, entry):
        queue = self._queue_payload(room)
        if entry is not None:
            await self.sio.emit(events.NOW_PLAYING, {"item": entry.model_dump(), "time": 0.0}, room=room.room_id)
        else:
            await self.sio.emit(events.QUEUE_EXHAUSTED, {}, room=room.room_id)
        await self.sio.emit(events.QUEUE_UPDATED, queue, room=room.room_id)

    async def _leave(self, sid: str, room_id: str, transport: bool = True):
        if self.connections.get(sid) == room_id:
            del self.connections[sid]
        if transport:
            await self.sio.leave_room(sid, room_id)
        removed, room = self.registry.leave(room_id, sid)
        if not removed:
            return
        logger.info(f"{sid} left room {room_id}")
        if room is not None:
            await self._broadcast_departure(room, skip_sid=sid)

    async def _broadcast_departure(self, room: Room, skip_sid: Optional[str] = None):
        # Ownership may have moved, so the capability list goes out too
        payload = self._participants_payload(room)
        await self.sio.emit(events.PARTICIPANT_LEFT, payload, room=room.room_id, skip_sid=skip_sid)
        await self.sio.emit(events.PERMISSIONS_UPDATED, payload, room=room.room_id, skip_sid=skip_sid)

    # Connection

    async def on_connect(self, sid, environ=None, auth=None):
        logger.info(f"Client {sid} connected")

    async def on_disconnect(self, sid, reason=None):
        logger.info(f"Client {sid} disconnected")
        self.identities.pop(sid, None)
        room_id = self.connections.get(sid)
        if room_id:
            await self._leave(sid, room_id, transport=False)

    async def on_authenticate(self, sid, data=None):
        token = _arg(data, "token")
        try:
            identity = await self.auth.verify_token(token)
        except IdentityError as e:
            # Connection carries on as a guest
            logger.warning(f"Authentication failed for {sid}: {e}")
            await self.sio.emit(events.AUTH_ERROR, {"message": str(e)}, to=sid)
            return
        self.identities[sid] = identity
        logger.info(f"Client {sid} authenticated as {identity.username or identity.identity_id}")
        await self.sio.emit(events.AUTH_SUCCESS, identity.model_dump(), to=sid)

    # Rooms and participants

    async def on_join_room(self, sid, data=None):
        room_id = _arg(data, "room_id")
        if not isinstance(room_id, str) or not room_id.strip():
            await self._reject(sid, events.JOIN_ROOM, "Room id required")
            return
        room_id = room_id.strip()

        current = self.connections.get(sid)
        if current and current != room_id:
            await self._leave(sid, current)
        rejoin = current == room_id

        await self.sio.enter_room(sid, room_id)
        room, participant = self.registry.join(room_id, sid, self.identities.get(sid))
        self.connections[sid] = room_id

        with room.lock:
            state = room.snapshot().model_dump()
            others = self._participants_payload(room)

        await self.sio.emit(events.ROOM_STATE, state, to=sid)
        if rejoin:
            # Membership is unchanged; the fresh snapshot is all the client needs
            return
        await self.sio.emit(events.PARTICIPANT_JOINED, others, room=room_id, skip_sid=sid)
        self.scheduler.schedule_initial_sync(sid, room_id)
        logger.info(f"{participant.display_name} ({sid}) joined room {room_id} "
                    f"({others['participant_count']} participants)")

    async def on_leave_room(self, sid, data=None):
        room_id = self.connections.get(sid)
        if room_id:
            await self._leave(sid, room_id)

    async def _change_permission(self, sid, data, event: str, grant: bool):
        room = self.room_of(sid)
        if room is None:
            return
        target = _arg(data, "target")
        if grant:
            result = room.grant_queue_permission(sid, target)
        else:
            result = room.revoke_queue_permission(sid, target)
        if not result:
            await self._reply_failure(sid, event, result)
            return
        logger.debug(f"Queue permission {'granted to' if grant else 'revoked from'} {target} "
                     f"in room {room.room_id} by {sid}")
        await self.sio.emit(events.PERMISSIONS_UPDATED, self._participants_payload(room), room=room.room_id)

    async def on_grant_permission(self, sid, data=None):
        await self._change_permission(sid, data, events.GRANT_PERMISSION, grant=True)

    async def on_revoke_permission(self, sid, data=None):
        await self._change_permission(sid, data, events.REVOKE_PERMISSION, grant=False)

    async def on_kick_participant(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        target = _arg(data, "target")
        result = room.kick(sid, target)
        if not result:
            await self._reply_failure(sid, events.KICK_PARTICIPANT, result)
            return

        room_id = room.room_id
        self.connections.pop(target, None)
        await self.sio.emit(events.KICKED, {"message": "You have been kicked from the room"}, to=target)
        await self.sio.leave_room(target, room_id)
        await self._broadcast_departure(room)
        logger.info(f"{target} kicked from room {room_id} by {sid}")
        await self.sio.disconnect(target)

    # Queue

    async def _parse_item(self, sid: str, data: Any) -> Optional[MediaItem]:
        url = None
        if isinstance(data, str):
            url = data
        elif isinstance(data, dict) and data.get("url") and not data.get("external_id"):
            url = data["url"]

        if url is not None:
            if not url.startswith(("http://", "https://")):
                await self._reject(sid, events.ENQUEUE_ITEM, "Invalid URL")
                return None
            try:
                return await self.media.resolve(url)
            except MediaSearchError as e:
                await self._reject(sid, events.ENQUEUE_ITEM, str(e))
                return None

        try:
            return MediaItem.model_validate(data)
        except ValidationError:
            await self._reject(sid, events.ENQUEUE_ITEM, "Invalid media item")
            return None

    async def on_enqueue_item(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        # Checked up front so unauthorized requests never trigger URL resolution
        if not room.can(sid, Capability.EDIT_QUEUE):
            await self._reply_failure(sid, events.ENQUEUE_ITEM,
                                      Result.denied("You do not have permission to edit the queue"))
            return

        item = await self._parse_item(sid, data)
        if item is None:
            return

        result = room.enqueue(sid, item)
        if not result:
            await self._reply_failure(sid, events.ENQUEUE_ITEM, result)
            return

        enqueued = result.value
        if enqueued.now_playing is not None:
            await self.sio.emit(events.NOW_PLAYING, {"item": enqueued.now_playing.model_dump(), "time": 0.0},
                                room=room.room_id)
        await self.sio.emit(events.QUEUE_UPDATED, self._queue_payload(room), room=room.room_id)
        logger.debug(f"'{item.title}' added to room {room.room_id} by {sid}")

    async def on_dequeue_item(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        entry_id = _arg(data, "entry_id")
        if not _is_int(entry_id):
            await self._reject(sid, events.DEQUEUE_ITEM, "Invalid entry id")
            return
        result = room.dequeue(sid, entry_id)
        if not result:
            await self._reply_failure(sid, events.DEQUEUE_ITEM, result)
            return
        await self.sio.emit(events.QUEUE_UPDATED, self._queue_payload(room), room=room.room_id)

    async def on_reorder_queue(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        order = _arg(data, "order")
        if not isinstance(order, list) or not all(_is_int(i) for i in order):
            await self._reject(sid, events.REORDER_QUEUE, "Order must be a list of entry ids")
            return
        result = room.reorder(sid, order)
        if not result:
            await self._reply_failure(sid, events.REORDER_QUEUE, result)
            return
        await self.sio.emit(events.QUEUE_UPDATED, self._queue_payload(room), room=room.room_id)

    # Playback

    async def _set_playing(self, sid, playing: bool):
        room = self.room_of(sid)
        if room is None:
            return
        event = events.PLAY if playing else events.PAUSE
        result = room.set_playing(playing)
        if not result:
            await self._reply_failure(sid, event, result)
            return
        # The sender already applied this locally
        await self.sio.emit(event, {"time": result.value}, room=room.room_id, skip_sid=sid)

    async def on_play(self, sid, data=None):
        await self._set_playing(sid, True)

    async def on_pause(self, sid, data=None):
        await self._set_playing(sid, False)

    async def on_seek(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        seconds = _arg(data, "time")
        result = room.seek(seconds)
        if not result:
            await self._reply_failure(sid, events.SEEK, result)
            return
        await self.sio.emit(events.SEEK, {"time": result.value, "tolerance": self.manual_tolerance},
                            room=room.room_id, skip_sid=sid)

    async def on_skip(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        with room.lock:
            if not room.can(sid, Capability.SKIP):
                result = Result.denied("You do not have permission to skip")
            else:
                result = Result.success(room.advance())
        if not result:
            await self._reply_failure(sid, events.SKIP, result)
            return
        logger.debug(f"Skip in room {room.room_id} by {sid}")
        await self._broadcast_advance(room, result.value)

    async def on_item_ended(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        ended_id = _arg(data, "entry_id")
        with room.lock:
            current = room.current_item
            # Every client reports the end; only the first report for the current entry advances
            if current is None or (_is_int(ended_id) and ended_id != current.entry_id):
                logger.debug(f"Stale item-ended from {sid} in room {room.room_id}")
                return
            entry = room.advance()
        await self._broadcast_advance(room, entry)

    async def on_report_time(self, sid, data=None):
        room = self.room_of(sid)
        if room is None:
            return
        seconds = _arg(data, "time")
        if not _is_number(seconds):
            return
        room.report_client_time(seconds)
