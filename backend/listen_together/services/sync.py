import asyncio
import logging
from typing import Optional, Set

from listen_together import events
from listen_together.config import Settings
from listen_together.services.registry import RoomRegistry

logger = logging.getLogger(__name__)


def needs_correction(local_seconds: float, server_seconds: float, tolerance: float) -> bool:
    """Client-side rule driven by the server's tolerance: seek only when drift exceeds it."""
    return abs(local_seconds - server_seconds) > tolerance


class SyncScheduler:
    """
    Pushes the server's extrapolated playhead to rooms on a fixed period, and
    sends a one-shot delayed sync to participants who join a playing room.
    """

    def __init__(self, registry: RoomRegistry, sio, settings: Settings):
        self.registry = registry
        self.sio = sio
        self.interval = settings.PERIODIC_SYNC_INTERVAL
        self.initial_delay = settings.INITIAL_SYNC_DELAY
        self.periodic_tolerance = settings.SYNC_TOLERANCE_PERIODIC
        self.initial_tolerance = settings.SYNC_TOLERANCE_INITIAL
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            logger.warning("Sync scheduler already running")
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run())
        logger.info(f"Sync scheduler started (interval={self.interval}s)")

    async def stop(self):
        # Refuse new initial syncs from here on
        self._stopped = True
        tasks = list(self._pending)
        if self._task is not None:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        # Nothing may still be emitting once stop() returns
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        if tasks:
            logger.info("Sync scheduler stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sync_once()
            except Exception as e:
                logger.error(f"Periodic sync failed: {e}", exc_info=True)

    async def sync_once(self) -> int:
        targets = self.registry.rooms_for_periodic_sync()
        if not targets:
            return 0
        logger.debug(f"Periodic sync for {len(targets)} rooms")
        for room_id, playhead in targets:
            await self.sio.emit(events.SYNC_CORRECTION, {
                "time": playhead,
                "tolerance": self.periodic_tolerance,
            }, room=room_id)
        return len(targets)

    def schedule_initial_sync(self, connection_id: str, room_id: str) -> Optional[asyncio.Task]:
        if self._stopped:
            return None
        room = self.registry.get(room_id)
        if room is None:
            return None
        with room.lock:
            if room.current_item is None or not room.is_playing:
                return None
        task = asyncio.create_task(self._initial_sync(connection_id, room_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _initial_sync(self, connection_id: str, room_id: str):
        # Give the new client's player time to initialize before it is told to seek
        await asyncio.sleep(self.initial_delay)
        room = self.registry.get(room_id)
        if room is None:
            return
        with room.lock:
            if connection_id not in room.participants or room.current_item is None:
                return
            payload = {
                "time": room.compute_current_playhead(),
                "is_playing": room.is_playing,
                "tolerance": self.initial_tolerance,
            }
        logger.debug(f"Initial sync for {connection_id} in room {room_id} at {payload['time']:.1f}s")
        await self.sio.emit(events.INITIAL_SYNC, payload, to=connection_id)
