import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import socketio
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from listen_together.config import get_settings
from listen_together.models.room import MediaItem, RoomSummary
from listen_together.services.auth import AuthService
from listen_together.services.dispatcher import ProtocolDispatcher
from listen_together.services.media import MediaSearch, MediaSearchError
from listen_together.services.registry import RoomRegistry
from listen_together.services.sync import SyncScheduler

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

origins = settings.origins or ["*"]

sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")

registry = RoomRegistry()
media = MediaSearch(settings)
scheduler = SyncScheduler(registry, sio, settings)
dispatcher = ProtocolDispatcher(sio, registry, scheduler, AuthService(settings), media, settings)
dispatcher.register()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler.start()
    logger.info(f"{settings.PROJECT_NAME} started (env={settings.ENVIRONMENT})")
    yield
    await scheduler.stop()
    logger.info(f"{settings.PROJECT_NAME} stopped")


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

socket_app = socketio.ASGIApp(sio, app)


# REST API
@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "sync_running": scheduler.running}


@app.get("/api/search", response_model=List[MediaItem])
async def search(q: str = Query("", description="Search query"),
                 max_results: Optional[int] = Query(None, ge=1, le=50)):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query required")
    try:
        return await media.search(q, max_results)
    except MediaSearchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/rooms/{room_id}", response_model=RoomSummary)
async def get_room(room_id: str):
    room = registry.get(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.summary()


@app.get("/api/stats")
async def stats():
    return registry.stats()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("listen_together.main:socket_app", host=settings.HOST, port=settings.PORT, reload=settings.is_dev)
