# Socket.IO event names

# Inbound
CONNECT = "connect"
DISCONNECT = "disconnect"
AUTHENTICATE = "authenticate"
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
GRANT_PERMISSION = "grant-permission"
REVOKE_PERMISSION = "revoke-permission"
KICK_PARTICIPANT = "kick-participant"
ENQUEUE_ITEM = "enqueue-item"
DEQUEUE_ITEM = "dequeue-item"
REORDER_QUEUE = "reorder-queue"
PLAY = "play"
PAUSE = "pause"
SEEK = "seek"
SKIP = "skip"
ITEM_ENDED = "item-ended"
REPORT_TIME = "report-time"

# Outbound
AUTH_SUCCESS = "auth-success"
AUTH_ERROR = "auth-error"
ROOM_STATE = "room-state"
QUEUE_UPDATED = "queue-updated"
NOW_PLAYING = "now-playing"
QUEUE_EXHAUSTED = "queue-exhausted"
PARTICIPANT_JOINED = "participant-joined"
PARTICIPANT_LEFT = "participant-left"
PERMISSIONS_UPDATED = "permissions-updated"
SYNC_CORRECTION = "sync-correction"
INITIAL_SYNC = "initial-sync"
PERMISSION_DENIED = "permission-denied"
REQUEST_REJECTED = "request-rejected"
KICKED = "kicked"
