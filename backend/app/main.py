import asyncio
import functools
import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from app import config
from app.models.room import Role
from app.models.user import BroadcastRequest, LoginRequest, LoginResponse, RegisterRequest
from app.services import media
from app.services.auth import CredentialError, CredentialStore
from app.services.privilege import ConnectionRejected, PrivilegeAuthority
from app.services.queue import QueueManager
from app.services.router import EventRouter
from app.services.session import SessionStore
from app.services.transport import SocketIOTransport

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

origins = config.ALLOWED_ORIGINS

sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")

# One room per process
store = SessionStore(media_id=config.DEFAULT_MEDIA_ID)
authority = PrivilegeAuthority(
    store,
    max_connections=config.MAX_CONNECTIONS,
    admin_limit=config.ADMIN_LIMIT,
    regular_limit=config.REGULAR_USER_LIMIT,
)
queue_manager = QueueManager(store)
transport = SocketIOTransport(sio)
router = EventRouter(store, authority, queue_manager, transport)
credentials = CredentialStore()


def get_router() -> EventRouter:
    return router


def get_credentials() -> CredentialStore:
    return credentials


def get_authority() -> PrivilegeAuthority:
    return authority


async def _heartbeat_loop(interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await router.heartbeat()
        except Exception as e:
            logger.warning(f"Heartbeat failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    heartbeat = None
    if config.HEARTBEAT_INTERVAL > 0:
        heartbeat = asyncio.create_task(_heartbeat_loop(config.HEARTBEAT_INTERVAL))
        logger.info(f"Heartbeat started (interval {config.HEARTBEAT_INTERVAL:.1f}s)")

    yield

    if heartbeat:
        heartbeat.cancel()
    await router.shutdown()


app = FastAPI(title="Watch Room API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

socket_app = socketio.ASGIApp(sio, app)


# REST API
@app.get("/", response_class=PlainTextResponse)
async def health():
    return "Watch room backend is running"


@app.post("/api/register", status_code=201)
async def register(body: RegisterRequest, creds: CredentialStore = Depends(get_credentials)):
    try:
        creds.register(body.username, body.password, body.is_admin)
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Registration error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error")
    return {"message": "User registered successfully"}


@app.post("/api/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    creds: CredentialStore = Depends(get_credentials),
    auth: PrivilegeAuthority = Depends(get_authority),
):
    token = None
    try:
        record = creds.authenticate(body.username, body.password)
        if record is not None:
            token = creds.issue_token(record)
    except Exception as e:
        logger.error(f"Login error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error")

    if record is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if record.is_controller_eligible and auth.role_is_full(Role.CONTROLLER):
        raise HTTPException(status_code=403, detail="Maximum admin connections reached")
    if not record.is_controller_eligible and auth.role_is_full(Role.REGULAR):
        raise HTTPException(status_code=403, detail="Maximum user connections reached")

    return LoginResponse(token=token, is_admin=record.is_controller_eligible)


@app.post("/api/broadcast")
async def broadcast(body: BroadcastRequest, room: EventRouter = Depends(get_router)):
    if body.secret != config.BROADCAST_SECRET:
        raise HTTPException(status_code=403, detail="Unauthorized")
    await room.announce(body.message)
    return {"success": True, "message": "Message broadcast successfully"}


@app.get("/api/media/search")
async def search_media(q: str = Query(min_length=1), limit: int = Query(default=10, ge=1, le=25)):
    return {"results": await media.search_media(q, limit)}


@app.get("/api/media/resolve")
async def resolve_media(value: str):
    info = await media.resolve_media(value)
    if not info:
        raise HTTPException(status_code=404, detail="Could not resolve media")
    return info


# Socket Events
def _logged(handler):
    """Socket handlers never raise into the transport; failures are logged."""
    @functools.wraps(handler)
    async def wrapper(sid, *args):
        try:
            await handler(sid, *args)
        except Exception as e:
            logger.error(f"Error in {handler.__name__} from {sid}: {e}", exc_info=True)
    return wrapper


@sio.event
async def connect(sid, environ, auth=None):
    token = auth.get("token") if isinstance(auth, dict) else None
    try:
        credential = credentials.verify_token(token)
    except CredentialError as e:
        logger.info(f"Rejected {sid}: {e}")
        raise socketio.exceptions.ConnectionRefusedError(str(e))

    try:
        await router.connect(sid, credential)
    except ConnectionRejected as e:
        raise socketio.exceptions.ConnectionRefusedError(e.reason)

    await transport.enter(sid)
    logger.info(f"Client {sid} connected as {credential.identity}")


@sio.event
@_logged
async def disconnect(sid, *args):
    logger.info(f"Client {sid} disconnected")
    await router.disconnect(sid)


@sio.event
@_logged
async def play(sid, data=None):
    await router.play(sid, data)


@sio.event
@_logged
async def pause(sid, data=None):
    await router.pause(sid, data)


@sio.event
@_logged
async def seek(sid, data=None):
    await router.seek(sid, data)


@sio.event
@_logged
async def change_media(sid, data=None):
    await router.change_media(sid, data)


@sio.event
@_logged
async def add_to_queue(sid, data=None):
    await router.add_to_queue(sid, data)


@sio.event
@_logged
async def remove_from_queue(sid, data=None):
    await router.remove_from_queue(sid, data)


@sio.event
@_logged
async def reorder_queue(sid, data=None):
    await router.reorder_queue(sid, data)


@sio.event
@_logged
async def play_next_in_queue(sid, data=None):
    await router.play_next_in_queue(sid)


@sio.event
@_logged
async def set_display_name(sid, data=None):
    await router.set_display_name(sid, data)


@sio.event
@_logged
async def request_sync(sid, data=None):
    await router.request_sync(sid)


@sio.event
@_logged
async def request_roster(sid, data=None):
    await router.request_roster(sid)


@sio.event
@_logged
async def chat_message(sid, data=None):
    await router.chat_message(sid, data)


@sio.event
@_logged
async def latency_probe(sid, data=None):
    await router.probe(sid, data)


@sio.event
@_logged
async def heartbeat_ack(sid, data=None):
    await router.heartbeat_ack(sid)
