"""
PomoPair

Paired pomodoro timers. Two users share a room and see each other's timer
and active task change in real time.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import HTTPConnection
from fastapi.responses import JSONResponse

from pomopair import pairing, tasks
from pomopair.config import Settings
from pomopair.db import open_store
from pomopair.errors import InternalError, NotAuthenticated, PomoPairError
from pomopair.hub import RealtimeHub
from pomopair.models import (
    AuthResponse,
    LoginRequest,
    PartnerResponse,
    SessionEnvelope,
    SuccessResponse,
    TaskCreate,
    TaskEnvelope,
    TaskListResponse,
    TimerSession,
    TimerStart,
    User,
)
from pomopair.projection import StateProjector
from pomopair.store import RecordStore
from pomopair.timer import Clock, TimerController, now_ms

logger = logging.getLogger(__name__)

USER_COOKIE = "userId"
INVITE_COOKIE = "inviteCode"
USER_HEADER = "X-User-Id"


# ============================================================
# IDENTITY
# ============================================================


def _identity(conn: HTTPConnection) -> str | None:
    """Caller's user id: the X-User-Id header, else the userId cookie."""
    return conn.headers.get(USER_HEADER) or conn.cookies.get(USER_COOKIE) or None


async def current_user(request: Request) -> User:
    user_id = _identity(request)
    if not user_id:
        raise NotAuthenticated()
    user = await request.app.state.store.get_user(user_id)
    if user is None:
        raise NotAuthenticated("User not found")
    return user


def _session_envelope(request: Request, session: TimerSession) -> SessionEnvelope:
    timers: TimerController = request.app.state.timers
    return SessionEnvelope(session=session.to_response(timers.remaining_for(session)))


async def _notify(request: Request, user: User) -> None:
    await request.app.state.hub.notify_user(user.id)


# ============================================================
# HEALTH CHECK
# ============================================================

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    return {"status": "healthy", "connections": request.app.state.hub.connection_count}


# ============================================================
# AUTH
# ============================================================


@router.post("/api/auth/login", response_model=AuthResponse)
async def login(body: LoginRequest, request: Request, response: Response):
    """Log in with an invite code, pairing the user into a room on first use."""
    user = await pairing.resolve(request.app.state.store, body.invite_code, body.name)

    max_age = request.app.state.settings.cookie_max_age_seconds
    response.set_cookie(USER_COOKIE, user.id, max_age=max_age, httponly=True)
    response.set_cookie(INVITE_COOKIE, user.invite_code, max_age=max_age, httponly=True)
    return AuthResponse(user=user.to_response())


@router.get("/api/auth/me", response_model=AuthResponse)
async def me(user: User = Depends(current_user)):
    return AuthResponse(user=user.to_response())


@router.post("/api/auth/logout", response_model=SuccessResponse)
async def logout(response: Response):
    response.delete_cookie(USER_COOKIE)
    response.delete_cookie(INVITE_COOKIE)
    return SuccessResponse()


# ============================================================
# PARTNER
# ============================================================


@router.get("/api/partner/state", response_model=PartnerResponse)
async def partner_state(request: Request, user: User = Depends(current_user)):
    """Timer and active task of the other member of the caller's room."""
    partner = await request.app.state.projector.partner_state(user)
    return PartnerResponse(partner=partner)


# ============================================================
# TASKS
# ============================================================


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(request: Request, user: User = Depends(current_user)):
    owned = await tasks.list_tasks(request.app.state.store, user.id)
    return TaskListResponse(tasks=[t.to_response() for t in owned])


@router.post("/api/tasks", response_model=TaskEnvelope)
async def create_task(body: TaskCreate, request: Request, user: User = Depends(current_user)):
    task = await tasks.create_task(request.app.state.store, user.id, body.title)
    await _notify(request, user)
    return TaskEnvelope(task=task.to_response())


@router.post("/api/tasks/{task_id}/activate", response_model=TaskEnvelope)
async def activate_task(task_id: str, request: Request, user: User = Depends(current_user)):
    """Make a task the active one, deactivating the rest."""
    task = await tasks.activate_task(request.app.state.store, user.id, task_id)
    await _notify(request, user)
    return TaskEnvelope(task=task.to_response())


@router.delete("/api/tasks/{task_id}", response_model=SuccessResponse)
async def delete_task(task_id: str, request: Request, user: User = Depends(current_user)):
    await tasks.delete_task(request.app.state.store, user.id, task_id)
    await _notify(request, user)
    return SuccessResponse()


# ============================================================
# TIMER
# ============================================================


@router.get("/api/timer", response_model=SessionEnvelope)
async def get_timer(request: Request, user: User = Depends(current_user)):
    """Current timer session, created stopped on first read."""
    session = await request.app.state.timers.get_or_create(user.id)
    return _session_envelope(request, session)


@router.post("/api/timer/start", response_model=SessionEnvelope)
async def start_timer(body: TimerStart, request: Request, user: User = Depends(current_user)):
    session = await request.app.state.timers.start(user.id, body.phase, body.duration_seconds)
    await _notify(request, user)
    return _session_envelope(request, session)


@router.post("/api/timer/pause", response_model=SessionEnvelope)
async def pause_timer(request: Request, user: User = Depends(current_user)):
    session = await request.app.state.timers.pause(user.id)
    await _notify(request, user)
    return _session_envelope(request, session)


@router.post("/api/timer/resume", response_model=SessionEnvelope)
async def resume_timer(request: Request, user: User = Depends(current_user)):
    session = await request.app.state.timers.resume(user.id)
    await _notify(request, user)
    return _session_envelope(request, session)


@router.post("/api/timer/stop", response_model=SessionEnvelope)
async def stop_timer(request: Request, user: User = Depends(current_user)):
    session = await request.app.state.timers.stop(user.id)
    await _notify(request, user)
    return _session_envelope(request, session)


# ============================================================
# WEBSOCKET ENDPOINT
# ============================================================


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Realtime channel for the authenticated user.

    Messages received:
    - ping: answered with pong
    - state:request: the user's state is re-sent to the whole room

    Messages sent:
    - pong
    - user:state: {userId, data: {user, activeTask, timerSession}} after
      every change to the state of anyone in the room
    """
    hub: RealtimeHub = websocket.app.state.hub
    user = await hub.connect(websocket, _identity(websocket))
    if user is None:
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await hub.handle_message(websocket, user.id, raw)
    except Exception:
        logger.warning("WebSocket error for user %s", user.id, exc_info=True)
    finally:
        hub.disconnect(user, websocket)


# ============================================================
# FASTAPI APP
# ============================================================


def _internal_error_response() -> JSONResponse:
    fallback = InternalError()
    return JSONResponse(
        status_code=fallback.status_code,
        content={"detail": fallback.message, "code": fallback.code},
    )


async def handle_pomopair_error(request: Request, exc: PomoPairError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error(
            "Internal error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _internal_error_response()

    content = {"detail": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error_response()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PomoPair started")
    yield
    logger.info("PomoPair stopped")


def create_app(
    settings: Settings | None = None,
    store: RecordStore | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if store is None:
        store = open_store(settings.database_url)
    timers = TimerController(
        store, clock=clock or now_ms, default_duration_seconds=settings.default_duration_seconds
    )
    projector = StateProjector(store, timers)

    application = FastAPI(
        title="PomoPair",
        description="Paired pomodoro timers with realtime partner sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.store = store
    application.state.timers = timers
    application.state.projector = projector
    application.state.hub = RealtimeHub(store, projector)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(PomoPairError, handle_pomopair_error)
    application.add_exception_handler(Exception, handle_unexpected_error)
    application.include_router(router)
    return application


app = create_app()


# ============================================================
# MAIN
# ============================================================


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
