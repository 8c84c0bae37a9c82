"""
Timer state engine.

Nothing ticks on the server. A session stores when it last started running
(``start_time``, epoch milliseconds) and the budget it had at that moment
(``duration_seconds``); remaining time is derived from those and a reference
clock whenever someone asks. All arithmetic is in whole seconds, truncated.
"""

import logging
import time
from collections.abc import Callable
from enum import StrEnum

from pomopair.config import DEFAULT_DURATION_SECONDS
from pomopair.errors import InvalidTransition, NotFound
from pomopair.models import Phase, TimerSession, TimerStatus
from pomopair.store import RecordStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class TimerAction(StrEnum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


# Valid actions per status for better error messages
VALID_ACTIONS: dict[TimerStatus, list[str]] = {
    TimerStatus.STOPPED: [TimerAction.START, TimerAction.STOP],
    TimerStatus.RUNNING: [TimerAction.START, TimerAction.PAUSE, TimerAction.STOP],
    TimerStatus.PAUSED: [TimerAction.START, TimerAction.RESUME, TimerAction.STOP],
}


def now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================
# PROJECTION
# ============================================================


def elapsed_seconds(start_time: int, now: int) -> int:
    """Whole seconds between ``start_time`` and ``now``, never negative."""
    return max(0, (now - start_time) // 1000)


def remaining_seconds(session: TimerSession, now: int, last_remaining: int | None = None) -> int:
    """Seconds left on ``session`` as seen at ``now``.

    A paused session reports ``last_remaining``, the value computed when it
    was paused. Without one (e.g. after a restart) the stale ``start_time`` is
    all there is, and the running formula is applied to it.
    """
    if session.status == TimerStatus.STOPPED or session.start_time is None:
        return session.duration_seconds
    if session.status == TimerStatus.PAUSED and last_remaining is not None:
        return last_remaining
    return max(0, session.duration_seconds - elapsed_seconds(session.start_time, now))


# ============================================================
# TRANSITIONS
# ============================================================


def _invalid(action: str, session: TimerSession) -> InvalidTransition:
    valid = [str(a) for a in VALID_ACTIONS.get(session.status, [])]
    return InvalidTransition(
        f"Cannot {action} timer in state '{session.status}'. Valid actions: [{', '.join(valid)}]",
        details={"status": str(session.status), "valid_actions": valid},
    )


def start_session(
    session: TimerSession | None,
    *,
    user_id: str,
    phase: Phase,
    duration_seconds: int,
    task_id: str | None,
    now: int,
) -> TimerSession:
    """Run ``session`` (or a new one) from ``now``. Allowed from any status."""
    if session is None:
        session = TimerSession(user_id=user_id)
    session.status = TimerStatus.RUNNING
    session.phase = phase
    session.start_time = now
    session.duration_seconds = duration_seconds
    session.task_id = task_id
    return session


def pause_session(session: TimerSession) -> TimerSession:
    if session.status != TimerStatus.RUNNING:
        raise _invalid(TimerAction.PAUSE, session)
    # start_time and duration stay as they are; resume reconciles them
    session.status = TimerStatus.PAUSED
    return session


def resume_session(session: TimerSession, now: int) -> TimerSession:
    if session.status != TimerStatus.PAUSED:
        raise _invalid(TimerAction.RESUME, session)

    elapsed = elapsed_seconds(session.start_time or now, now)
    remaining = max(0, session.duration_seconds - elapsed)

    # Rebase so that reading at `now` yields exactly `remaining`
    session.duration_seconds = remaining
    session.start_time = now
    session.status = TimerStatus.RUNNING
    return session


def stop_session(session: TimerSession | None) -> TimerSession:
    if session is None:
        raise NotFound("Timer session not found")
    session.status = TimerStatus.STOPPED
    return session


# ============================================================
# CONTROLLER
# ============================================================


class TimerController:
    """Applies transitions to a user's current session in the store."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = now_ms,
        default_duration_seconds: int = DEFAULT_DURATION_SECONDS,
    ):
        self.store = store
        self.clock = clock
        self.default_duration_seconds = default_duration_seconds
        # session id -> remaining seconds computed at the moment of pausing
        self._paused_remaining: dict[str, int] = {}

    def remaining_for(self, session: TimerSession, now: int | None = None) -> int:
        if now is None:
            now = self.clock()
        last = self._paused_remaining.get(session.id)
        return remaining_seconds(session, now, last_remaining=last)

    async def get_or_create(self, user_id: str) -> TimerSession:
        session = await self.store.current_timer_session(user_id)
        if session is None:
            session = await self.store.insert_timer_session(
                TimerSession(user_id=user_id, duration_seconds=self.default_duration_seconds)
            )
            logger.info("Created timer session %s for user %s", session.id, user_id)
        return session

    async def start(self, user_id: str, phase: Phase, duration_seconds: int) -> TimerSession:
        active_task = await self.store.get_active_task(user_id)
        existing = await self.store.current_timer_session(user_id)

        session = start_session(
            existing,
            user_id=user_id,
            phase=phase,
            duration_seconds=duration_seconds,
            task_id=active_task.id if active_task else None,
            now=self.clock(),
        )
        self._paused_remaining.pop(session.id, None)

        if existing is None:
            return await self.store.insert_timer_session(session)
        return await self.store.save_timer_session(session)

    async def pause(self, user_id: str) -> TimerSession:
        session = await self.store.current_timer_session(user_id)
        if session is None:
            raise InvalidTransition("Timer is not running")

        now = self.clock()
        remaining = remaining_seconds(session, now)
        session = pause_session(session)
        session = await self.store.save_timer_session(session)
        self._paused_remaining[session.id] = remaining
        return session

    async def resume(self, user_id: str) -> TimerSession:
        session = await self.store.current_timer_session(user_id)
        if session is None:
            raise InvalidTransition("Timer is not paused")

        session = resume_session(session, self.clock())
        self._paused_remaining.pop(session.id, None)
        return await self.store.save_timer_session(session)

    async def stop(self, user_id: str) -> TimerSession:
        session = stop_session(await self.store.current_timer_session(user_id))
        self._paused_remaining.pop(session.id, None)
        return await self.store.save_timer_session(session)
