"""
State projection.

Builds the outward snapshot of a user: identity, active task and current
timer session. It is read fresh from the store on every call and shared by
the HTTP read path and the realtime push path.
"""

from pomopair.models import PartnerState, TaskResponse, TimerSessionResponse, User, UserState
from pomopair.store import RecordStore
from pomopair.timer import TimerController


class StateProjector:
    def __init__(self, store: RecordStore, timers: TimerController):
        self.store = store
        self.timers = timers

    async def user_state(self, user_id: str) -> UserState | None:
        user = await self.store.get_user(user_id)
        if user is None:
            return None
        active_task, timer_session = await self._activity(user.id)
        return UserState(
            user=user.to_summary(), active_task=active_task, timer_session=timer_session
        )

    async def partner_state(self, user: User) -> PartnerState | None:
        """State of the first other member of ``user``'s room, if any."""
        if user.room_id is None:
            return None

        members = await self.store.list_room_members(user.room_id)
        partner = next((m for m in members if m.id != user.id), None)
        if partner is None:
            return None

        active_task, timer_session = await self._activity(partner.id)
        return PartnerState(
            id=partner.id,
            name=partner.name,
            active_task=active_task,
            timer_session=timer_session,
        )

    async def _activity(
        self, user_id: str
    ) -> tuple[TaskResponse | None, TimerSessionResponse | None]:
        task = await self.store.get_active_task(user_id)
        session = await self.store.current_timer_session(user_id)
        return (
            task.to_response() if task else None,
            session.to_response(self.timers.remaining_for(session)) if session else None,
        )
