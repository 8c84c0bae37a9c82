"""
Key-indexed record store.

Holds the four collections (rooms, users, tasks, timer_sessions) in process
memory. Every method is a coroutine, so each store access is a point where
concurrent handlers may interleave. Records are copied in and out: callers
mutate their copy and write it back explicitly.
"""

from pomopair.errors import StoreError
from pomopair.models import Room, Task, TimerSession, User


class RecordStore:
    def __init__(self):
        self.rooms: dict[str, Room] = {}
        self.users: dict[str, User] = {}
        self.tasks: dict[str, Task] = {}
        self.timer_sessions: dict[str, TimerSession] = {}
        self._users_by_invite: dict[str, str] = {}

    # ---- rooms ----

    async def create_room(self) -> Room:
        room = Room()
        self.rooms[room.id] = room
        return room.model_copy()

    async def room_member_counts(self) -> dict[str, int]:
        counts = {room_id: 0 for room_id in self.rooms}
        for user in self.users.values():
            if user.room_id in counts:
                counts[user.room_id] += 1
        return counts

    async def list_room_members(self, room_id: str) -> list[User]:
        return [u.model_copy() for u in self.users.values() if u.room_id == room_id]

    # ---- users ----

    async def create_user(self, name: str, invite_code: str, room_id: str | None) -> User:
        if invite_code in self._users_by_invite:
            raise StoreError(f"Invite code already taken: {invite_code}")
        if room_id is not None and room_id not in self.rooms:
            raise StoreError(f"Unknown room: {room_id}")

        user = User(name=name, invite_code=invite_code, room_id=room_id)
        self.users[user.id] = user
        self._users_by_invite[invite_code] = user.id
        return user.model_copy()

    async def get_user(self, user_id: str) -> User | None:
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_invite_code(self, invite_code: str) -> User | None:
        user_id = self._users_by_invite.get(invite_code)
        return await self.get_user(user_id) if user_id else None

    # ---- tasks ----

    async def create_task(self, user_id: str, title: str) -> Task:
        self._require_user(user_id)
        task = Task(user_id=user_id, title=title)
        self.tasks[task.id] = task
        return task.model_copy()

    async def get_task(self, task_id: str, user_id: str) -> Task | None:
        """Fetch a task only if it belongs to ``user_id``."""
        task = self.tasks.get(task_id)
        if task is None or task.user_id != user_id:
            return None
        return task.model_copy()

    async def list_tasks(self, user_id: str) -> list[Task]:
        """A user's tasks, newest first."""
        owned = [t.model_copy() for t in self.tasks.values() if t.user_id == user_id]
        owned.reverse()
        return owned

    async def get_active_task(self, user_id: str) -> Task | None:
        for task in self.tasks.values():
            if task.user_id == user_id and task.is_active:
                return task.model_copy()
        return None

    async def deactivate_tasks(self, user_id: str) -> int:
        changed = 0
        for task in self.tasks.values():
            if task.user_id == user_id and task.is_active:
                task.is_active = False
                changed += 1
        return changed

    async def set_task_active(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise StoreError(f"Unknown task: {task_id}")
        task.is_active = True
        return task.model_copy()

    async def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None

    # ---- timer sessions ----

    async def insert_timer_session(self, session: TimerSession) -> TimerSession:
        """Store a new session and make it the owner's current one."""
        owner = self._require_user(session.user_id)
        if session.id in self.timer_sessions:
            raise StoreError(f"Timer session already exists: {session.id}")

        self.timer_sessions[session.id] = session.model_copy()
        owner.current_session_id = session.id
        return session.model_copy()

    async def save_timer_session(self, session: TimerSession) -> TimerSession:
        if session.id not in self.timer_sessions:
            raise StoreError(f"Unknown timer session: {session.id}")
        self.timer_sessions[session.id] = session.model_copy()
        return session.model_copy()

    async def current_timer_session(self, user_id: str) -> TimerSession | None:
        user = self.users.get(user_id)
        if user is None or user.current_session_id is None:
            return None
        session = self.timer_sessions.get(user.current_session_id)
        return session.model_copy() if session else None

    def _require_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise StoreError(f"Unknown user: {user_id}")
        return user
