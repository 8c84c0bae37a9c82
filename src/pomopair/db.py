"""
SQLite-backed record store.

Same interface as the in-memory ``RecordStore`` but kept in a database file
through SQLModel, so users, rooms, tasks and timer sessions survive a
restart. Each method runs in one short session and never awaits inside it,
which keeps every store call a single step between interleavings.
"""

import logging
from datetime import datetime

from sqlmodel import Field, Session, SQLModel, create_engine, select

from pomopair.errors import StoreError
from pomopair.models import Room, Task, TimerSession, User
from pomopair.store import RecordStore

logger = logging.getLogger(__name__)


# ============================================================
# TABLES
# ============================================================


class RoomRow(SQLModel, table=True):
    __tablename__ = "rooms"

    id: str = Field(primary_key=True)
    created_at: datetime


class UserRow(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: str
    invite_code: str = Field(unique=True, index=True)
    room_id: str | None = Field(default=None, foreign_key="rooms.id", index=True)
    current_session_id: str | None = None
    created_at: datetime


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    title: str
    is_active: bool = False
    created_at: datetime


class TimerSessionRow(SQLModel, table=True):
    __tablename__ = "timer_sessions"

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    task_id: str | None = None
    status: str
    phase: str
    start_time: int | None = None
    duration_seconds: int
    created_at: datetime


# ============================================================
# STORE
# ============================================================


class SqlRecordStore:
    def __init__(self, url: str):
        self.url = url
        self.engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
        self._schema_ready = False

    def _session(self) -> Session:
        # Tables are created on first use so that building an app touches no file
        if not self._schema_ready:
            SQLModel.metadata.create_all(self.engine)
            self._schema_ready = True
            logger.info("Opened record store at %s", self.url)
        return Session(self.engine, expire_on_commit=False)

    # ---- rooms ----

    async def create_room(self) -> Room:
        room = Room()
        with self._session() as db:
            db.add(RoomRow(**room.model_dump()))
            db.commit()
        return room

    async def room_member_counts(self) -> dict[str, int]:
        with self._session() as db:
            room_ids = db.exec(select(RoomRow.id).order_by(RoomRow.created_at)).all()
            member_rooms = db.exec(
                select(UserRow.room_id).where(UserRow.room_id.is_not(None))
            ).all()
        counts = {room_id: 0 for room_id in room_ids}
        for room_id in member_rooms:
            if room_id in counts:
                counts[room_id] += 1
        return counts

    async def list_room_members(self, room_id: str) -> list[User]:
        with self._session() as db:
            rows = db.exec(
                select(UserRow).where(UserRow.room_id == room_id).order_by(UserRow.created_at)
            ).all()
        return [User.model_validate(row.model_dump()) for row in rows]

    # ---- users ----

    async def create_user(self, name: str, invite_code: str, room_id: str | None) -> User:
        with self._session() as db:
            taken = db.exec(select(UserRow).where(UserRow.invite_code == invite_code)).first()
            if taken is not None:
                raise StoreError(f"Invite code already taken: {invite_code}")
            if room_id is not None and db.get(RoomRow, room_id) is None:
                raise StoreError(f"Unknown room: {room_id}")

            user = User(name=name, invite_code=invite_code, room_id=room_id)
            db.add(UserRow(**user.model_dump()))
            db.commit()
        return user

    async def get_user(self, user_id: str) -> User | None:
        with self._session() as db:
            row = db.get(UserRow, user_id)
        return User.model_validate(row.model_dump()) if row else None

    async def get_user_by_invite_code(self, invite_code: str) -> User | None:
        with self._session() as db:
            row = db.exec(select(UserRow).where(UserRow.invite_code == invite_code)).first()
        return User.model_validate(row.model_dump()) if row else None

    # ---- tasks ----

    async def create_task(self, user_id: str, title: str) -> Task:
        with self._session() as db:
            self._require_user(db, user_id)
            task = Task(user_id=user_id, title=title)
            db.add(TaskRow(**task.model_dump()))
            db.commit()
        return task

    async def get_task(self, task_id: str, user_id: str) -> Task | None:
        with self._session() as db:
            row = db.get(TaskRow, task_id)
        if row is None or row.user_id != user_id:
            return None
        return Task.model_validate(row.model_dump())

    async def list_tasks(self, user_id: str) -> list[Task]:
        with self._session() as db:
            rows = db.exec(
                select(TaskRow)
                .where(TaskRow.user_id == user_id)
                .order_by(TaskRow.created_at.desc())
            ).all()
        return [Task.model_validate(row.model_dump()) for row in rows]

    async def get_active_task(self, user_id: str) -> Task | None:
        with self._session() as db:
            row = db.exec(
                select(TaskRow).where(TaskRow.user_id == user_id, TaskRow.is_active)
            ).first()
        return Task.model_validate(row.model_dump()) if row else None

    async def deactivate_tasks(self, user_id: str) -> int:
        with self._session() as db:
            rows = db.exec(
                select(TaskRow).where(TaskRow.user_id == user_id, TaskRow.is_active)
            ).all()
            for row in rows:
                row.is_active = False
                db.add(row)
            db.commit()
        return len(rows)

    async def set_task_active(self, task_id: str) -> Task:
        with self._session() as db:
            row = db.get(TaskRow, task_id)
            if row is None:
                raise StoreError(f"Unknown task: {task_id}")
            row.is_active = True
            db.add(row)
            db.commit()
        return Task.model_validate(row.model_dump())

    async def delete_task(self, task_id: str) -> bool:
        with self._session() as db:
            row = db.get(TaskRow, task_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
        return True

    # ---- timer sessions ----

    async def insert_timer_session(self, session: TimerSession) -> TimerSession:
        with self._session() as db:
            owner = self._require_user(db, session.user_id)
            if db.get(TimerSessionRow, session.id) is not None:
                raise StoreError(f"Timer session already exists: {session.id}")

            db.add(TimerSessionRow(**session.model_dump()))
            owner.current_session_id = session.id
            db.add(owner)
            db.commit()
        return session.model_copy()

    async def save_timer_session(self, session: TimerSession) -> TimerSession:
        with self._session() as db:
            row = db.get(TimerSessionRow, session.id)
            if row is None:
                raise StoreError(f"Unknown timer session: {session.id}")
            row.sqlmodel_update(session.model_dump(exclude={"id", "created_at"}))
            db.add(row)
            db.commit()
        return session.model_copy()

    async def current_timer_session(self, user_id: str) -> TimerSession | None:
        with self._session() as db:
            user = db.get(UserRow, user_id)
            if user is None or user.current_session_id is None:
                return None
            row = db.get(TimerSessionRow, user.current_session_id)
        return TimerSession.model_validate(row.model_dump()) if row else None

    @staticmethod
    def _require_user(db: Session, user_id: str) -> UserRow:
        user = db.get(UserRow, user_id)
        if user is None:
            raise StoreError(f"Unknown user: {user_id}")
        return user


def open_store(database_url: str | None) -> RecordStore | SqlRecordStore:
    """The SQLite store for ``database_url``, or process memory when unset."""
    if database_url:
        return SqlRecordStore(database_url)
    logger.warning("No database configured; records are kept in memory only")
    return RecordStore()
