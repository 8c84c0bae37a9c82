"""Records kept in the store and the models the API speaks."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from pomopair.config import DEFAULT_DURATION_SECONDS, MAX_DURATION_SECONDS

# ============================================================
# ENUMS
# ============================================================


class TimerStatus(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class Phase(StrEnum):
    WORK = "work"
    BREAK = "break"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_ts(dt: datetime | None) -> str | None:
    """Format a UTC datetime as ISO 8601 with Z suffix."""
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


# ============================================================
# WIRE MODELS
# ============================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TaskResponse(BaseModel):
    id: str
    user_id: str
    title: str
    is_active: bool
    created_at: str


class TimerSessionResponse(BaseModel):
    id: str
    user_id: str
    task_id: str | None
    status: TimerStatus
    phase: Phase
    start_time: int | None
    duration_seconds: int
    created_at: str
    remaining_seconds: int


class UserResponse(_CamelModel):
    id: str
    name: str
    invite_code: str = Field(alias="inviteCode")
    room_id: str | None = Field(alias="roomId")


class UserSummary(BaseModel):
    id: str
    name: str


class UserState(_CamelModel):
    user: UserSummary
    active_task: TaskResponse | None = Field(alias="activeTask")
    timer_session: TimerSessionResponse | None = Field(alias="timerSession")


class PartnerState(_CamelModel):
    id: str
    name: str
    active_task: TaskResponse | None = Field(alias="activeTask")
    timer_session: TimerSessionResponse | None = Field(alias="timerSession")


class LoginRequest(_CamelModel):
    invite_code: str | None = Field(None, alias="inviteCode", max_length=200)
    name: str | None = Field(None, max_length=200)


class TaskCreate(BaseModel):
    title: str | None = Field(None, max_length=500)


class TimerStart(_CamelModel):
    phase: Phase = Field(Phase.WORK, description="Timer mode")
    duration_seconds: int = Field(
        DEFAULT_DURATION_SECONDS,
        alias="durationSeconds",
        ge=1,
        le=MAX_DURATION_SECONDS,
        description="Session length (1 sec to 24 hours)",
    )


class AuthResponse(BaseModel):
    user: UserResponse


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]


class TaskEnvelope(BaseModel):
    task: TaskResponse


class SessionEnvelope(BaseModel):
    session: TimerSessionResponse


class PartnerResponse(BaseModel):
    partner: PartnerState | None


class SuccessResponse(BaseModel):
    success: bool = True


class InboundMessage(BaseModel):
    """Client-to-server realtime message; only ``type`` is interpreted."""

    model_config = ConfigDict(extra="allow")

    type: str


# ============================================================
# RECORDS
# ============================================================


class Room(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    invite_code: str
    room_id: str | None = None
    # Most recently created TimerSession; the only one treated as current
    current_session_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_response(self) -> UserResponse:
        return UserResponse(
            id=self.id, name=self.name, invite_code=self.invite_code, room_id=self.room_id
        )

    def to_summary(self) -> UserSummary:
        return UserSummary(id=self.id, name=self.name)


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    is_active: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def to_response(self) -> TaskResponse:
        return TaskResponse(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            is_active=self.is_active,
            created_at=format_ts(self.created_at),
        )


class TimerSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    task_id: str | None = None
    status: TimerStatus = TimerStatus.STOPPED
    phase: Phase = Phase.WORK
    # Milliseconds since epoch; only meaningful while running
    start_time: int | None = None
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    created_at: datetime = Field(default_factory=utcnow)

    def to_response(self, remaining_seconds: int) -> TimerSessionResponse:
        return TimerSessionResponse(
            id=self.id,
            user_id=self.user_id,
            task_id=self.task_id,
            status=self.status,
            phase=self.phase,
            start_time=self.start_time,
            duration_seconds=self.duration_seconds,
            created_at=format_ts(self.created_at),
            remaining_seconds=remaining_seconds,
        )
