import asyncio

import pytest
from httpx import ASGITransport, AsyncClient
from fastapi.websockets import WebSocketState

from pomopair.config import Settings
from pomopair.server import create_app
from pomopair.store import RecordStore

T0 = 1_700_000_000_000


class FakeClock:
    """Wall clock in epoch milliseconds that only moves when told to."""

    def __init__(self, start_ms: int = T0):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float = 0, ms: int = 0):
        self.now += int(seconds * 1000) + ms


class FakeWebSocket:
    """Stands in for a Starlette WebSocket inside the hub."""

    def __init__(self, fail_sends: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: list[dict] = []
        self.close_code: int | None = None
        self.fail_sends = fail_sends

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError("socket write failed")
        self.sent.append(data)

    def drop(self):
        """Simulate the peer going away without a clean close."""
        self.client_state = WebSocketState.DISCONNECTED


class YieldingStore(RecordStore):
    """Suspends on every access so that concurrent handlers interleave."""

    async def get_user_by_invite_code(self, invite_code):
        await asyncio.sleep(0)
        return await super().get_user_by_invite_code(invite_code)

    async def room_member_counts(self):
        await asyncio.sleep(0)
        return await super().room_member_counts()

    async def create_room(self):
        await asyncio.sleep(0)
        return await super().create_room()

    async def create_user(self, name, invite_code, room_id):
        await asyncio.sleep(0)
        return await super().create_user(name, invite_code, room_id)

    async def get_task(self, task_id, user_id):
        await asyncio.sleep(0)
        return await super().get_task(task_id, user_id)

    async def deactivate_tasks(self, user_id):
        await asyncio.sleep(0)
        return await super().deactivate_tasks(user_id)

    async def set_task_active(self, task_id):
        await asyncio.sleep(0)
        return await super().set_task_active(task_id)


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def app(store, clock):
    return create_app(Settings(), store=store, clock=clock)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
