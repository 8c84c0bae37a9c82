"""Tests for the realtime hub's registries and fan-out."""

import json

import pytest

from conftest import FakeWebSocket
from pomopair.hub import CLOSE_NOT_AUTHENTICATED, RealtimeHub
from pomopair.models import Phase
from pomopair.pairing import resolve
from pomopair.projection import StateProjector
from pomopair.timer import TimerController

# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def timers(store, clock):
    return TimerController(store, clock=clock)


@pytest.fixture
def hub(store, timers):
    return RealtimeHub(store, StateProjector(store, timers))


@pytest.fixture
async def users(store):
    """Ann and Bo share a room; Cy is alone in another."""
    ann = await resolve(store, "alpha", "Ann")
    bo = await resolve(store, "bravo", "Bo")
    cy = await resolve(store, "charlie", "Cy")
    return ann, bo, cy


async def connect(hub, user, **kwargs) -> FakeWebSocket:
    ws = FakeWebSocket(**kwargs)
    assert await hub.connect(ws, user.id) is not None
    return ws


# ============================================================
# CONNECT / DISCONNECT
# ============================================================


class TestConnect:
    async def test_unknown_user_refused(self, hub):
        ws = FakeWebSocket()
        assert await hub.connect(ws, "nobody") is None
        assert ws.close_code == CLOSE_NOT_AUTHENTICATED
        assert hub.connections == {}

    async def test_missing_identity_refused(self, hub):
        ws = FakeWebSocket()
        assert await hub.connect(ws, None) is None
        assert ws.close_code == CLOSE_NOT_AUTHENTICATED

    async def test_registers_and_joins_room(self, hub, users):
        ann, _, _ = users
        ws = await connect(hub, ann)
        assert hub.connections[ann.id] is ws
        assert hub.rooms[ann.room_id] == {ann.id}
        assert hub.connection_count == 1

    async def test_initial_state_pushed(self, hub, users):
        ann, _, _ = users
        ws = await connect(hub, ann)
        (msg,) = ws.sent
        assert msg["type"] == "user:state"
        assert msg["userId"] == ann.id
        assert msg["data"] == {
            "user": {"id": ann.id, "name": "Ann"},
            "activeTask": None,
            "timerSession": None,
        }

    async def test_partner_connect_refreshes_whole_room(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)

        assert [m["userId"] for m in ann_ws.sent] == [ann.id, bo.id]
        assert [m["userId"] for m in bo_ws.sent] == [bo.id]

    async def test_connect_outside_room_not_seen(self, hub, users):
        ann, _, cy = users
        ann_ws = await connect(hub, ann)
        await connect(hub, cy)
        assert [m["userId"] for m in ann_ws.sent] == [ann.id]

    async def test_reconnect_replaces_connection(self, hub, users):
        ann, _, _ = users
        old = await connect(hub, ann)
        new = await connect(hub, ann)
        assert hub.connections[ann.id] is new

        await hub.notify_user(ann.id)
        assert len(old.sent) == 1
        assert len(new.sent) == 2


class TestDisconnect:
    async def test_removes_from_registries(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        await connect(hub, bo)

        assert hub.disconnect(ann, ann_ws) is True
        assert ann.id not in hub.connections
        assert hub.rooms[ann.room_id] == {bo.id}

    async def test_last_member_drops_room(self, hub, users):
        ann, _, _ = users
        ws = await connect(hub, ann)
        hub.disconnect(ann, ws)
        assert ann.room_id not in hub.rooms

    async def test_no_broadcast_on_disconnect(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)
        before = len(ann_ws.sent)

        hub.disconnect(bo, bo_ws)
        assert len(ann_ws.sent) == before

    async def test_stale_socket_does_not_evict_reconnect(self, hub, users):
        ann, _, _ = users
        old = await connect(hub, ann)
        new = await connect(hub, ann)

        assert hub.disconnect(ann, old) is False
        assert hub.connections[ann.id] is new
        assert ann.id in hub.rooms[ann.room_id]


# ============================================================
# FAN-OUT
# ============================================================


class TestBroadcast:
    async def test_mutation_reaches_room_and_self_only(self, hub, users, timers):
        ann, bo, cy = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)
        cy_ws = await connect(hub, cy)
        for ws in (ann_ws, bo_ws, cy_ws):
            ws.sent.clear()

        await timers.start(ann.id, Phase.WORK, 1500)
        delivered = await hub.notify_user(ann.id)

        assert delivered == 2
        for ws in (ann_ws, bo_ws):
            (msg,) = ws.sent
            assert msg["userId"] == ann.id
            assert msg["data"]["timerSession"]["status"] == "running"
            assert msg["data"]["timerSession"]["remaining_seconds"] == 1500
        assert cy_ws.sent == []

    async def test_state_is_recomputed_each_time(self, hub, users, timers, clock):
        ann, _, _ = users
        ws = await connect(hub, ann)
        await timers.start(ann.id, Phase.WORK, 1500)
        clock.advance(30)
        await hub.notify_user(ann.id)
        assert ws.sent[-1]["data"]["timerSession"]["remaining_seconds"] == 1470

    async def test_closed_socket_skipped(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)
        bo_ws.drop()
        ann_ws.sent.clear()

        assert await hub.notify_user(ann.id) == 1
        assert len(ann_ws.sent) == 1

    async def test_failed_send_isolated(self, hub, users):
        ann, bo, _ = users
        bo_ws = await connect(hub, bo)
        bo_ws.sent.clear()
        ann_ws = FakeWebSocket(fail_sends=True)
        await hub.connect(ann_ws, ann.id)

        assert await hub.notify_user(ann.id) == 1
        assert [m["userId"] for m in bo_ws.sent] == [ann.id, ann.id]

    async def test_send_after_close_is_noop(self, hub, users):
        ann, _, _ = users
        ws = await connect(hub, ann)
        await ws.close()
        assert await hub.send_to_user(ann.id, {"type": "pong"}) is False

    async def test_send_to_unknown_user(self, hub):
        assert await hub.send_to_user("nobody", {"type": "pong"}) is False

    async def test_projection_failure_contained(self, hub, users, monkeypatch):
        ann, _, _ = users
        ws = await connect(hub, ann)

        async def broken(user_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(hub.projector, "user_state", broken)
        assert await hub.notify_user(ann.id) == 0
        assert len(ws.sent) == 1

    async def test_user_without_room_gets_own_state(self, hub, store):
        loner = await store.create_user("Lo", "lone", None)
        ws = await connect(hub, loner)
        assert [m["userId"] for m in ws.sent] == [loner.id]
        assert hub.rooms == {}


# ============================================================
# INBOUND MESSAGES
# ============================================================


class TestInbound:
    async def test_ping_answers_sender_only(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)
        bo_before = len(bo_ws.sent)

        await hub.handle_message(ann_ws, ann.id, json.dumps({"type": "ping"}))
        assert ann_ws.sent[-1] == {"type": "pong"}
        assert len(bo_ws.sent) == bo_before

    async def test_ping_from_replaced_socket_answered_there(self, hub, users):
        ann, _, _ = users
        old = await connect(hub, ann)
        new = await connect(hub, ann)
        new_before = len(new.sent)

        await hub.handle_message(old, ann.id, json.dumps({"type": "ping"}))
        assert old.sent[-1] == {"type": "pong"}
        assert len(new.sent) == new_before

    async def test_state_request_pushes_to_room(self, hub, users):
        ann, bo, _ = users
        ann_ws = await connect(hub, ann)
        bo_ws = await connect(hub, bo)
        ann_ws.sent.clear()
        bo_ws.sent.clear()

        await hub.handle_message(bo_ws, bo.id, json.dumps({"type": "state:request"}))
        assert [m["userId"] for m in ann_ws.sent] == [bo.id]
        assert [m["userId"] for m in bo_ws.sent] == [bo.id]

    async def test_unknown_type_ignored(self, hub, users):
        ann, _, _ = users
        ws = await connect(hub, ann)
        ws.sent.clear()
        await hub.handle_message(ws, ann.id, json.dumps({"type": "banana"}))
        assert ws.sent == []
        assert hub.connections[ann.id] is ws

    @pytest.mark.parametrize("raw", ["not json", "[]", "{}", '{"type": 5}', ""])
    async def test_malformed_dropped(self, hub, users, raw):
        ann, _, _ = users
        ws = await connect(hub, ann)
        ws.sent.clear()
        await hub.handle_message(ws, ann.id, raw)
        assert ws.sent == []
        assert hub.connections[ann.id] is ws
