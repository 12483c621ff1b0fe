"""Tests for post-commit delivery of realtime events and push messages."""

from typing import Any, List

import pytest

from notifications import MulticastResult, TokenRegistry
from outbox import Outbox, PushMessage, RealtimeEvent
from realtime import RealtimeHub


class FakeWebSocket:
    def __init__(self):
        self.sent: List[Any] = []

    async def accept(self):
        pass

    async def send_json(self, data):
        self.sent.append(data)


class BrokenWebSocket(FakeWebSocket):
    async def send_json(self, data):
        raise RuntimeError("connection closed")


class FakePush:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.multicast = []

    def send_multicast(self, tokens, title, body, data=None):
        if self.fail:
            raise RuntimeError("push backend down")
        self.multicast.append((sorted(tokens), title))
        return MulticastResult(success=True, success_count=len(tokens))


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def tokens():
    registry = TokenRegistry()
    registry.save(102, "kitchen-token", "kitchen")
    registry.save(101, "user-token", "user")
    return registry


def test_publish_before_start_is_dropped(hub, tokens):
    outbox = Outbox(hub, FakePush(), tokens)
    assert outbox.publish(RealtimeEvent("new-order", {})) is False


@pytest.mark.asyncio
async def test_event_reaches_room_members(hub, tokens):
    kitchen, customer = FakeWebSocket(), FakeWebSocket()
    await hub.connect(kitchen)
    await hub.connect(customer)
    hub.join(kitchen, "kitchen")
    hub.join(customer, "user", 101)

    outbox = Outbox(hub, FakePush(), tokens)
    await outbox.deliver(RealtimeEvent("new-order", {"orderId": "o1"}, "kitchen"))

    assert kitchen.sent[-1] == {"event": "new-order", "data": {"orderId": "o1"}}
    assert customer.sent == [{"event": "connected", "data": {"message": "Connected to real-time updates"}}]


@pytest.mark.asyncio
async def test_failed_session_is_dropped(hub, tokens):
    broken = BrokenWebSocket()
    hub.connections.add(broken)
    hub.join(broken, "admin")

    delivered = await hub.emit_to_kitchen("chef-call", {"id": "1"})
    assert delivered == 0
    assert broken not in hub.connections
    assert "kitchen" not in hub.rooms


@pytest.mark.asyncio
async def test_push_goes_to_role_tokens(hub, tokens):
    push = FakePush()
    outbox = Outbox(hub, push, tokens)
    await outbox.deliver(PushMessage(title="🍽️ New Order!", body="A: 1x tea"))
    assert push.multicast == [(["kitchen-token"], "🍽️ New Order!")]


@pytest.mark.asyncio
async def test_worker_survives_delivery_failure(hub, tokens):
    kitchen = FakeWebSocket()
    await hub.connect(kitchen)
    hub.join(kitchen, "kitchen")

    outbox = Outbox(hub, FakePush(fail=True), tokens)
    await outbox.start()
    try:
        assert outbox.running
        assert outbox.publish(PushMessage(title="t", body="b"))
        assert outbox.publish(RealtimeEvent("order-deleted", {"orderId": "o1"}, "kitchen"))
        await outbox.join()
    finally:
        await outbox.stop()

    assert not outbox.running
    assert kitchen.sent[-1]["event"] == "order-deleted"
