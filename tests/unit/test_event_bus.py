from __future__ import annotations

import asyncio

import pytest
from domain.coordination import AgentReady, AgentReconnecting, EventBus


@pytest.mark.asyncio
async def test_every_subscriber_sees_events_in_order():
    bus = EventBus()
    q1, q2 = bus.subscribe("one"), bus.subscribe("two")

    await bus.publish(AgentReady("a1"))
    await bus.publish(AgentReconnecting("a1"))

    for q in (q1, q2):
        assert [q.get_nowait(), q.get_nowait()] == [AgentReady("a1"), AgentReconnecting("a1")]


def test_duplicate_subscriber_name_rejected():
    bus = EventBus()
    bus.subscribe("one")
    with pytest.raises(ValueError):
        bus.subscribe("one")


def test_publish_nowait_reports_drops_when_full():
    bus = EventBus(maxsize=1)
    bus.subscribe("slow")
    assert bus.publish_nowait(AgentReady("a1")) is True
    assert bus.publish_nowait(AgentReady("a2")) is False


@pytest.mark.asyncio
async def test_consumer_survives_handler_errors():
    bus = EventBus()
    q = bus.subscribe("c")
    seen = []

    async def handler(event):
        seen.append(event.agent_id)
        if event.agent_id == "bad":
            raise RuntimeError("boom")

    task = asyncio.create_task(EventBus.consume(q, handler))
    await bus.publish(AgentReady("bad"))
    await bus.publish(AgentReady("good"))
    await asyncio.wait_for(bus.drain(), 1.0)

    assert seen == ["bad", "good"]
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
