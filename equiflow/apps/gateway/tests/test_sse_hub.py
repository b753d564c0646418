"""SSEHub 测试 -- 分区订阅与批次广播"""

import asyncio
import json
from datetime import UTC, datetime

from equiflow.core.models import EventType, OwnerRef, TaskEvent
from equiflow.gateway.routes.stream import _to_sse
from equiflow.gateway.services.sse_hub import SSEHub

OWNER = OwnerRef.participant("camp1_donor1")


def _event(owner: OwnerRef = OWNER, event_type: EventType = EventType.TASK_COMPLETED):
    return TaskEvent.new(
        owner,
        event_type,
        datetime.now(UTC),
        actor_id="donor1",
        task_id=owner.task_id("sign_nda"),
    )


class TestSSEHub:
    async def test_broadcast_reaches_partition_subscribers(self):
        hub = SSEHub()
        queue = await hub.subscribe(OWNER.key)
        other = await hub.subscribe(OwnerRef.legacy("don-1").key)

        event = _event()
        await hub.broadcast(event)

        received = await asyncio.wait_for(queue.get(), timeout=2.0)
        assert received.event_id == event.event_id
        assert other.empty()

    async def test_publish_all_keeps_order(self):
        hub = SSEHub()
        queue = await hub.subscribe(OWNER.key)
        events = [_event(event_type=t) for t in (EventType.TASK_COMPLETED, EventType.STATUS_CHANGED)]

        await hub.publish_all(events)

        assert [queue.get_nowait().event_id for _ in range(2)] == [e.event_id for e in events]

    async def test_unsubscribe(self):
        hub = SSEHub()
        queue = await hub.subscribe(OWNER.key)
        assert hub.subscriber_count(OWNER.key) == 1
        await hub.unsubscribe(OWNER.key, queue)
        assert hub.subscriber_count(OWNER.key) == 0

        await hub.broadcast(_event())
        assert queue.empty()

    async def test_full_queue_is_dropped(self):
        """队列已满的订阅者被移除，不阻塞其他订阅者"""
        hub = SSEHub(queue_maxsize=1)
        slow = await hub.subscribe(OWNER.key)
        await hub.broadcast(_event())

        fast = await hub.subscribe(OWNER.key)
        await hub.broadcast(_event())

        assert hub.subscriber_count(OWNER.key) == 1
        assert slow.qsize() == 1
        assert fast.qsize() == 1


def test_sse_frame_format():
    event = _event()
    frame = _to_sse(event)
    assert frame["id"] == event.event_id
    assert frame["event"] == "TASK_COMPLETED"
    data = json.loads(frame["data"])
    assert data["owner"] == OWNER.key
    assert data["task_id"] == "camp1_donor1_sign_nda"
    assert data["actor"] == "user"
