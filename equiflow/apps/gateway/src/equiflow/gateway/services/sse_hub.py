"""SSEHub -- 内存中分区事件广播器

每个订阅者持有一个 asyncio.Queue，按分区键（OwnerRef.key）订阅。
批次提交成功后，服务层把该批次的审计事件广播给订阅者，
前端据此重新拉取任务列表（实时视图）。
"""

import asyncio
from collections import defaultdict
from collections.abc import Iterable

from equiflow.core.models import TaskEvent


class SSEHub:
    """SSE 事件广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # owner key -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, owner_key: str) -> asyncio.Queue:
        """订阅指定分区的事件流

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[owner_key].add(queue)
        return queue

    async def unsubscribe(self, owner_key: str, queue: asyncio.Queue) -> None:
        """取消订阅"""
        self._subscribers[owner_key].discard(queue)
        if not self._subscribers[owner_key]:
            del self._subscribers[owner_key]

    def subscriber_count(self, owner_key: str) -> int:
        return len(self._subscribers.get(owner_key, ()))

    async def broadcast(self, event: TaskEvent) -> None:
        """向事件所属分区的所有订阅者广播事件

        队列已满的订阅者被视为失效并移除。
        """
        owner_key = event.owner.key
        dead_queues = []
        for queue in self._subscribers.get(owner_key, set()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        for q in dead_queues:
            self._subscribers[owner_key].discard(q)
        if owner_key in self._subscribers and not self._subscribers[owner_key]:
            del self._subscribers[owner_key]

    async def publish_all(self, events: Iterable[TaskEvent]) -> None:
        """按顺序广播一个批次的全部事件"""
        for event in events:
            await self.broadcast(event)
