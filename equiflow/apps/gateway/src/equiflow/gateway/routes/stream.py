"""SSE 事件流路由

GET /api/stream/owners/{kind}/{owner_id}: 实时推送分区的审计事件。
先推送历史事件（支持 Last-Event-ID 断线重连），再推送新事件，15 秒心跳保活。
前端收到事件后重新拉取任务列表。
"""

import asyncio
import json

from equiflow.core.config import SSE_HEARTBEAT_INTERVAL
from equiflow.core.models import Principal, TaskEvent
from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ..deps import get_current_principal, get_sse_hub, get_store_group
from ..services.owner_context import parse_owner

router = APIRouter()


def _event_to_sse_data(event: TaskEvent) -> dict:
    """将 TaskEvent 转换为 SSE data JSON"""
    return {
        "event_id": event.event_id,
        "owner": event.owner.key,
        "task_id": event.task_id,
        "ts": event.ts.isoformat(),
        "type": event.type.value,
        "actor": event.actor.value,
        "payload": event.payload,
    }


def _to_sse(event: TaskEvent) -> dict:
    return {
        "id": event.event_id,
        "event": event.type.value,
        "data": json.dumps(_event_to_sse_data(event), ensure_ascii=False),
    }


@router.get("/api/stream/owners/{kind}/{owner_id}")
async def stream_owner_events(
    kind: str,
    owner_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store_group=Depends(get_store_group),
    sse_hub=Depends(get_sse_hub),
):
    """分区 SSE 事件流"""
    owner = parse_owner(kind, owner_id)
    last_event_id = request.headers.get("last-event-id")

    async def event_generator():
        # 先订阅再拉取历史，避免两者之间的事件丢失
        queue = await sse_hub.subscribe(owner.key)
        try:
            history = await store_group.event_store.get_events_for_owner(
                owner, after_event_id=last_event_id
            )
            sent = set()
            for event in history:
                sent.add(event.event_id)
                yield _to_sse(event)

            while True:
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                    if event.event_id in sent:
                        continue
                    yield _to_sse(event)
                except TimeoutError:
                    # 心跳保活
                    yield {"comment": "heartbeat"}
        finally:
            await sse_hub.unsubscribe(owner.key, queue)

    return EventSourceResponse(event_generator())
