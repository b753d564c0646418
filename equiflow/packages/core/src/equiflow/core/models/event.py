"""审计事件 Domain Model

events 表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序；同一批次写入的事件与状态变更一起提交。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from .enums import ActorType, EventType
from .owner import OwnerRef

_last_event_ulid: ULID | None = None


def next_event_id() -> str:
    """生成单调递增的 ULID

    同一毫秒内生成的 ULID 随机部分无序，此时在上一个 ID 的基础上加一，
    保证同一进程内 event_id 的字典序与生成顺序一致。
    """
    global _last_event_ulid
    candidate = ULID()
    if _last_event_ulid is not None and candidate <= _last_event_ulid:
        candidate = ULID.from_int(int(_last_event_ulid) + 1)
    _last_event_ulid = candidate
    return str(candidate)


class TaskEvent(BaseModel):
    """审计事件

    task_id 为空表示分区级事件（如迁移、邀请）。
    """

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    owner: OwnerRef = Field(description="所属分区")
    task_id: str | None = Field(default=None, description="关联的 Task ID")
    ts: datetime = Field(description="事件时间戳")
    type: EventType = Field(description="事件类型")
    actor: ActorType = Field(description="操作者类型")
    actor_id: str = Field(default="", description="操作者 ID")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")

    @classmethod
    def new(
        cls,
        owner: OwnerRef,
        type: EventType,
        ts: datetime,
        actor: ActorType = ActorType.USER,
        actor_id: str = "",
        task_id: str | None = None,
        **payload: Any,
    ) -> "TaskEvent":
        """生成带新 ULID 的事件"""
        return cls(
            event_id=next_event_id(),
            owner=owner,
            task_id=task_id,
            ts=ts,
            type=type,
            actor=actor,
            actor_id=actor_id,
            payload=payload,
        )
