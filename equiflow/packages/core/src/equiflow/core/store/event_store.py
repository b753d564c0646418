"""EventStore SQLite 实现 -- 审计轨迹

事件表 append-only：只允许插入，不允许更新或删除。
event_id 为 ULID，按 event_id 排序即时间顺序。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import ActorType, EventType, OwnerKind
from ..models.event import TaskEvent
from ..models.owner import OwnerRef


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def append_event(self, event: TaskEvent) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO events (event_id, owner_kind, owner_id, task_id, ts, type,
                                actor, actor_id, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.owner.kind.value,
                event.owner.id,
                event.task_id,
                event.ts.isoformat(),
                event.type.value,
                event.actor.value,
                event.actor_id,
                json.dumps(event.payload, ensure_ascii=False, default=str),
            ),
        )

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件，按时间正序"""
        cursor = await self._read_conn.execute(
            "SELECT * FROM events WHERE task_id = ? ORDER BY event_id ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_for_owner(
        self,
        owner: OwnerRef,
        after_event_id: str | None = None,
    ) -> list[TaskEvent]:
        """查询分区的事件；after_event_id 用于 SSE 断线重连增量拉取

        利用 ULID 的字典序特性，event_id > after_event_id 即为后续事件。
        """
        if after_event_id:
            cursor = await self._read_conn.execute(
                """
                SELECT * FROM events
                WHERE owner_kind = ? AND owner_id = ? AND event_id > ?
                ORDER BY event_id ASC
                """,
                (owner.kind.value, owner.id, after_event_id),
            )
        else:
            cursor = await self._read_conn.execute(
                """
                SELECT * FROM events
                WHERE owner_kind = ? AND owner_id = ?
                ORDER BY event_id ASC
                """,
                (owner.kind.value, owner.id),
            )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> TaskEvent:
        """将数据库行转换为 TaskEvent 模型"""
        payload = json.loads(row["payload"]) if row["payload"] else {}
        return TaskEvent(
            event_id=row["event_id"],
            owner=OwnerRef(kind=OwnerKind(row["owner_kind"]), id=row["owner_id"]),
            task_id=row["task_id"],
            ts=datetime.fromisoformat(row["ts"]),
            type=EventType(row["type"]),
            actor=ActorType(row["actor"]),
            actor_id=row["actor_id"],
            payload=payload,
        )
