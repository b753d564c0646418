"""TaskStore SQLite 实现

任务按分区（owner_kind, owner_id）存储，dependencies / metadata 以 JSON 列保存。
此处仅提供数据库操作，不自动提交事务，由调用方（WriteBatch）管理。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import OwnerKind, TaskStatus, TaskType
from ..models.owner import OwnerRef
from ..models.task import Task


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, owner_kind, owner_id, type, title, description,
                               assigned_role, assigned_to, status, sort_order,
                               dependencies, metadata, structure_version,
                               created_at, updated_at, completed_at, completed_by,
                               created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.owner.kind.value,
                task.owner.id,
                task.type.value,
                task.title,
                task.description,
                task.assigned_role.value,
                task.assigned_to,
                task.status.value,
                task.order,
                json.dumps(task.dependencies),
                task.metadata.model_dump_json(),
                task.structure_version,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.completed_at),
                task.completed_by,
                task.created_by,
            ),
        )

    async def update_task(
        self,
        task: Task,
        expected_status: TaskStatus | None = None,
    ) -> int:
        """整行覆盖写可变字段

        Args:
            task: 新的任务快照
            expected_status: 条件更新，仅当库中状态等于该值时写入

        Returns:
            受影响行数（条件不满足时为 0）
        """
        sql = """
            UPDATE tasks
            SET assigned_to = ?, status = ?, sort_order = ?, dependencies = ?,
                metadata = ?, updated_at = ?, completed_at = ?, completed_by = ?
            WHERE task_id = ?
        """
        params: list = [
            task.assigned_to,
            task.status.value,
            task.order,
            json.dumps(task.dependencies),
            task.metadata.model_dump_json(),
            task.updated_at.isoformat(),
            _iso(task.completed_at),
            task.completed_by,
            task.task_id,
        ]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)
        cursor = await self._conn.execute(sql, params)
        return cursor.rowcount

    async def delete_owner_tasks(self, owner: OwnerRef) -> int:
        """删除分区内全部任务（仅迁移使用）"""
        cursor = await self._conn.execute(
            "DELETE FROM tasks WHERE owner_kind = ? AND owner_id = ?",
            (owner.kind.value, owner.id),
        )
        return cursor.rowcount

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._read_conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_owner_tasks(self, owner: OwnerRef) -> list[Task]:
        """查询分区内全部任务，按 order 正序"""
        cursor = await self._read_conn.execute(
            """
            SELECT * FROM tasks
            WHERE owner_kind = ? AND owner_id = ?
            ORDER BY sort_order ASC, task_id ASC
            """,
            (owner.kind.value, owner.id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_tasks_by_type(
        self,
        task_type: TaskType,
        statuses: set[TaskStatus] | None = None,
    ) -> list[Task]:
        """按类型（可选状态集合）跨分区查询任务"""
        if statuses:
            placeholders = ", ".join("?" for _ in statuses)
            cursor = await self._read_conn.execute(
                f"""
                SELECT * FROM tasks
                WHERE type = ? AND status IN ({placeholders})
                ORDER BY owner_kind, owner_id, sort_order
                """,
                (task_type.value, *sorted(s.value for s in statuses)),
            )
        else:
            cursor = await self._read_conn.execute(
                "SELECT * FROM tasks WHERE type = ? ORDER BY owner_kind, owner_id, sort_order",
                (task_type.value,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def has_structure_version(self, owner: OwnerRef, version: str) -> bool:
        """迁移探测：分区内是否已有带新版结构标记的任务"""
        cursor = await self._read_conn.execute(
            """
            SELECT 1 FROM tasks
            WHERE owner_kind = ? AND owner_id = ? AND structure_version = ?
            LIMIT 1
            """,
            (owner.kind.value, owner.id, version),
        )
        return await cursor.fetchone() is not None

    async def list_owners(self) -> list[OwnerRef]:
        """列出所有存在任务的分区"""
        cursor = await self._read_conn.execute(
            "SELECT DISTINCT owner_kind, owner_id FROM tasks ORDER BY owner_kind, owner_id"
        )
        rows = await cursor.fetchall()
        return [OwnerRef(kind=OwnerKind(row[0]), id=row[1]) for row in rows]

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row["task_id"],
            owner=OwnerRef(kind=OwnerKind(row["owner_kind"]), id=row["owner_id"]),
            type=TaskType(row["type"]),
            title=row["title"],
            description=row["description"],
            assigned_role=row["assigned_role"],
            assigned_to=row["assigned_to"],
            status=TaskStatus(row["status"]),
            order=row["sort_order"],
            dependencies=json.loads(row["dependencies"]) if row["dependencies"] else [],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {"kind": row["type"]},
            structure_version=row["structure_version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            completed_by=row["completed_by"],
            created_by=row["created_by"],
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
