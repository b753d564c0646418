"""原子批量写入 -- 一次流转对应一个 WriteBatch

任务状态变更、新任务创建、依赖改写以及兄弟记录（邀请 / 承诺 / 参与）的更新
在同一 SQLite 事务内提交，任何一步失败则整体回滚，
读者不会看到任务已完成而解锁副作用缺失的中间状态。
"""

from collections import Counter
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..models.artifact import Artifact
from ..models.enums import TaskStatus
from ..models.event import TaskEvent
from ..models.owner import OwnerRef
from ..models.records import (
    Commitment,
    Donation,
    Invitation,
    Participation,
    UserProfile,
)
from ..models.task import Task

if TYPE_CHECKING:
    from . import StoreGroup

BatchOp = Callable[["StoreGroup"], Awaitable[Any]]


class TaskStatusConflictError(RuntimeError):
    """条件更新失败：任务当前状态与预期不符（并发写入的败者）"""

    def __init__(
        self,
        task_id: str,
        expected_status: TaskStatus,
        actual_status: str | None,
    ) -> None:
        super().__init__(
            f"task {task_id} 状态冲突: expected={expected_status}, actual={actual_status}"
        )
        self.task_id = task_id
        self.expected_status = expected_status
        self.actual_status = actual_status


class WriteBatch:
    """待提交的写操作序列

    只记录操作，不触碰数据库；由 commit_batch 在单一事务内按顺序执行。
    counts 记录各类操作次数，供调用方汇总（如迁移的删除 / 创建数量）。
    """

    def __init__(self) -> None:
        self._ops: list[BatchOp] = []
        self.events: list[TaskEvent] = []
        self.counts: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def ops(self) -> list[BatchOp]:
        return list(self._ops)

    def create_task(self, task: Task) -> None:
        self.counts["tasks_created"] += 1
        self._ops.append(lambda sg: sg.task_store.create_task(task))

    def update_task(self, task: Task, expected_status: TaskStatus | None = None) -> None:
        self.counts["tasks_updated"] += 1

        async def _op(sg: "StoreGroup") -> None:
            affected = await sg.task_store.update_task(task, expected_status)
            if affected == 0 and expected_status is not None:
                current = await sg.task_store.get_task(task.task_id)
                raise TaskStatusConflictError(
                    task.task_id,
                    expected_status,
                    current.status.value if current else None,
                )

        self._ops.append(_op)

    def delete_owner_tasks(self, owner: OwnerRef) -> None:
        self.counts["owners_cleared"] += 1
        self._ops.append(lambda sg: sg.task_store.delete_owner_tasks(owner))

    def append_event(self, event: TaskEvent) -> None:
        self.events.append(event)
        self._ops.append(lambda sg: sg.event_store.append_event(event))

    def save_invitation(self, invitation: Invitation) -> None:
        self._ops.append(lambda sg: sg.invitation_store.save_invitation(invitation))

    def save_participation(self, participation: Participation) -> None:
        self._ops.append(
            lambda sg: sg.participation_store.save_participation(participation)
        )

    def save_donation(self, donation: Donation) -> None:
        self._ops.append(lambda sg: sg.donation_store.save_donation(donation))

    def upsert_commitment(self, commitment: Commitment) -> None:
        self._ops.append(lambda sg: sg.commitment_store.upsert_commitment(commitment))

    def save_user(self, user: UserProfile) -> None:
        self._ops.append(lambda sg: sg.user_store.save_user(user))

    def put_artifact(self, artifact: Artifact, content: bytes) -> None:
        self._ops.append(lambda sg: sg.artifact_store.put_artifact(artifact, content))


async def commit_batch(store_group: "StoreGroup", batch: WriteBatch) -> None:
    """在同一事务内原子提交整个批次

    Args:
        store_group: Store 实例组（共享连接与写锁）
        batch: 待提交的写操作

    Raises:
        TaskStatusConflictError: 条件更新失败，整个批次已回滚
        Exception: 其他写入失败，整个批次已回滚
    """
    if not len(batch):
        return
    conn = store_group.conn
    async with store_group.write_lock:
        try:
            for op in batch.ops:
                await op(store_group)
            # 原子提交
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
