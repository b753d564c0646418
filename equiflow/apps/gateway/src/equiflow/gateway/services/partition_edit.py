"""PartitionEdit -- 单分区内一次流转的内存编辑视图

流程：读取分区全部任务 → 在内存中完成 / 新建 / 改写依赖 → 解析器重算状态
→ 连同审计事件一起写入同一个 WriteBatch。
所有对已有任务的写回都带条件（expected_status = 读取时的状态），
并发写入的败者在提交时得到 TaskStatusConflictError，整个批次回滚。
"""

from datetime import datetime
from typing import Any

import structlog
from equiflow.core.errors import (
    InvalidStatusTransitionError,
    TaskAlreadyCompletedError,
    ValidationError,
)
from equiflow.core.models import (
    ActorType,
    EventType,
    OwnerRef,
    Task,
    TaskEvent,
    TaskStatus,
    validate_transition,
)
from equiflow.core.projection import plan_status_changes, status_change_event
from equiflow.core.store import StoreGroup, TaskStatusConflictError, WriteBatch
from pydantic import ValidationError as PydanticValidationError

log = structlog.get_logger()

# 完成载荷不能覆盖的 metadata 字段
_PROTECTED_METADATA_FIELDS = {
    "kind",
    "completion_payload",
    "unblocked_by",
    "unblocked_at",
    "unblocked_via_monitoring",
    # 仅由签名监控写入
    "provider_status",
    "last_monitoring_check",
    "provider_completed_at",
    "completed_via_monitoring",
    "signed_document_artifact_id",
}


def complete_task_snapshot(
    task: Task,
    completed_by: str,
    now: datetime,
    payload: dict[str, Any] | None = None,
    **metadata_updates: Any,
) -> Task:
    """生成任务的 completed 快照

    payload 中与该类型 metadata 同名的字段会合并进 metadata，
    完整载荷另存于 completion_payload。

    Raises:
        ValidationError: 载荷字段与 metadata 类型不符
    """
    updates: dict[str, Any] = {}
    if payload:
        fields = type(task.metadata).model_fields
        updates.update(
            {
                k: v
                for k, v in payload.items()
                if k in fields and k not in _PROTECTED_METADATA_FIELDS
            }
        )
        updates["completion_payload"] = payload
    updates.update(metadata_updates)

    try:
        metadata = type(task.metadata).model_validate(
            {**task.metadata.model_dump(), **updates}
        )
    except PydanticValidationError as e:
        raise ValidationError(f"完成载荷不合法: {e.errors()[0]['msg']}") from e

    return task.model_copy(
        update={
            "status": TaskStatus.COMPLETED,
            "metadata": metadata,
            "completed_at": now,
            "completed_by": completed_by,
            "updated_at": now,
        }
    )


def _check_transition(task_id: str, from_status: TaskStatus, to_status: TaskStatus) -> None:
    if from_status != to_status and not validate_transition(from_status, to_status):
        raise InvalidStatusTransitionError(
            f"Task {task_id} cannot move from {from_status.value} to {to_status.value}"
        )


class PartitionEdit:
    """单分区任务集的编辑视图

    put / resolve 的每一步状态变化都按 VALID_TRANSITIONS 校验，
    非法流转抛出 InvalidStatusTransitionError，不会进入批次。
    """

    def __init__(self, owner: OwnerRef, tasks: list[Task]) -> None:
        self.owner = owner
        self._original: dict[str, Task] = {t.task_id: t for t in tasks}
        self._current: dict[str, Task] = dict(self._original)
        self._order: list[str] = [t.task_id for t in tasks]
        self._created: set[str] = set()
        self._dirty: set[str] = set()
        # 经 put 显式改写的任务，其状态变化记在操作者名下
        self._explicit: set[str] = set()

    @classmethod
    async def load(
        cls, store_group: StoreGroup, owner: OwnerRef, now: datetime
    ) -> "PartitionEdit":
        """读取分区任务，并先把落后的持久化状态收敛到解析器结果"""
        edit = cls(owner, await store_group.task_store.list_owner_tasks(owner))
        edit.resolve(now)
        return edit

    def get(self, task_id: str) -> Task | None:
        return self._current.get(task_id)

    def tasks(self) -> list[Task]:
        return [self._current[task_id] for task_id in self._order]

    def status_by_id(self) -> dict[str, TaskStatus]:
        return {task_id: t.status for task_id, t in self._current.items()}

    def put(self, task: Task) -> None:
        """替换已有任务的快照"""
        if task.task_id not in self._current:
            raise KeyError(task.task_id)
        _check_transition(task.task_id, self._current[task.task_id].status, task.status)
        self._current[task.task_id] = task
        if task.task_id not in self._created:
            self._dirty.add(task.task_id)
            self._explicit.add(task.task_id)

    def add(self, task: Task) -> None:
        """加入新建任务"""
        if task.task_id in self._current:
            raise ValueError(f"task {task.task_id} 已存在于分区 {self.owner.key}")
        self._current[task.task_id] = task
        self._order.append(task.task_id)
        self._created.add(task.task_id)

    def resolve(
        self,
        now: datetime,
        trigger_task_id: str | None = None,
        via_monitoring: bool = False,
    ) -> list[Task]:
        """对编辑后的任务集运行解析器，返回状态发生变化的任务"""
        changes = plan_status_changes(
            self.tasks(),
            now,
            trigger_task_id=trigger_task_id,
            via_monitoring=via_monitoring,
        )
        for task, _ in changes:
            _check_transition(task.task_id, self._current[task.task_id].status, task.status)
            self._current[task.task_id] = task
            if task.task_id not in self._created:
                self._dirty.add(task.task_id)
        return [task for task, _ in changes]

    def stage(
        self,
        batch: WriteBatch,
        now: datetime,
        actor: ActorType,
        actor_id: str,
    ) -> None:
        """把全部改动与对应的审计事件写入批次

        - 新建任务 → TASK_CREATED
        - 变为 completed → TASK_COMPLETED（记在操作者名下）
        - 其余状态变化 → STATUS_CHANGED
          （经 put 改写的记在操作者名下，解析器产生的记为 SYSTEM）
        """
        for task_id in self._order:
            task = self._current[task_id]
            if task_id in self._created:
                batch.create_task(task)
                batch.append_event(
                    TaskEvent.new(
                        self.owner,
                        EventType.TASK_CREATED,
                        now,
                        actor=actor,
                        actor_id=actor_id,
                        task_id=task_id,
                        task_type=task.type.value,
                        status=task.status.value,
                        dependencies=list(task.dependencies),
                    )
                )
                continue
            if task_id not in self._dirty:
                continue

            original = self._original[task_id]
            batch.update_task(task, expected_status=original.status)
            if task.status == original.status:
                continue
            if task.status == TaskStatus.COMPLETED:
                batch.append_event(
                    TaskEvent.new(
                        self.owner,
                        EventType.TASK_COMPLETED,
                        now,
                        actor=actor,
                        actor_id=actor_id,
                        task_id=task_id,
                        from_status=original.status.value,
                        completed_by=task.completed_by,
                    )
                )
            elif task_id in self._explicit:
                batch.append_event(
                    status_change_event(task, original.status, now, actor=actor, actor_id=actor_id)
                )
            else:
                batch.append_event(status_change_event(task, original.status, now))


async def commit_and_publish(
    store_group: StoreGroup,
    batch: WriteBatch,
    sse_hub=None,
) -> None:
    """原子提交批次，成功后把审计事件广播给 SSE 订阅者

    Raises:
        TaskAlreadyCompletedError: 条件更新失败（任务已被并发写入者修改）
    """
    try:
        await store_group.commit(batch)
    except TaskStatusConflictError as e:
        log.warning(
            "task_status_conflict",
            task_id=e.task_id,
            expected_status=e.expected_status,
            actual_status=e.actual_status,
        )
        raise TaskAlreadyCompletedError(
            f"Task {e.task_id} was modified concurrently (status={e.actual_status})"
        ) from e

    if sse_hub is not None:
        await sse_hub.publish_all(batch.events)
