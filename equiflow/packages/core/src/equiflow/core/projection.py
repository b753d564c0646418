"""依赖解析 Projection -- 由依赖关系推导任务的有效状态

resolve_statuses 是纯函数，服务端写入路径与展示读取路径共用同一实现。
展示端的重算是最终一致的读侧投影：并发写入后可能短暂落后于持久化状态，
下一次写入或刷新即收敛，它从不作为第二个权威来源写回。

规则：
- completed 为终态，不做任何修改
- 任一依赖未 completed（含依赖 ID 不存在）→ blocked
- 依赖全部 completed 且当前为 blocked → pending；in_progress 保持不变
- 无依赖的任务不会被强制置为 blocked
"""

import time
from collections.abc import Iterable, Mapping
from datetime import datetime

import structlog

from .models.enums import ActorType, EventType, TaskStatus
from .models.event import TaskEvent
from .models.owner import OwnerRef
from .models.task import Task
from .store.transaction import WriteBatch

log = structlog.get_logger()


def dependencies_satisfied(task: Task, status_by_id: Mapping[str, TaskStatus]) -> bool:
    """任务的全部依赖是否均已 completed（按 ID 精确解析）"""
    return all(
        status_by_id.get(dep_id) == TaskStatus.COMPLETED for dep_id in task.dependencies
    )


def resolve_status(task: Task, status_by_id: Mapping[str, TaskStatus]) -> TaskStatus:
    """计算单个任务的有效状态"""
    if task.status == TaskStatus.COMPLETED or not task.dependencies:
        return task.status
    if not dependencies_satisfied(task, status_by_id):
        return TaskStatus.BLOCKED
    if task.status == TaskStatus.BLOCKED:
        return TaskStatus.PENDING
    return task.status


def resolve_statuses(tasks: Iterable[Task]) -> list[Task]:
    """对同一分区的任务集合重算状态（纯函数，幂等）

    Args:
        tasks: 同一分区的全部任务

    Returns:
        新的任务列表，顺序与输入一致；状态未变的任务原样返回
    """
    task_list = list(tasks)
    status_by_id = {t.task_id: t.status for t in task_list}
    resolved: list[Task] = []
    for task in task_list:
        new_status = resolve_status(task, status_by_id)
        if new_status == task.status:
            resolved.append(task)
        else:
            resolved.append(task.model_copy(update={"status": new_status}))
    return resolved


def plan_status_changes(
    tasks: Iterable[Task],
    now: datetime,
    trigger_task_id: str | None = None,
    via_monitoring: bool = False,
) -> list[tuple[Task, TaskStatus]]:
    """计算解锁 / 阻塞变更（供写入路径使用）

    Args:
        tasks: 分区内全部任务（已包含本次流转写入后的快照）
        now: 变更时间
        trigger_task_id: 触发本次解锁的任务 ID，写入被解锁任务的 metadata
        via_monitoring: 是否由签名监控触发

    Returns:
        [(更新后的任务, 原状态)]，仅包含状态发生变化的任务
    """
    task_list = list(tasks)
    changes: list[tuple[Task, TaskStatus]] = []
    for before, after in zip(task_list, resolve_statuses(task_list), strict=True):
        if after.status == before.status:
            continue
        update: dict = {"updated_at": now}
        if before.status == TaskStatus.BLOCKED and after.status != TaskStatus.BLOCKED:
            update["metadata"] = after.metadata.model_copy(
                update={
                    "unblocked_by": trigger_task_id,
                    "unblocked_at": now,
                    "unblocked_via_monitoring": via_monitoring,
                }
            )
        changes.append((after.model_copy(update=update), before.status))
    return changes


def status_change_event(
    task: Task,
    from_status: TaskStatus,
    now: datetime,
    actor: ActorType = ActorType.SYSTEM,
    actor_id: str = "",
) -> TaskEvent:
    """构造 STATUS_CHANGED 审计事件"""
    return TaskEvent.new(
        task.owner,
        EventType.STATUS_CHANGED,
        now,
        actor=actor,
        actor_id=actor_id,
        task_id=task.task_id,
        from_status=from_status.value,
        to_status=task.status.value,
    )


async def reconcile_owner(store_group, owner: OwnerRef, now: datetime) -> int:
    """对单个分区重跑解析并持久化差异

    Returns:
        状态发生变化的任务数
    """
    tasks = await store_group.task_store.list_owner_tasks(owner)
    changes = plan_status_changes(tasks, now)
    if not changes:
        return 0

    batch = WriteBatch()
    for task, from_status in changes:
        batch.update_task(task, expected_status=from_status)
        batch.append_event(status_change_event(task, from_status, now))
    await store_group.commit(batch)
    return len(changes)


async def reconcile_all(store_group, now: datetime) -> int:
    """对所有分区重跑解析（维护命令）

    Returns:
        状态发生变化的任务总数
    """
    start_time = time.monotonic()
    owners = await store_group.task_store.list_owners()

    await log.ainfo("status_reconcile_started", owner_count=len(owners))

    changed = 0
    for owner in owners:
        changed += await reconcile_owner(store_group, owner, now)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "status_reconcile_completed",
        owner_count=len(owners),
        changed_count=changed,
        elapsed_ms=elapsed_ms,
    )
    return changed
