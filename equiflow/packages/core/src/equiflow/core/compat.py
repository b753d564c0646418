"""旧版依赖 ID 兼容转换 -- 一次性修复工具

旧创建路径写入的依赖 ID 可能在当前分区内不存在（任务 ID 已迁移）。
解析器只按 ID 精确解析，缺失依赖视为未满足；此模块把这类悬空引用
一次性改写为可直接解析的 ID，仅在迁移 / 维护命令中调用。

匹配规则：取依赖 ID 第一个 '_' 之后的后缀，
在同一分区中查找 ID 以 `_{后缀}` 结尾的任务，找不到时按任务类型（含旧类型别名）匹配；
仅当恰好命中一个候选时改写，否则保持原样并记录告警。
"""

from collections.abc import Iterable
from datetime import datetime

import structlog

from .models.enums import ActorType, EventType, TaskType
from .models.event import TaskEvent
from .models.task import Task
from .store.transaction import WriteBatch

log = structlog.get_logger()

# 旧版任务类型名 -> 当前类型
LEGACY_TYPE_ALIASES: dict[str, TaskType] = {
    "docusign_signature": TaskType.SIGNATURE,
    "appraisal_review": TaskType.DOCUMENT_REVIEW,
    "upload": TaskType.DOCUMENT_UPLOAD,
    "other": TaskType.GENERIC,
}


def _candidates(dep_id: str, tasks: list[Task]) -> list[Task]:
    _, sep, suffix = dep_id.partition("_")
    if not sep or not suffix:
        return []

    by_suffix = [t for t in tasks if t.task_id.endswith(f"_{suffix}")]
    if by_suffix:
        return by_suffix

    task_type = LEGACY_TYPE_ALIASES.get(suffix)
    if task_type is None and suffix in {t.value for t in TaskType}:
        task_type = TaskType(suffix)
    if task_type is None:
        return []
    return [t for t in tasks if t.type == task_type]


def translate_legacy_dependencies(tasks: Iterable[Task]) -> list[tuple[Task, list[str]]]:
    """计算同一分区内需要改写依赖的任务（纯函数）

    Returns:
        [(改写后的任务, 原依赖列表)]
    """
    task_list = list(tasks)
    known_ids = {t.task_id for t in task_list}
    rewrites: list[tuple[Task, list[str]]] = []

    for task in task_list:
        new_deps: list[str] = []
        changed = False
        for dep_id in task.dependencies:
            if dep_id in known_ids:
                new_deps.append(dep_id)
                continue
            candidates = [c for c in _candidates(dep_id, task_list) if c.task_id != task.task_id]
            if len(candidates) == 1:
                new_deps.append(candidates[0].task_id)
                changed = True
            else:
                log.warning(
                    "legacy_dependency_unresolved",
                    task_id=task.task_id,
                    dependency_id=dep_id,
                    candidate_count=len(candidates),
                )
                new_deps.append(dep_id)
        if changed:
            rewrites.append(
                (task.model_copy(update={"dependencies": new_deps}), list(task.dependencies))
            )
    return rewrites


async def repair_dependencies(store_group, now: datetime) -> int:
    """对所有分区执行一次性依赖改写

    Returns:
        改写的任务数
    """
    repaired = 0
    for owner in await store_group.task_store.list_owners():
        tasks = await store_group.task_store.list_owner_tasks(owner)
        rewrites = translate_legacy_dependencies(tasks)
        if not rewrites:
            continue

        batch = WriteBatch()
        for task, old_deps in rewrites:
            batch.update_task(task.model_copy(update={"updated_at": now}))
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.DEPENDENCIES_REWRITTEN,
                    now,
                    actor=ActorType.SYSTEM,
                    task_id=task.task_id,
                    old_dependencies=old_deps,
                    new_dependencies=task.dependencies,
                    reason="legacy_id_translation",
                )
            )
        await store_group.commit(batch)
        repaired += len(rewrites)
        log.info("legacy_dependencies_repaired", owner=owner.key, task_count=len(rewrites))
    return repaired
