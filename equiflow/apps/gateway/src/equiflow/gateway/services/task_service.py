"""TaskService -- 任务创建 / 完成 / 签名登记 / 承诺决策 / 迁移

每个流转遵循同一流程：
1. 在任何写入之前完成授权与校验
2. 持有分区锁，重新读取分区任务（避免基于过期快照决策）
3. 在 PartitionEdit 中完成编辑并运行解析器
4. 单批次原子提交，成功后广播审计事件
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from equiflow.core.config import TASK_STRUCTURE_VERSION
from equiflow.core.errors import (
    AuthorizationError,
    NotFoundError,
    PrerequisiteMissingError,
    TaskAlreadyCompletedError,
    TaskBlockedError,
    ValidationError,
)
from equiflow.core.models import (
    ActorType,
    Artifact,
    Commitment,
    CommitmentDecision,
    EventType,
    OwnerRef,
    ParticipationStatus,
    Principal,
    Task,
    TaskEvent,
    TaskStatus,
    TaskType,
)
from equiflow.core.projection import dependencies_satisfied, resolve_statuses
from equiflow.core.store import StoreGroup, WriteBatch
from equiflow.core.templates import (
    DONOR_APPROVE,
    ORGANIZATION_APPROVE,
    build_final_commitment_task,
    build_task_set,
)
from pydantic import BaseModel

from .owner_context import load_owner_context
from .partition_edit import PartitionEdit, commit_and_publish, complete_task_snapshot

log = structlog.get_logger()

# 需要专用入口完成的任务类型
_DEDICATED_COMPLETION_TYPES = {
    TaskType.COMMITMENT_DECISION: "/commitment-decision",
    TaskType.INVITATION: "/api/invitations",
}


class CommitmentDecisionResult(BaseModel):
    """承诺决策结果"""

    task: Task
    decision: CommitmentDecision
    final_commitment_task_id: str | None = None
    commitment_recorded: bool = False


class MigrationResult(BaseModel):
    """任务结构迁移结果"""

    owner: OwnerRef
    already_migrated: bool
    tasks_deleted: int = 0
    tasks_created: int = 0
    tasks: list[Task] = []


def ensure_assignee(task: Task, principal: Principal) -> None:
    """调用者必须是任务指派人或管理员

    Raises:
        AuthorizationError: 非指派人
    """
    if principal.is_admin:
        return
    if task.assigned_to != principal.user_id:
        raise AuthorizationError(
            f"Task {task.task_id} is not assigned to user {principal.user_id}"
        )


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid commitment amount: {value!r}") from e


class TaskService:
    """任务业务服务"""

    def __init__(self, store_group: StoreGroup, sse_hub=None) -> None:
        self._stores = store_group
        self._sse_hub = sse_hub

    # ============================================================
    # 查询
    # ============================================================

    async def list_owner_tasks(self, owner: OwnerRef) -> list[Task]:
        """查询分区任务列表（读侧投影：状态经解析器重算，不写回）"""
        tasks = await self._stores.task_store.list_owner_tasks(owner)
        return resolve_statuses(tasks)

    async def get_task(self, task_id: str) -> Task:
        """查询单个任务

        Raises:
            NotFoundError: 任务不存在
        """
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task with id {task_id} does not exist", code="TASK_NOT_FOUND")
        return task

    async def get_task_detail(
        self, task_id: str
    ) -> tuple[Task, list[TaskEvent], list[Artifact]]:
        """查询任务详情，含审计事件与归档文档"""
        task = await self.get_task(task_id)
        events = await self._stores.event_store.get_events_for_task(task_id)
        artifacts = await self._stores.artifact_store.list_artifacts_for_task(task_id)
        return task, events, artifacts

    async def get_artifact_content(
        self, task_id: str, artifact_id: str
    ) -> tuple[Artifact, bytes]:
        """读取任务下已归档文档的内容

        Raises:
            NotFoundError: 任务不存在 / 文档不属于该任务 / 文件缺失
        """
        await self.get_task(task_id)
        artifact = await self._stores.artifact_store.get_artifact(artifact_id)
        if artifact is None or artifact.task_id != task_id:
            raise NotFoundError(
                f"Artifact {artifact_id} does not exist for task {task_id}",
                code="ARTIFACT_NOT_FOUND",
            )
        content = await self._stores.artifact_store.get_artifact_content(artifact_id)
        if content is None:
            log.error("artifact_content_missing", artifact_id=artifact_id, task_id=task_id)
            raise NotFoundError(
                f"Artifact {artifact_id} content is missing", code="ARTIFACT_NOT_FOUND"
            )
        return artifact, content

    # ============================================================
    # 创建
    # ============================================================

    async def create_task_set(
        self, owner: OwnerRef, principal: Principal
    ) -> tuple[list[Task], bool]:
        """为分区实例化任务集

        Returns:
            (tasks, created) -- created=False 表示分区已有任务，原样返回

        Raises:
            PrerequisiteMissingError: 承载记录不存在
            AuthorizationError: 调用者不是捐赠者 / 管理员
        """
        ctx = await load_owner_context(self._stores, owner)
        ctx.ensure_donor_or_admin(principal)

        async with self._stores.partition_lock(owner):
            existing = await self._stores.task_store.list_owner_tasks(owner)
            if existing:
                return resolve_statuses(existing), False

            now = datetime.now(UTC)
            edit = PartitionEdit(owner, [])
            for task in build_task_set(
                owner,
                donor_id=ctx.donor_id,
                organization_id=ctx.organization_id,
                now=now,
                created_by=principal.user_id,
            ):
                edit.add(task)

            batch = WriteBatch()
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            if ctx.participation is not None:
                batch.save_participation(
                    ctx.participation.model_copy(
                        update={
                            "structure_version": TASK_STRUCTURE_VERSION,
                            "updated_at": now,
                        }
                    )
                )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info("task_set_created", owner=owner.key, task_count=len(edit.tasks()))
        return edit.tasks(), True

    # ============================================================
    # 通用完成
    # ============================================================

    async def complete_task(
        self,
        task_id: str,
        principal: Principal,
        payload: dict[str, Any] | None = None,
    ) -> Task:
        """通用任务完成，并在同一批次内解锁后继任务

        Raises:
            NotFoundError: 任务不存在
            AuthorizationError: 非指派人
            ValidationError: 任务类型需使用专用入口
            TaskAlreadyCompletedError: 任务已完成
            TaskBlockedError: 仍有未完成的依赖
        """
        task = await self.get_task(task_id)
        ensure_assignee(task, principal)
        if task.type in _DEDICATED_COMPLETION_TYPES:
            raise ValidationError(
                f"Task {task_id} of type {task.type.value} must be completed via "
                f"{_DEDICATED_COMPLETION_TYPES[task.type]}"
            )
        if task.is_completed:
            raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")

        owner = task.owner
        async with self._stores.partition_lock(owner):
            now = datetime.now(UTC)
            edit = await PartitionEdit.load(self._stores, owner, now)
            current = self._require_open(edit, task_id)

            completed = complete_task_snapshot(current, principal.user_id, now, payload)
            edit.put(completed)
            unblocked = edit.resolve(now, trigger_task_id=task_id)

            batch = WriteBatch()
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info(
            "task_completed",
            task_id=task_id,
            owner=owner.key,
            completed_by=principal.user_id,
            unblocked=[t.task_id for t in unblocked],
        )
        return edit.get(task_id)

    # ============================================================
    # 电子签名
    # ============================================================

    async def start_signature(
        self,
        task_id: str,
        principal: Principal,
        envelope_id: str,
    ) -> Task:
        """为签名任务登记 provider 信封并置为 in_progress

        登记后签名监控 / webhook 即可据信封 ID 对账。
        同一信封重复登记为幂等成功；签署中更换信封（重发）只改写信封 ID。

        Raises:
            ValidationError: 非签名任务 / 信封 ID 为空
            AuthorizationError: 非指派人
            TaskAlreadyCompletedError: 任务已完成
            TaskBlockedError: 仍有未完成的依赖
        """
        envelope_id = envelope_id.strip()
        if not envelope_id:
            raise ValidationError("envelope_id must not be empty")

        task = await self.get_task(task_id)
        if task.type != TaskType.SIGNATURE:
            raise ValidationError(
                f"Task {task_id} is not a signature task (type={task.type.value})"
            )
        ensure_assignee(task, principal)
        if task.is_completed:
            raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")

        owner = task.owner
        async with self._stores.partition_lock(owner):
            now = datetime.now(UTC)
            edit = await PartitionEdit.load(self._stores, owner, now)
            current = self._require_open(edit, task_id)
            previous_envelope = current.metadata.envelope_id
            if current.status == TaskStatus.IN_PROGRESS and previous_envelope == envelope_id:
                return current

            edit.put(
                current.model_copy(
                    update={
                        "status": TaskStatus.IN_PROGRESS,
                        "metadata": current.metadata.model_copy(
                            update={"envelope_id": envelope_id, "provider_status": "sent"}
                        ),
                        "updated_at": now,
                    }
                )
            )
            batch = WriteBatch()
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.SIGNATURE_STARTED,
                    now,
                    actor_id=principal.user_id,
                    task_id=task_id,
                    envelope_id=envelope_id,
                    previous_envelope_id=previous_envelope,
                )
            )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info(
            "signature_started",
            task_id=task_id,
            owner=owner.key,
            envelope_id=envelope_id,
            previous_envelope_id=previous_envelope,
        )
        return edit.get(task_id)

    # ============================================================
    # 承诺决策（流程唯一分支点）
    # ============================================================

    async def submit_commitment_decision(
        self,
        task_id: str,
        principal: Principal,
        decision: str,
        commitment_data: dict[str, Any] | None = None,
    ) -> CommitmentDecisionResult:
        """提交承诺决策

        commit_now 与 commit_after_valuation 两个分支互斥，决策任务在两者中
        都变为 completed，全部副作用在同一批次内提交。

        Raises:
            ValidationError: 决策值未知 / 任务类型不符 / 最终承诺任务选择延后
            AuthorizationError: 非指派人
            TaskAlreadyCompletedError: 决策任务已完成
            TaskBlockedError: 决策任务仍被依赖阻塞
        """
        try:
            choice = CommitmentDecision(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown commitment decision: {decision}") from e

        task = await self.get_task(task_id)
        if task.type != TaskType.COMMITMENT_DECISION:
            raise ValidationError(
                f"Task {task_id} is not a commitment decision task (type={task.type.value})"
            )
        ensure_assignee(task, principal)
        if task.is_completed:
            raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")

        is_final = getattr(task.metadata, "is_final_commitment", False)
        if is_final and choice != CommitmentDecision.COMMIT_NOW:
            raise ValidationError("The final commitment cannot be deferred again")

        data = dict(commitment_data or {})
        owner = task.owner
        async with self._stores.partition_lock(owner):
            now = datetime.now(UTC)
            edit = await PartitionEdit.load(self._stores, owner, now)
            current = self._require_open(edit, task_id)
            participation = None
            if owner.is_participant:
                participation = await self._stores.participation_store.get_participation(
                    owner.id
                )

            decided = complete_task_snapshot(
                current,
                principal.user_id,
                now,
                decision=choice,
                decided_at=now,
                commitment_data=data or None,
            )
            edit.put(decided)

            batch = WriteBatch()
            result = CommitmentDecisionResult(task=decided, decision=choice)
            participation_update: dict[str, Any] = {"updated_at": now}

            if choice == CommitmentDecision.COMMIT_NOW:
                batch.upsert_commitment(
                    Commitment(
                        owner=owner,
                        amount=_as_float(data.get("amount")),
                        commitment_type=data.get("commitment_type") or data.get("type"),
                        committed_by=principal.user_id,
                        committed_at=now,
                        data=data,
                    )
                )
                result.commitment_recorded = True
                participation_update["status"] = ParticipationStatus.COMMITTED
                if not is_final:
                    participation_update["commitment_timing"] = choice.value
            else:
                final_task = build_final_commitment_task(
                    owner,
                    donor_id=current.assigned_to or principal.user_id,
                    now=now,
                    created_by=principal.user_id,
                )
                edit.add(final_task)
                self._redirect_organization_approval(
                    edit, batch, final_task, now, principal.user_id
                )
                result.final_commitment_task_id = final_task.task_id
                participation_update["status"] = ParticipationStatus.AWAITING_VALUATION
                participation_update["commitment_timing"] = choice.value

            edit.resolve(now, trigger_task_id=task_id)
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.COMMITMENT_DECIDED,
                    now,
                    actor_id=principal.user_id,
                    task_id=task_id,
                    decision=choice.value,
                    is_final_commitment=is_final,
                    final_commitment_task_id=result.final_commitment_task_id,
                )
            )
            if participation is not None:
                batch.save_participation(participation.model_copy(update=participation_update))

            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info(
            "commitment_decided",
            task_id=task_id,
            owner=owner.key,
            decision=choice.value,
            is_final_commitment=is_final,
        )
        result.task = edit.get(task_id)
        return result

    def _redirect_organization_approval(
        self,
        edit: PartitionEdit,
        batch: WriteBatch,
        final_task: Task,
        now: datetime,
        actor_id: str,
    ) -> None:
        """依赖图改写：组织审阅改为依赖最终承诺任务，而非捐赠者审阅"""
        approval_id = edit.owner.task_id(ORGANIZATION_APPROVE)
        approval = edit.get(approval_id)
        if approval is None:
            log.warning(
                "organization_approval_missing",
                owner=edit.owner.key,
                task_id=approval_id,
            )
            return

        donor_approve_id = edit.owner.task_id(DONOR_APPROVE)
        previous = list(approval.dependencies)
        if donor_approve_id not in previous:
            log.warning(
                "organization_approval_unexpected_dependencies",
                task_id=approval_id,
                dependencies=previous,
            )
        edit.put(
            approval.model_copy(
                update={"dependencies": [final_task.task_id], "updated_at": now}
            )
        )
        batch.append_event(
            TaskEvent.new(
                edit.owner,
                EventType.DEPENDENCIES_REWRITTEN,
                now,
                actor_id=actor_id,
                task_id=approval_id,
                from_dependencies=previous,
                to_dependencies=[final_task.task_id],
            )
        )

    # ============================================================
    # 结构迁移
    # ============================================================

    async def migrate_tasks(self, participant_id: str, principal: Principal) -> MigrationResult:
        """把参与记录迁移到版本化任务结构（分区级幂等）

        已带新版结构标记时直接返回成功，不做任何删除或创建；
        否则删除参与分区与关联旧版分区的全部任务，创建完整任务集，
        并重置参与记录状态，全部在同一批次内提交。

        Raises:
            PrerequisiteMissingError: 参与记录或活动不存在
            AuthorizationError: 调用者不是参与者本人 / 管理员
        """
        owner = OwnerRef.participant(participant_id)
        participation = await self._stores.participation_store.get_participation(
            participant_id
        )
        if participation is None:
            raise PrerequisiteMissingError(f"Participation {participant_id} does not exist")
        campaign = await self._stores.campaign_store.get_campaign(participation.campaign_id)
        if campaign is None:
            raise PrerequisiteMissingError(
                f"Campaign {participation.campaign_id} does not exist"
            )
        if principal.user_id != participation.user_id and not principal.is_admin:
            raise AuthorizationError(
                f"User {principal.user_id} cannot migrate participation {participant_id}"
            )

        task_store = self._stores.task_store
        async with self._stores.partition_lock(owner):
            if await task_store.has_structure_version(owner, TASK_STRUCTURE_VERSION):
                log.info("tasks_already_migrated", owner=owner.key)
                return MigrationResult(
                    owner=owner,
                    already_migrated=True,
                    tasks=resolve_statuses(await task_store.list_owner_tasks(owner)),
                )

            now = datetime.now(UTC)
            batch = WriteBatch()
            deleted = len(await task_store.list_owner_tasks(owner))
            batch.delete_owner_tasks(owner)
            legacy_owner = None
            if participation.donation_id:
                legacy_owner = OwnerRef.legacy(participation.donation_id)
                deleted += len(await task_store.list_owner_tasks(legacy_owner))
                batch.delete_owner_tasks(legacy_owner)

            edit = PartitionEdit(owner, [])
            for task in build_task_set(
                owner,
                donor_id=participation.user_id,
                organization_id=campaign.created_by,
                now=now,
                created_by=principal.user_id,
            ):
                edit.add(task)
            edit.stage(batch, now, ActorType.USER, principal.user_id)

            batch.save_participation(
                participation.model_copy(
                    update={
                        "status": ParticipationStatus.INTERESTED,
                        "commitment_timing": None,
                        "structure_version": TASK_STRUCTURE_VERSION,
                        "updated_at": now,
                    }
                )
            )
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.TASKS_MIGRATED,
                    now,
                    actor_id=principal.user_id,
                    tasks_deleted=deleted,
                    tasks_created=len(edit.tasks()),
                    legacy_owner=legacy_owner.key if legacy_owner else None,
                    structure_version=TASK_STRUCTURE_VERSION,
                )
            )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info(
            "tasks_migrated",
            owner=owner.key,
            tasks_deleted=deleted,
            tasks_created=len(edit.tasks()),
        )
        return MigrationResult(
            owner=owner,
            already_migrated=False,
            tasks_deleted=deleted,
            tasks_created=len(edit.tasks()),
            tasks=edit.tasks(),
        )

    # ============================================================
    # 内部
    # ============================================================

    @staticmethod
    def _require_open(edit: PartitionEdit, task_id: str) -> Task:
        """锁内重新校验：任务存在、未完成、依赖已满足"""
        current = edit.get(task_id)
        if current is None:
            raise NotFoundError(f"Task with id {task_id} does not exist", code="TASK_NOT_FOUND")
        if current.is_completed:
            raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")
        if not dependencies_satisfied(current, edit.status_by_id()):
            raise TaskBlockedError(f"Task {task_id} has incomplete dependencies")
        return current
