"""SignatureMonitor -- 电子签名完成情况的轮询对账

扫描 pending / in_progress 的签名任务，查询 provider 信封状态：
- 无信封 ID：跳过（no_envelope）
- 未完成：仅记录 provider 状态（still_pending）
- 已完成：尽力归档签署文档，随后走与用户完成相同的路径完成任务并解锁后继

每个任务独立处理：单个任务的 provider 异常或超时只记为该任务的 error，
不影响同批其他任务；整轮运行受总时长上限约束。
webhook 通知经 handle_envelope_event 走同一套单任务检查与完成路径。
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import StrEnum

import structlog
from equiflow.core.config import MONITOR_JOB_TIMEOUT_S, MONITOR_TASK_TIMEOUT_S
from equiflow.core.models import (
    OPEN_STATES,
    ActorType,
    Artifact,
    EventType,
    SignatureMetadata,
    Task,
    TaskEvent,
    TaskType,
)
from equiflow.core.store import StoreGroup, TaskStatusConflictError, WriteBatch
from pydantic import BaseModel, Field
from ulid import ULID

from .partition_edit import PartitionEdit, complete_task_snapshot

log = structlog.get_logger()

MONITOR_ACTOR_ID = "signature-monitor"


class MonitorOutcome(StrEnum):
    """单个签名任务的检查结果"""

    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    STILL_PENDING = "still_pending"
    NO_ENVELOPE = "no_envelope"
    ERROR = "error"


class TaskCheckResult(BaseModel):
    """单个任务的检查记录"""

    task_id: str
    owner: str
    outcome: MonitorOutcome
    envelope_id: str | None = None
    provider_status: str | None = None
    artifact_id: str | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class MonitorSummary(BaseModel):
    """一轮监控的汇总"""

    total_tasks: int = 0
    completed: int = 0
    already_completed: int = 0
    still_pending: int = 0
    no_envelope: int = 0
    errors: int = 0
    processing_time_ms: int = 0
    timed_out: bool = False
    results: list[TaskCheckResult] = Field(default_factory=list)

    def record(self, result: TaskCheckResult) -> None:
        self.results.append(result)
        match result.outcome:
            case MonitorOutcome.COMPLETED:
                self.completed += 1
            case MonitorOutcome.ALREADY_COMPLETED:
                self.already_completed += 1
            case MonitorOutcome.STILL_PENDING:
                self.still_pending += 1
            case MonitorOutcome.NO_ENVELOPE:
                self.no_envelope += 1
            case MonitorOutcome.ERROR:
                self.errors += 1


class SignatureMonitor:
    """签名对账任务"""

    def __init__(
        self,
        store_group: StoreGroup,
        esign_client,
        sse_hub=None,
        task_timeout_s: float = MONITOR_TASK_TIMEOUT_S,
        job_timeout_s: float = MONITOR_JOB_TIMEOUT_S,
    ) -> None:
        self._stores = store_group
        self._esign = esign_client
        self._sse_hub = sse_hub
        self._task_timeout_s = task_timeout_s
        self._job_timeout_s = job_timeout_s

    async def list_open_tasks(self) -> list[Task]:
        return await self._stores.task_store.list_tasks_by_type(
            TaskType.SIGNATURE, OPEN_STATES
        )

    async def count_open_tasks(self) -> tuple[int, int]:
        """Returns: (未完成签名任务数, 其中带信封 ID 的数量)"""
        tasks = await self.list_open_tasks()
        with_envelope = sum(1 for t in tasks if _envelope_id(t))
        return len(tasks), with_envelope

    async def run(self) -> MonitorSummary:
        """执行一轮对账（顺序处理，单任务失败相互隔离）"""
        started = time.monotonic()
        deadline = started + self._job_timeout_s
        tasks = await self.list_open_tasks()
        summary = MonitorSummary(total_tasks=len(tasks))

        log.info("signature_monitor_started", total_tasks=len(tasks))

        for task in tasks:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                summary.timed_out = True
                summary.record(
                    self._error(task, "Monitor job deadline exceeded before this task")
                )
                continue
            result = await self._check_isolated(task, min(self._task_timeout_s, remaining))
            summary.record(result)

        summary.processing_time_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "signature_monitor_completed",
            total_tasks=summary.total_tasks,
            completed=summary.completed,
            already_completed=summary.already_completed,
            still_pending=summary.still_pending,
            no_envelope=summary.no_envelope,
            errors=summary.errors,
            timed_out=summary.timed_out,
            processing_time_ms=summary.processing_time_ms,
        )
        return summary

    async def handle_envelope_event(self, envelope_id: str) -> list[TaskCheckResult]:
        """webhook 入口：对持有该信封的未完成签名任务立即对账

        信封状态以 provider 查询结果为准，不信任通知内容；
        完成路径与轮询共用。
        """
        tasks = [t for t in await self.list_open_tasks() if _envelope_id(t) == envelope_id]
        if not tasks:
            log.info("envelope_event_no_open_task", envelope_id=envelope_id)
            return []
        results = [await self._check_isolated(task, self._task_timeout_s) for task in tasks]
        log.info(
            "envelope_event_processed",
            envelope_id=envelope_id,
            outcomes=[r.outcome.value for r in results],
        )
        return results

    async def run_periodically(self, interval_s: float, stop_event: asyncio.Event) -> None:
        """按固定间隔运行，直到 stop_event 被设置"""
        while not stop_event.is_set():
            try:
                await self.run()
            except Exception as e:
                log.error("signature_monitor_run_failed", error=str(e), exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except TimeoutError:
                continue

    # ============================================================
    # 单任务处理
    # ============================================================

    async def _check_isolated(self, task: Task, timeout_s: float) -> TaskCheckResult:
        """单任务检查：provider 异常与超时只记为该任务的 error"""
        try:
            return await self._check_task(task, timeout_s)
        except TimeoutError:
            log.warning(
                "signature_check_timeout",
                task_id=task.task_id,
                envelope_id=_envelope_id(task),
            )
            return self._error(task, "E-signature provider call timed out")
        except Exception as e:
            log.warning(
                "signature_check_failed",
                task_id=task.task_id,
                envelope_id=_envelope_id(task),
                error_type=type(e).__name__,
                error=str(e),
            )
            return self._error(task, str(e) or type(e).__name__)

    async def _check_task(self, task: Task, timeout_s: float) -> TaskCheckResult:
        envelope_id = _envelope_id(task)
        if not envelope_id:
            return TaskCheckResult(
                task_id=task.task_id,
                owner=task.owner.key,
                outcome=MonitorOutcome.NO_ENVELOPE,
            )

        status = await asyncio.wait_for(
            self._esign.get_envelope_status(envelope_id), timeout=timeout_s
        )
        if not status.is_completed:
            await self._record_provider_status(task, status.status)
            return TaskCheckResult(
                task_id=task.task_id,
                owner=task.owner.key,
                outcome=MonitorOutcome.STILL_PENDING,
                envelope_id=envelope_id,
                provider_status=status.status,
            )

        # 归档前确认任务仍未完成，避免并发完成后留下孤立文档
        current = await self._stores.task_store.get_task(task.task_id)
        if current is None or current.is_completed:
            log.info("signature_task_already_completed", task_id=task.task_id)
            return TaskCheckResult(
                task_id=task.task_id,
                owner=task.owner.key,
                outcome=MonitorOutcome.ALREADY_COMPLETED,
                envelope_id=envelope_id,
                provider_status=status.status,
            )

        warnings: list[str] = []
        artifact_id = await self._archive_signed_document(
            task, envelope_id, timeout_s, warnings
        )
        outcome = await self._complete_task(task, status, artifact_id)
        return TaskCheckResult(
            task_id=task.task_id,
            owner=task.owner.key,
            outcome=outcome,
            envelope_id=envelope_id,
            provider_status=status.status,
            artifact_id=artifact_id if outcome == MonitorOutcome.COMPLETED else None,
            warnings=warnings,
        )

    async def _record_provider_status(self, task: Task, provider_status: str) -> None:
        """未完成的信封：仅在 metadata 中记录 provider 状态，不改任务状态"""
        async with self._stores.partition_lock(task.owner):
            current = await self._stores.task_store.get_task(task.task_id)
            if current is None or current.is_completed:
                return
            now = datetime.now(UTC)
            updated = current.model_copy(
                update={
                    "metadata": current.metadata.model_copy(
                        update={
                            "provider_status": provider_status,
                            "last_monitoring_check": now,
                        }
                    ),
                    "updated_at": now,
                }
            )
            batch = WriteBatch()
            batch.update_task(updated, expected_status=current.status)
            batch.append_event(
                TaskEvent.new(
                    task.owner,
                    EventType.SIGNATURE_STATUS_CHECKED,
                    now,
                    actor=ActorType.MONITOR,
                    actor_id=MONITOR_ACTOR_ID,
                    task_id=task.task_id,
                    provider_status=provider_status,
                )
            )
            try:
                await self._stores.commit(batch)
            except TaskStatusConflictError:
                log.info("signature_status_record_skipped", task_id=task.task_id)

    async def _archive_signed_document(
        self,
        task: Task,
        envelope_id: str,
        timeout_s: float,
        warnings: list[str],
    ) -> str | None:
        """尽力归档签署文档，失败记为 warning 且不阻塞完成"""
        try:
            content = await asyncio.wait_for(
                self._esign.download_documents(envelope_id), timeout=timeout_s
            )
            artifact = Artifact(
                artifact_id=str(ULID()),
                task_id=task.task_id,
                ts=datetime.now(UTC),
                name=f"signed-{envelope_id}.pdf",
                mime="application/pdf",
            )
            batch = WriteBatch()
            batch.put_artifact(artifact, content)
            await self._stores.commit(batch)
        except Exception as e:
            log.warning(
                "signed_document_archive_failed",
                task_id=task.task_id,
                envelope_id=envelope_id,
                error=str(e) or type(e).__name__,
            )
            warnings.append(f"Signed document archive failed: {e}")
            return None

        log.info(
            "signed_document_archived",
            task_id=task.task_id,
            artifact_id=artifact.artifact_id,
            size=artifact.size,
        )
        return artifact.artifact_id

    async def _complete_task(self, task: Task, status, artifact_id: str | None) -> MonitorOutcome:
        """与用户完成相同的路径：完成任务并在同一批次内重算分区状态"""
        owner = task.owner
        async with self._stores.partition_lock(owner):
            now = datetime.now(UTC)
            edit = await PartitionEdit.load(self._stores, owner, now)
            current = edit.get(task.task_id)
            if current is None or current.is_completed:
                log.info("signature_task_already_completed", task_id=task.task_id)
                return MonitorOutcome.ALREADY_COMPLETED

            completed = complete_task_snapshot(
                current,
                MONITOR_ACTOR_ID,
                now,
                provider_status=status.status,
                last_monitoring_check=now,
                provider_completed_at=status.completed_at,
                completed_via_monitoring=True,
                signed_document_artifact_id=artifact_id,
            )
            edit.put(completed)
            unblocked = edit.resolve(now, trigger_task_id=task.task_id, via_monitoring=True)

            batch = WriteBatch()
            edit.stage(batch, now, ActorType.MONITOR, MONITOR_ACTOR_ID)
            try:
                await self._stores.commit(batch)
            except TaskStatusConflictError:
                log.info("signature_task_completed_concurrently", task_id=task.task_id)
                return MonitorOutcome.ALREADY_COMPLETED

        if self._sse_hub is not None:
            await self._sse_hub.publish_all(batch.events)

        log.info(
            "signature_task_completed",
            task_id=task.task_id,
            owner=owner.key,
            unblocked=[t.task_id for t in unblocked],
        )
        return MonitorOutcome.COMPLETED

    @staticmethod
    def _error(task: Task, message: str) -> TaskCheckResult:
        return TaskCheckResult(
            task_id=task.task_id,
            owner=task.owner.key,
            outcome=MonitorOutcome.ERROR,
            envelope_id=_envelope_id(task),
            error=message,
        )


def _envelope_id(task: Task) -> str | None:
    if isinstance(task.metadata, SignatureMetadata):
        return task.metadata.envelope_id
    return None
