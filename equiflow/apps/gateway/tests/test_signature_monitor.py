"""SignatureMonitor 测试 -- 签名对账

测试内容：
1. 已完成信封：归档文档、完成任务并解锁后继，记为 MONITOR 操作
2. 单任务 provider 异常 / 超时相互隔离
3. 无信封、未完成、已被并发完成（不归档）
4. 整轮时长上限
5. webhook 信封事件只检查持有该信封的任务
"""

import asyncio
from datetime import UTC, datetime

from equiflow.core.models import ActorType, EventType, TaskStatus
from equiflow.core.templates import COMMITMENT_DECISION, SIGN_NDA
from equiflow.gateway.services.signature_monitor import (
    MONITOR_ACTOR_ID,
    MonitorOutcome,
    SignatureMonitor,
)
from equiflow.provider import ESignatureError, EnvelopeStatus, StubESignatureClient

SIGNED_AT = datetime(2025, 1, 15, 10, 30, tzinfo=UTC)


class FlakyESignatureClient(StubESignatureClient):
    """指定信封查询失败 / 挂起的客户端"""

    def __init__(self, failing: set[str] = frozenset(), hanging: set[str] = frozenset()):
        super().__init__()
        self._failing = failing
        self._hanging = hanging
        self.download_fails = False

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus:
        if envelope_id in self._failing:
            raise ESignatureError("provider returned 500", status_code=500)
        if envelope_id in self._hanging:
            await asyncio.sleep(10)
        return await super().get_envelope_status(envelope_id)

    async def download_documents(self, envelope_id: str) -> bytes:
        if self.download_fails:
            raise ESignatureError("download failed", status_code=502)
        return await super().download_documents(envelope_id)


async def _owner_with_envelope(store_group, task_service, seed_participant, admin, user_id, envelope_id):
    owner = await seed_participant(user_id=user_id)
    await task_service.create_task_set(owner, admin)
    if envelope_id:
        task = await store_group.task_store.get_task(owner.task_id(SIGN_NDA))
        await store_group.task_store.update_task(
            task.model_copy(
                update={"metadata": task.metadata.model_copy(update={"envelope_id": envelope_id})}
            )
        )
        await store_group.conn.commit()
    return owner


class TestSignatureMonitor:
    async def test_failures_are_isolated(
        self, store_group, sse_hub, task_service, seed_participant, admin
    ):
        """一个信封已完成、一个查询失败：total=2, completed=1, errors=1"""
        esign = FlakyESignatureClient(failing={"env-bad"})
        esign.set_status("env-good", "completed", SIGNED_AT)
        good = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-good"
        )
        bad = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor2", "env-bad"
        )

        summary = await SignatureMonitor(store_group, esign, sse_hub).run()

        assert summary.total_tasks == 2
        assert summary.completed == 1
        assert summary.errors == 1
        assert summary.timed_out is False
        by_task = {r.task_id: r for r in summary.results}
        assert by_task[good.task_id(SIGN_NDA)].outcome == MonitorOutcome.COMPLETED
        assert by_task[bad.task_id(SIGN_NDA)].outcome == MonitorOutcome.ERROR
        assert "500" in by_task[bad.task_id(SIGN_NDA)].error

        untouched = await store_group.task_store.get_task(bad.task_id(SIGN_NDA))
        assert untouched.status == TaskStatus.PENDING

    async def test_completion_follows_user_path(
        self, store_group, sse_hub, task_service, seed_participant, admin
    ):
        esign = StubESignatureClient()
        esign.set_status("env-1", "completed", SIGNED_AT)
        owner = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )
        queue = await sse_hub.subscribe(owner.key)

        summary = await SignatureMonitor(store_group, esign, sse_hub).run()
        [result] = summary.results

        task = await store_group.task_store.get_task(owner.task_id(SIGN_NDA))
        assert task.status == TaskStatus.COMPLETED
        assert task.completed_by == MONITOR_ACTOR_ID
        assert task.metadata.completed_via_monitoring is True
        assert task.metadata.provider_completed_at == SIGNED_AT
        assert task.metadata.signed_document_artifact_id == result.artifact_id

        decision = await store_group.task_store.get_task(owner.task_id(COMMITMENT_DECISION))
        assert decision.status == TaskStatus.PENDING
        assert decision.metadata.unblocked_via_monitoring is True

        artifacts = await store_group.artifact_store.list_artifacts_for_task(task.task_id)
        assert [a.name for a in artifacts] == ["signed-env-1.pdf"]

        events = await store_group.event_store.get_events_for_task(task.task_id)
        completed_event = events[-1]
        assert completed_event.type == EventType.TASK_COMPLETED
        assert completed_event.actor == ActorType.MONITOR
        assert queue.qsize() == 2

    async def test_archive_failure_is_warning(
        self, store_group, task_service, seed_participant, admin
    ):
        esign = FlakyESignatureClient()
        esign.download_fails = True
        esign.set_status("env-1", "completed", SIGNED_AT)
        owner = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )

        summary = await SignatureMonitor(store_group, esign).run()
        [result] = summary.results

        assert result.outcome == MonitorOutcome.COMPLETED
        assert result.artifact_id is None
        assert len(result.warnings) == 1
        task = await store_group.task_store.get_task(owner.task_id(SIGN_NDA))
        assert task.status == TaskStatus.COMPLETED

    async def test_no_envelope_and_still_pending(
        self, store_group, task_service, seed_participant, admin
    ):
        esign = StubESignatureClient()
        esign.set_status("env-2", "delivered")
        await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", None
        )
        pending = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor2", "env-2"
        )

        monitor = SignatureMonitor(store_group, esign)
        assert await monitor.count_open_tasks() == (2, 1)
        summary = await monitor.run()

        assert summary.no_envelope == 1
        assert summary.still_pending == 1
        assert summary.completed == 0

        task = await store_group.task_store.get_task(pending.task_id(SIGN_NDA))
        assert task.status == TaskStatus.PENDING
        assert task.metadata.provider_status == "delivered"
        assert task.metadata.last_monitoring_check is not None
        events = await store_group.event_store.get_events_for_task(task.task_id)
        assert events[-1].type == EventType.SIGNATURE_STATUS_CHECKED

    async def test_completed_concurrently(
        self, store_group, task_service, seed_participant, admin
    ):
        """扫描后任务已被用户完成：记为 already_completed，不重复完成"""
        esign = StubESignatureClient()
        esign.set_status("env-1", "completed", SIGNED_AT)
        owner = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )
        monitor = SignatureMonitor(store_group, esign)
        [stale] = await monitor.list_open_tasks()
        await task_service.complete_task(stale.task_id, admin)

        status = await esign.get_envelope_status("env-1")
        assert await monitor._complete_task(stale, status, None) == (
            MonitorOutcome.ALREADY_COMPLETED
        )

        events = await store_group.event_store.get_events_for_task(stale.task_id)
        assert [e.type for e in events].count(EventType.TASK_COMPLETED) == 1
        assert owner.task_id(SIGN_NDA) == stale.task_id

    async def test_no_archive_for_task_completed_after_scan(
        self, store_group, task_service, seed_participant, admin
    ):
        """扫描后任务已完成：不下载、不留下孤立文档"""
        esign = StubESignatureClient()
        esign.set_status("env-1", "completed", SIGNED_AT)
        await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )
        monitor = SignatureMonitor(store_group, esign)
        [stale] = await monitor.list_open_tasks()
        await task_service.complete_task(stale.task_id, admin)

        result = await monitor._check_task(stale, 1)

        assert result.outcome == MonitorOutcome.ALREADY_COMPLETED
        assert result.artifact_id is None
        assert await store_group.artifact_store.list_artifacts_for_task(stale.task_id) == []

    async def test_envelope_event_checks_matching_tasks(
        self, store_group, task_service, seed_participant, admin
    ):
        esign = StubESignatureClient()
        esign.set_status("env-1", "completed", SIGNED_AT)
        owner = await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )
        await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor2", "env-2"
        )
        monitor = SignatureMonitor(store_group, esign)

        [result] = await monitor.handle_envelope_event("env-1")
        assert result.task_id == owner.task_id(SIGN_NDA)
        assert result.outcome == MonitorOutcome.COMPLETED
        assert await monitor.handle_envelope_event("env-unknown") == []
        assert await monitor.count_open_tasks() == (1, 1)

    async def test_per_task_timeout(self, store_group, task_service, seed_participant, admin):
        esign = FlakyESignatureClient(hanging={"env-slow"})
        await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-slow"
        )

        summary = await SignatureMonitor(store_group, esign, task_timeout_s=0.05).run()

        assert summary.errors == 1
        assert "timed out" in summary.results[0].error

    async def test_job_deadline(self, store_group, task_service, seed_participant, admin):
        esign = StubESignatureClient()
        await _owner_with_envelope(
            store_group, task_service, seed_participant, admin, "donor1", "env-1"
        )

        summary = await SignatureMonitor(store_group, esign, job_timeout_s=0).run()

        assert summary.timed_out is True
        assert summary.errors == 1

    async def test_periodic_loop_stops(self, store_group):
        monitor = SignatureMonitor(store_group, StubESignatureClient())
        stop_event = asyncio.Event()
        loop_task = asyncio.create_task(monitor.run_periodically(0.01, stop_event))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(loop_task, timeout=1)
        assert loop_task.done()
