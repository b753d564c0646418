"""任务路由

GET  /api/tasks/{task_id}: 任务详情，含审计事件与归档文档。
GET  /api/tasks/{task_id}/artifacts/{artifact_id}: 下载已归档文档。
POST /api/tasks/{task_id}/complete: 通用任务完成（指派人 / 管理员）。
POST /api/tasks/{task_id}/signature: 为签名任务登记 provider 信封，任务进入 in_progress。
POST /api/tasks/{task_id}/commitment-decision: 承诺决策（流程分支点）。
"""

from typing import Any

from equiflow.core.models import Principal
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..deps import get_current_principal, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class CompleteTaskRequest(BaseModel):
    """任务完成请求体"""

    payload: dict[str, Any] | None = Field(default=None, description="可选完成载荷")


class StartSignatureRequest(BaseModel):
    """签名登记请求体"""

    envelope_id: str = Field(description="provider 信封 ID")


class CommitmentDecisionRequest(BaseModel):
    """承诺决策请求体"""

    decision: str = Field(description="commit_now / commit_after_valuation")
    commitment_data: dict[str, Any] | None = Field(
        default=None, description="承诺数据（amount、commitment_type 等）"
    )


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """查询任务详情"""
    task, events, artifacts = await service.get_task_detail(task_id)
    return {
        "task": task.model_dump(mode="json"),
        "events": [
            {
                "event_id": e.event_id,
                "ts": e.ts.isoformat(),
                "type": e.type.value,
                "actor": e.actor.value,
                "actor_id": e.actor_id,
                "payload": e.payload,
            }
            for e in events
        ],
        "artifacts": [
            {
                "artifact_id": a.artifact_id,
                "name": a.name,
                "mime": a.mime,
                "size": a.size,
                "hash": a.hash,
            }
            for a in artifacts
        ],
    }


@router.get("/api/tasks/{task_id}/artifacts/{artifact_id}")
async def download_artifact(
    task_id: str,
    artifact_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """下载归档文档（如签署后的 NDA）"""
    artifact, content = await service.get_artifact_content(task_id, artifact_id)
    return Response(
        content=content,
        media_type=artifact.mime,
        headers={"Content-Disposition": f'attachment; filename="{artifact.name}"'},
    )


@router.post("/api/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    body: CompleteTaskRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """完成任务并解锁后继任务

    - 200: 完成成功
    - 403: 非指派人
    - 404: 任务不存在
    - 409: 任务已完成 / 仍被阻塞
    """
    task = await service.complete_task(
        task_id, principal, body.payload if body else None
    )
    return {"success": True, "task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/signature")
async def start_signature(
    task_id: str,
    body: StartSignatureRequest,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """登记签名信封

    - 200: 登记成功（同一信封重复登记幂等）
    - 400: 非签名任务 / 信封 ID 为空
    - 409: 任务已完成 / 仍被阻塞
    """
    task = await service.start_signature(task_id, principal, body.envelope_id)
    return {"success": True, "task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/commitment-decision")
async def submit_commitment_decision(
    task_id: str,
    body: CommitmentDecisionRequest,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """提交承诺决策（commit_now / commit_after_valuation）"""
    result = await service.submit_commitment_decision(
        task_id, principal, body.decision, body.commitment_data
    )
    return {
        "success": True,
        "decision": result.decision.value,
        "final_commitment_task_id": result.final_commitment_task_id,
        "commitment_recorded": result.commitment_recorded,
        "task": result.task.model_dump(mode="json"),
    }
