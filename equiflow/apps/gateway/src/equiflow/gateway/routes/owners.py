"""分区任务集路由

POST /api/owners/{kind}/{owner_id}/tasks: 为参与 / 旧版捐赠记录创建任务集（幂等）。
GET  /api/owners/{kind}/{owner_id}/tasks: 分区任务列表（按 order，状态经解析器投影）。
"""

from equiflow.core.models import Principal
from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from ..deps import get_current_principal, get_task_service
from ..services.owner_context import parse_owner
from ..services.task_service import TaskService

router = APIRouter()


@router.post("/api/owners/{kind}/{owner_id}/tasks")
async def create_task_set(
    kind: str,
    owner_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """创建任务集

    - 201: 新建
    - 200: 分区已有任务，返回现有任务
    """
    owner = parse_owner(kind, owner_id)
    tasks, created = await service.create_task_set(owner, principal)
    return JSONResponse(
        status_code=201 if created else 200,
        content={
            "owner": owner.model_dump(mode="json"),
            "created": created,
            "tasks": [t.model_dump(mode="json") for t in tasks],
        },
    )


@router.get("/api/owners/{kind}/{owner_id}/tasks")
async def list_owner_tasks(
    kind: str,
    owner_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """查询分区任务列表"""
    owner = parse_owner(kind, owner_id)
    tasks = await service.list_owner_tasks(owner)
    return {
        "owner": owner.model_dump(mode="json"),
        "tasks": [t.model_dump(mode="json") for t in tasks],
    }
