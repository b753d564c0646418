"""参与记录路由

POST /api/participations/{participant_id}/migrate-tasks: 迁移到版本化任务结构（幂等）。
"""

from equiflow.core.models import Principal
from fastapi import APIRouter, Depends

from ..deps import get_current_principal, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


@router.post("/api/participations/{participant_id}/migrate-tasks")
async def migrate_tasks(
    participant_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TaskService = Depends(get_task_service),
):
    """迁移任务结构；已迁移时返回 already_migrated=true 且无任何写入"""
    result = await service.migrate_tasks(participant_id, principal)
    return {
        "success": True,
        "already_migrated": result.already_migrated,
        "tasks_deleted": result.tasks_deleted,
        "tasks_created": result.tasks_created,
        "tasks": [t.model_dump(mode="json") for t in result.tasks],
    }
