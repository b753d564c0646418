"""签名监控路由（管理员）

POST /api/tasks/monitor-signatures: 手动触发一轮签名对账，返回逐任务汇总。
GET  /api/tasks/monitor-signatures: 未完成签名任务统计。

注意：本路由需在 /api/tasks/{task_id} 之前注册。
"""

from equiflow.core.models import Principal
from fastapi import APIRouter, Depends

from ..deps import get_signature_monitor, require_admin
from ..services.signature_monitor import SignatureMonitor

router = APIRouter()


@router.post("/api/tasks/monitor-signatures")
async def run_signature_monitor(
    principal: Principal = Depends(require_admin),
    monitor: SignatureMonitor = Depends(get_signature_monitor),
):
    """执行一轮签名对账"""
    summary = await monitor.run()
    return {"success": True, "summary": summary.model_dump(mode="json")}


@router.get("/api/tasks/monitor-signatures")
async def signature_monitor_status(
    principal: Principal = Depends(require_admin),
    monitor: SignatureMonitor = Depends(get_signature_monitor),
):
    """查询待对账的签名任务数量"""
    open_tasks, with_envelope = await monitor.count_open_tasks()
    return {
        "status": "ready",
        "open_signature_tasks": open_tasks,
        "with_envelope": with_envelope,
    }
