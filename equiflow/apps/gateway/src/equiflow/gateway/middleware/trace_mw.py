"""TraceMiddleware -- 绑定任务 / 分区上下文

从路径中提取 task_id（/api/tasks/{task_id}/...）或分区
（/api/owners/{kind}/{owner_id}/...、/api/participations/{id}/...），
绑定到 structlog contextvars，贯穿该请求内的全部日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# /api/tasks/ 下不代表 task_id 的子路由
_TASK_COLLECTION_ROUTES = {"monitor-signatures"}


def extract_trace_context(path: str) -> dict[str, str]:
    """从请求路径提取 task_id / owner 上下文"""
    parts = [p for p in path.split("/") if p]
    context: dict[str, str] = {}
    for i, part in enumerate(parts[:-1]):
        nxt = parts[i + 1]
        if part == "tasks" and nxt not in _TASK_COLLECTION_ROUTES:
            context["task_id"] = nxt
        elif part == "owners" and i + 2 < len(parts):
            context["owner"] = f"{nxt}:{parts[i + 2]}"
        elif part == "participations":
            context["owner"] = f"participant:{nxt}"
    return context


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = extract_trace_context(request.url.path)
        if context:
            structlog.contextvars.bind_contextvars(**context)
        return await call_next(request)
