"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、artifacts_dir，
         profile=full 时额外探测电子签名服务。
"""

from pathlib import Path

import structlog
from equiflow.core.store import verify_wal_mode
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）仅核心检查；full 额外探测电子签名服务",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性"""
    effective_profile = profile or "core"
    checks: dict[str, str] = {}
    all_ok = True

    store_group = getattr(request.app.state, "store_group", None)

    # 1. SQLite 连通性与 WAL 模式
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        cursor = await store_group.read_conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
        checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "disabled"
    except Exception as e:
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    # 2. Artifacts 目录
    try:
        artifacts_path = Path(store_group.artifact_store._artifacts_dir)
        if artifacts_path.is_dir():
            checks["artifacts_dir"] = "ok"
        else:
            checks["artifacts_dir"] = "error: directory does not exist"
            all_ok = False
    except Exception as e:
        checks["artifacts_dir"] = f"error: {e}"
        all_ok = False

    # 3. 电子签名服务
    if effective_profile == "full":
        esign_client = getattr(request.app.state, "esign_client", None)
        if esign_client is None:
            checks["esign"] = "skipped"
        elif await esign_client.health_check():
            checks["esign"] = "ok"
        else:
            log.warning("esign_unreachable")
            checks["esign"] = "unreachable"
            all_ok = False
    else:
        checks["esign"] = "skipped"

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
