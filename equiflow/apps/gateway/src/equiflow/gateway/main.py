"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、外部服务客户端初始化、
可选的进程内签名监控循环、路由注册。
"""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from equiflow.core.config import MONITOR_INTERVAL_S, get_artifacts_dir, get_db_path
from equiflow.core.errors import WorkflowError
from equiflow.core.store import create_store_group
from equiflow.provider import (
    EmailClient,
    ESignatureClient,
    LogEmailClient,
    RemoteAuthVerifier,
    StaticTokenVerifier,
    StubESignatureClient,
    load_provider_config,
)
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import (
    health,
    invitations,
    monitor,
    owners,
    participations,
    stream,
    tasks,
    webhooks,
)
from .services.signature_monitor import SignatureMonitor
from .services.sse_hub import SSEHub

log = structlog.get_logger()


def _build_provider_clients(app: FastAPI) -> None:
    """根据 ProviderConfig 选择电子签名 / 邮件 / 认证客户端"""
    config = load_provider_config()
    app.state.provider_config = config

    if config.esign_mode == "docusign":
        app.state.esign_client = ESignatureClient(
            base_url=config.esign_base_url,
            account_id=config.esign_account_id,
            access_token=config.esign_access_token.get_secret_value(),
            timeout_s=config.esign_timeout_s,
        )
    else:
        app.state.esign_client = StubESignatureClient()

    if config.email_mode == "resend":
        app.state.email_client = EmailClient(
            api_key=config.email_api_key.get_secret_value(),
            sender=config.email_from,
            base_url=config.email_base_url,
            timeout_s=config.email_timeout_s,
        )
    else:
        app.state.email_client = LogEmailClient()

    if config.auth_mode == "remote":
        app.state.auth_verifier = RemoteAuthVerifier(
            base_url=config.auth_base_url,
            timeout_s=config.auth_timeout_s,
        )
    else:
        app.state.auth_verifier = StaticTokenVerifier(config.auth_static_tokens)

    log.info(
        "provider_clients_initialized",
        esign_mode=config.esign_mode,
        email_mode=config.email_mode,
        auth_mode=config.auth_mode,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与外部客户端，关闭时清理"""
    store_group = await create_store_group(get_db_path(), get_artifacts_dir())
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    _build_provider_clients(app)

    # 进程内周期监控（默认关闭，由外部调度触发 POST /api/tasks/monitor-signatures）
    stop_event = asyncio.Event()
    monitor_task: asyncio.Task | None = None
    if MONITOR_INTERVAL_S > 0:
        signature_monitor = SignatureMonitor(
            store_group, app.state.esign_client, app.state.sse_hub
        )
        monitor_task = asyncio.create_task(
            signature_monitor.run_periodically(MONITOR_INTERVAL_S, stop_event)
        )
        log.info("signature_monitor_scheduled", interval_s=MONITOR_INTERVAL_S)

    yield

    stop_event.set()
    if monitor_task is not None:
        monitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor_task

    esign_client = getattr(app.state, "esign_client", None)
    if esign_client is not None:
        await esign_client.close()
    if getattr(app.state, "store_group", None):
        await app.state.store_group.close()


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """WorkflowError → {"error": {"code", "message"}}"""
    log.info(
        "workflow_error",
        code=exc.code,
        http_status=exc.http_status,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Equiflow Gateway",
        version="0.1.0",
        description="Equity donation workflow API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    app.add_exception_handler(WorkflowError, workflow_error_handler)

    # 注册路由（monitor 必须先于 tasks，避免被 /api/tasks/{task_id} 匹配）
    app.include_router(monitor.router, tags=["monitor"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(owners.router, tags=["owners"])
    app.include_router(participations.router, tags=["participations"])
    app.include_router(invitations.router, tags=["invitations"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(webhooks.router, tags=["webhooks"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
