"""structlog 配置模块

dev 模式：ConsoleRenderer 可读输出
json 模式：结构化 JSON 输出（生产环境）
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时仅本地日志。
"""

import logging
import os

import structlog

# 第三方库日志降噪（provider 调用与 SQLite 驱动）
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _build_renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """初始化 structlog 配置

    环境变量：
    - EQUIFLOW_LOG_FORMAT: "json" 或 "dev"（默认）
    - EQUIFLOW_LOG_LEVEL: 根 logger 级别（默认 INFO）
    """
    log_format = os.environ.get("EQUIFLOW_LOG_FORMAT", "dev")
    log_level = os.environ.get("EQUIFLOW_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=_build_renderer(log_format),
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app=None) -> bool:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE="true" 时启用（需要 LOGFIRE_TOKEN），
    初始化失败记录告警并退回本地日志。

    Returns:
        True 如果 Logfire 已启用
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return False
    try:
        import logfire

        logfire.configure(service_name="equiflow-gateway")
        if app is not None:
            logfire.instrument_fastapi(app)
        logfire.instrument_httpx()
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error=str(e),
            message="Logfire 初始化失败，降级为纯本地日志",
        )
        return False
    return True
