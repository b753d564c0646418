"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store、服务与调用者身份

Store / 外部客户端实例通过 app.state 管理，在 lifespan 中初始化/清理；
服务对象按请求构造。调用者身份由认证服务校验 bearer 凭证后得到。
"""

import hmac

import structlog
from equiflow.core.errors import AuthenticationError, AuthorizationError
from equiflow.core.models import Principal, UserRole
from equiflow.core.store import StoreGroup
from equiflow.provider import AuthServiceError
from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .services.invitation_service import InvitationService
from .services.signature_monitor import SignatureMonitor
from .services.sse_hub import SSEHub
from .services.task_service import TaskService

log = structlog.get_logger()

_bearer = HTTPBearer(auto_error=False)


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_sse_hub(request: Request) -> SSEHub:
    """从 app.state 获取 SSEHub 实例"""
    return request.app.state.sse_hub


def get_task_service(
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
) -> TaskService:
    return TaskService(store_group, sse_hub)


def get_invitation_service(
    request: Request,
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
) -> InvitationService:
    provider_config = getattr(request.app.state, "provider_config", None)
    return InvitationService(
        store_group,
        email_client=getattr(request.app.state, "email_client", None),
        sse_hub=sse_hub,
        app_base_url=provider_config.app_base_url if provider_config else "http://localhost:3000",
    )


def get_signature_monitor(
    request: Request,
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
) -> SignatureMonitor:
    return SignatureMonitor(store_group, request.app.state.esign_client, sse_hub)


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    store_group: StoreGroup = Depends(get_store_group),
) -> Principal:
    """校验 bearer 凭证，返回调用者身份

    角色优先取认证服务的声明，缺省时回退到本地用户档案。

    Raises:
        AuthenticationError: 缺少凭证、凭证无效或邮箱未验证
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer credentials")

    verifier = request.app.state.auth_verifier
    try:
        identity = await verifier.verify(credentials.credentials)
    except AuthServiceError as e:
        log.info("authentication_failed", status_code=e.status_code, error=str(e))
        raise AuthenticationError("Invalid bearer credentials") from e
    if not identity.email_verified:
        raise AuthenticationError("Email address is not verified")

    role: UserRole | None = None
    if identity.role:
        try:
            role = UserRole(identity.role)
        except ValueError:
            log.warning("unknown_role_claim", user_id=identity.user_id, role=identity.role)
    if role is None:
        profile = await store_group.user_store.get_user(identity.user_id)
        role = profile.role if profile else None

    structlog.contextvars.bind_contextvars(user_id=identity.user_id)
    return Principal(user_id=identity.user_id, email=identity.email, role=role)


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Raises: AuthorizationError 非管理员"""
    if not principal.is_admin:
        raise AuthorizationError("Admin role required")
    return principal


async def verify_esign_webhook(
    request: Request,
    secret: str | None = Header(default=None, alias="X-Esign-Webhook-Secret"),
) -> None:
    """校验 webhook 共享密钥；未配置密钥时拒绝所有请求

    Raises:
        AuthenticationError: 密钥缺失或不匹配
    """
    provider_config = getattr(request.app.state, "provider_config", None)
    expected = (
        provider_config.esign_webhook_secret.get_secret_value() if provider_config else ""
    )
    if not expected:
        log.warning("esign_webhook_secret_not_configured")
        raise AuthenticationError("E-signature webhook is not configured")
    if not secret or not hmac.compare_digest(secret, expected):
        raise AuthenticationError("Invalid webhook secret")
