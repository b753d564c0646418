"""Equiflow Provider -- 外部服务调用抽象层

packages/provider 的公开接口导出：电子签名、邮件、认证服务客户端。
"""

# 认证
from .auth import RemoteAuthVerifier, StaticTokenVerifier, VerifiedIdentity

# 配置
from .config import ProviderConfig, load_provider_config

# 电子签名
from .esign import EnvelopeStatus, ESignatureClient, StubESignatureClient

# 异常
from .exceptions import (
    AuthServiceError,
    EmailDeliveryError,
    ESignatureError,
    ProviderError,
)

# 邮件
from .mailer import EmailClient, LogEmailClient, render_invitation_email

__all__ = [
    "EnvelopeStatus",
    "ESignatureClient",
    "StubESignatureClient",
    "EmailClient",
    "LogEmailClient",
    "render_invitation_email",
    "RemoteAuthVerifier",
    "StaticTokenVerifier",
    "VerifiedIdentity",
    "ProviderConfig",
    "load_provider_config",
    "ProviderError",
    "ESignatureError",
    "EmailDeliveryError",
    "AuthServiceError",
]
