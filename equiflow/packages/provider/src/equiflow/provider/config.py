"""ProviderConfig -- 外部服务配置加载

从环境变量加载电子签名、邮件、认证服务的连接配置与运行模式。
"""

import json
import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        EQUIFLOW_ESIGN_MODE: 电子签名模式（docusign / stub）
        ESIGN_BASE_URL / ESIGN_ACCOUNT_ID / ESIGN_ACCESS_TOKEN / ESIGN_TIMEOUT_S
        ESIGN_WEBHOOK_SECRET: 电子签名 webhook 共享密钥，为空时拒绝所有 webhook 请求
        EQUIFLOW_EMAIL_MODE: 邮件模式（resend / log）
        EMAIL_BASE_URL / EMAIL_API_KEY / EMAIL_FROM / EMAIL_TIMEOUT_S
        EQUIFLOW_AUTH_MODE: 认证模式（remote / static）
        AUTH_BASE_URL / AUTH_TIMEOUT_S / AUTH_STATIC_TOKENS
        EQUIFLOW_APP_BASE_URL: 邀请邮件中的链接前缀
    """

    esign_mode: Literal["docusign", "stub"] = Field(
        default="stub",
        description="电子签名模式：docusign / stub",
    )
    esign_base_url: str = Field(
        default="https://demo.docusign.net/restapi",
        description="电子签名 REST API 基础 URL",
    )
    esign_account_id: str = Field(default="", description="电子签名账户 ID")
    esign_access_token: SecretStr = Field(
        default=SecretStr(""),
        description="电子签名访问令牌",
    )
    esign_timeout_s: int = Field(default=10, ge=1, description="电子签名调用超时（秒）")
    esign_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="电子签名 webhook 共享密钥（X-Esign-Webhook-Secret 请求头）",
    )

    email_mode: Literal["resend", "log"] = Field(
        default="log",
        description="邮件模式：resend / log",
    )
    email_base_url: str = Field(
        default="https://api.resend.com",
        description="邮件 API 基础 URL",
    )
    email_api_key: SecretStr = Field(default=SecretStr(""), description="邮件 API 密钥")
    email_from: str = Field(
        default="Equiflow <noreply@equiflow.local>",
        description="发件人",
    )
    email_timeout_s: int = Field(default=10, ge=1, description="邮件调用超时（秒）")

    auth_mode: Literal["remote", "static"] = Field(
        default="static",
        description="认证模式：remote / static",
    )
    auth_base_url: str = Field(
        default="http://localhost:9000",
        description="认证服务基础 URL",
    )
    auth_timeout_s: int = Field(default=5, ge=1, description="认证调用超时（秒）")
    auth_static_tokens: dict[str, dict] = Field(
        default_factory=dict,
        description="static 模式下 token -> {user_id, email, email_verified, role} 映射（开发用）",
    )

    app_base_url: str = Field(
        default="http://localhost:3000",
        description="前端应用基础 URL（邀请链接）",
    )


def _int_env(kwargs: dict, env_var: str, field: str, fallback: int) -> None:
    if val := os.environ.get(env_var):
        try:
            kwargs[field] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var=env_var,
                value=val,
                fallback=fallback,
            )
            # 使用默认值，不阻塞启动


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("EQUIFLOW_ESIGN_MODE"):
        kwargs["esign_mode"] = val
    if val := os.environ.get("ESIGN_BASE_URL"):
        kwargs["esign_base_url"] = val
    if val := os.environ.get("ESIGN_ACCOUNT_ID"):
        kwargs["esign_account_id"] = val
    if val := os.environ.get("ESIGN_ACCESS_TOKEN"):
        kwargs["esign_access_token"] = SecretStr(val)
    _int_env(kwargs, "ESIGN_TIMEOUT_S", "esign_timeout_s", 10)
    if val := os.environ.get("ESIGN_WEBHOOK_SECRET"):
        kwargs["esign_webhook_secret"] = SecretStr(val)

    if val := os.environ.get("EQUIFLOW_EMAIL_MODE"):
        kwargs["email_mode"] = val
    if val := os.environ.get("EMAIL_BASE_URL"):
        kwargs["email_base_url"] = val
    if val := os.environ.get("EMAIL_API_KEY"):
        kwargs["email_api_key"] = SecretStr(val)
    if val := os.environ.get("EMAIL_FROM"):
        kwargs["email_from"] = val
    _int_env(kwargs, "EMAIL_TIMEOUT_S", "email_timeout_s", 10)

    if val := os.environ.get("EQUIFLOW_AUTH_MODE"):
        kwargs["auth_mode"] = val
    if val := os.environ.get("AUTH_BASE_URL"):
        kwargs["auth_base_url"] = val
    _int_env(kwargs, "AUTH_TIMEOUT_S", "auth_timeout_s", 5)
    if val := os.environ.get("AUTH_STATIC_TOKENS"):
        try:
            kwargs["auth_static_tokens"] = json.loads(val)
        except json.JSONDecodeError:
            log.warning("invalid_static_tokens_config", env_var="AUTH_STATIC_TOKENS")

    if val := os.environ.get("EQUIFLOW_APP_BASE_URL"):
        kwargs["app_base_url"] = val

    return ProviderConfig(**kwargs)
