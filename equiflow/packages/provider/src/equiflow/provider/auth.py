"""认证服务客户端 -- bearer 凭证 -> 已验证身份

RemoteAuthVerifier 调用外部认证服务的 /verify 接口；
StaticTokenVerifier 使用配置中的固定令牌表（本地开发 / 测试）。
"""

import httpx
import structlog
from pydantic import BaseModel

from .exceptions import AuthServiceError

log = structlog.get_logger()


class VerifiedIdentity(BaseModel):
    """认证服务返回的已验证身份"""

    user_id: str
    email: str
    email_verified: bool = False
    role: str | None = None


class RemoteAuthVerifier:
    """远程认证服务校验器"""

    def __init__(
        self,
        base_url: str,
        timeout_s: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    async def verify(self, token: str) -> VerifiedIdentity:
        """校验 bearer 凭证

        Raises:
            AuthServiceError: 凭证无效（status_code=401/403）或服务不可达
        """
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    "/verify",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            log.warning("auth_service_unreachable", error=str(e))
            raise AuthServiceError(f"认证服务不可达: {e}") from e

        if response.status_code != 200:
            raise AuthServiceError(
                "凭证无效",
                status_code=response.status_code,
            )
        return VerifiedIdentity.model_validate(response.json())


class StaticTokenVerifier:
    """固定令牌表校验器"""

    def __init__(self, tokens: dict[str, dict]) -> None:
        self._tokens = {
            token: VerifiedIdentity.model_validate(identity)
            for token, identity in tokens.items()
        }

    async def verify(self, token: str) -> VerifiedIdentity:
        identity = self._tokens.get(token)
        if identity is None:
            raise AuthServiceError("凭证无效", status_code=401)
        return identity
