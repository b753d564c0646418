"""电子签名 provider 客户端

ESignatureClient 封装 DocuSign 风格的 REST 接口：
- get_envelope_status(envelope_id) -> EnvelopeStatus
- download_documents(envelope_id) -> bytes

传输层错误（连接失败、超时）与 5xx 响应按指数退避重试，4xx 响应不重试。
StubESignatureClient 为本地开发 / 测试用的内存实现。
"""

from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import ESignatureError

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

ENVELOPE_COMPLETED = "completed"


def _is_server_error(response: httpx.Response) -> bool:
    return response.status_code >= 500


class EnvelopeStatus(BaseModel):
    """信封状态"""

    envelope_id: str
    status: str = Field(description="provider 原始状态字符串（sent/delivered/completed/...）")
    completed_at: datetime | None = Field(default=None, description="签署完成时间")

    @property
    def is_completed(self) -> bool:
        return self.status.lower() == ENVELOPE_COMPLETED


class ESignatureClient:
    """电子签名 REST 客户端"""

    def __init__(
        self,
        base_url: str,
        account_id: str,
        access_token: str = "",
        timeout_s: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: REST API 基础 URL（如 https://demo.docusign.net/restapi）
            account_id: 账户 ID
            access_token: Bearer 访问令牌
            timeout_s: 单次请求超时（秒）
            transport: 自定义 httpx transport（测试注入）
        """
        self._base_url = base_url.rstrip("/")
        self._account_id = account_id
        self._access_token = access_token
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ESignatureClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        """获取或创建 HTTP 客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_s,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _envelope_path(self, envelope_id: str) -> str:
        return f"/v2.1/accounts/{self._account_id}/envelopes/{envelope_id}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(_is_server_error),
        # 重试耗尽：返回最后一次响应，或重新抛出最后一次传输层异常
        retry_error_callback=lambda state: state.outcome.result(),
    )
    async def _get(self, path: str) -> httpx.Response:
        return await self._get_client().get(path, headers=self._headers())

    async def _request(self, envelope_id: str, path: str) -> httpx.Response:
        try:
            response = await self._get(path)
        except httpx.TransportError as e:
            log.warning("esign_request_failed", envelope_id=envelope_id, error=str(e))
            raise ESignatureError(f"电子签名服务不可达: {e}") from e

        if response.status_code != 200:
            raise ESignatureError(
                f"电子签名服务返回 {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                recoverable=response.status_code >= 500,
            )
        return response

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus:
        """查询信封状态

        Raises:
            ESignatureError: 网络错误或非 2xx 响应
        """
        response = await self._request(envelope_id, self._envelope_path(envelope_id))
        data = response.json()
        completed_raw = data.get("completedDateTime")
        return EnvelopeStatus(
            envelope_id=envelope_id,
            status=str(data.get("status", "unknown")),
            completed_at=datetime.fromisoformat(completed_raw.replace("Z", "+00:00"))
            if completed_raw
            else None,
        )

    async def download_documents(self, envelope_id: str) -> bytes:
        """下载信封的合并签署文档（PDF）

        Raises:
            ESignatureError: 网络错误或非 2xx 响应
        """
        response = await self._request(
            envelope_id, f"{self._envelope_path(envelope_id)}/documents/combined"
        )
        return response.content

    async def health_check(self) -> bool:
        """检查电子签名服务可达性

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        url = f"{self._base_url}/v2.1/accounts/{self._account_id}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as http_client:
                resp = await http_client.get(
                    url, headers=self._headers(), timeout=HEALTH_CHECK_TIMEOUT_S
                )
                return resp.status_code == 200
        except Exception as e:
            log.debug("esign_health_check_failed", url=url, error=str(e))
            return False


class StubESignatureClient:
    """内存电子签名客户端（stub 模式）

    未登记的信封视为 "sent"；登记为 completed 的信封可下载占位文档。
    """

    def __init__(self) -> None:
        self._envelopes: dict[str, EnvelopeStatus] = {}

    def set_status(
        self,
        envelope_id: str,
        status: str,
        completed_at: datetime | None = None,
    ) -> None:
        self._envelopes[envelope_id] = EnvelopeStatus(
            envelope_id=envelope_id,
            status=status,
            completed_at=completed_at,
        )

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus:
        return self._envelopes.get(
            envelope_id, EnvelopeStatus(envelope_id=envelope_id, status="sent")
        )

    async def download_documents(self, envelope_id: str) -> bytes:
        return f"%PDF-1.4 stub signed document {envelope_id}".encode()

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
