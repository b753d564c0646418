"""邮件 provider 客户端

EmailClient 调用 Resend 风格的 POST /emails 接口；
LogEmailClient 仅记录日志（本地开发 / 测试）。
发送失败抛出 EmailDeliveryError，由调用方降级为 warning。
"""

from html import escape
from typing import Any

import httpx
import structlog

from .exceptions import EmailDeliveryError

log = structlog.get_logger()


class EmailClient:
    """Resend 风格邮件客户端"""

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout_s: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    async def send(self, to: str, subject: str, html: str) -> str:
        """发送邮件

        Returns:
            provider 返回的消息 ID

        Raises:
            EmailDeliveryError: 网络错误或非 2xx 响应
        """
        payload: dict[str, Any] = {
            "from": self._sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/emails",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"邮件服务不可达: {e}") from e

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"邮件服务返回 {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        message_id = str(response.json().get("id", ""))
        log.info("email_sent", to=to, message_id=message_id)
        return message_id


class LogEmailClient:
    """只记录日志的邮件客户端（log 模式）"""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> str:
        self.sent.append({"to": to, "subject": subject, "html": html})
        log.info("email_logged", to=to, subject=subject)
        return f"log-{len(self.sent)}"


def render_invitation_email(
    invite_url: str,
    inviter_name: str,
    campaign_title: str | None = None,
    personal_message: str | None = None,
    ttl_days: int = 7,
) -> tuple[str, str]:
    """渲染估值师邀请邮件

    Returns:
        (subject, html)
    """
    subject = f"{inviter_name} invited you to appraise an equity donation"
    parts = [
        "<h2>You have been invited as an appraiser</h2>",
        f"<p>{escape(inviter_name)} has invited you to provide an independent valuation",
    ]
    if campaign_title:
        parts.append(f" for <strong>{escape(campaign_title)}</strong>")
    parts.append(".</p>")
    if personal_message:
        parts.append(f"<blockquote>{escape(personal_message)}</blockquote>")
    parts.append(f'<p><a href="{escape(invite_url)}">Accept invitation</a></p>')
    parts.append(f"<p>This invitation expires in {ttl_days} days.</p>")
    return subject, "".join(parts)
