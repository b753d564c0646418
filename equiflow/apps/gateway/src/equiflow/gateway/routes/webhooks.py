"""电子签名 webhook 路由

POST /api/webhooks/esign: 信封事件通知，立即对账持有该信封的签名任务。
GET  /api/webhooks/esign: 端点校验（回显 challenge）。

通知须携带 X-Esign-Webhook-Secret 请求头；信封状态以 provider 查询为准。
"""

from equiflow.core.errors import ValidationError
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from ..deps import get_signature_monitor, verify_esign_webhook
from ..services.signature_monitor import SignatureMonitor

router = APIRouter()


class EnvelopeEventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    envelope_id: str | None = Field(default=None, alias="envelopeId")


class EsignWebhookPayload(BaseModel):
    """provider 推送的信封事件"""

    event: str
    data: EnvelopeEventData = Field(default_factory=EnvelopeEventData)


@router.post("/api/webhooks/esign", dependencies=[Depends(verify_esign_webhook)])
async def esign_webhook(
    body: EsignWebhookPayload,
    monitor: SignatureMonitor = Depends(get_signature_monitor),
):
    """处理信封事件

    - 200: 已处理（无对应任务时 results 为空）
    - 400: 缺少信封 ID
    - 401: 共享密钥缺失或不匹配
    """
    if not body.data.envelope_id:
        raise ValidationError("Webhook payload has no envelope id")
    results = await monitor.handle_envelope_event(body.data.envelope_id)
    return {
        "success": True,
        "event": body.event,
        "results": [r.model_dump(mode="json") for r in results],
    }


@router.get("/api/webhooks/esign")
async def esign_webhook_challenge(challenge: str | None = Query(default=None)):
    if challenge:
        return PlainTextResponse(challenge)
    return {"status": "active"}
