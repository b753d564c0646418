"""估值师邀请路由

POST /api/invitations: 签发邀请（捐赠者），邮件失败以 warnings 返回。
GET  /api/invitations/{token}: 查询邀请。
POST /api/invitations/{token}/accept: 接受邀请（幂等）。
POST /api/invitations/{token}/decline: 拒绝邀请。
"""

from equiflow.core.models import Invitation, Principal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_current_principal, get_invitation_service
from ..services.invitation_service import InvitationService
from ..services.owner_context import parse_owner

router = APIRouter()


class IssueInvitationRequest(BaseModel):
    """签发邀请请求体"""

    owner_kind: str = Field(description="participant / legacy")
    owner_id: str = Field(description="participant_id 或 donation_id")
    invitee_email: str = Field(description="被邀请估值师邮箱")
    personal_message: str | None = Field(default=None, description="附言")


def _invitation_data(invitation: Invitation) -> dict:
    return {
        "token": invitation.token,
        "owner": invitation.owner.model_dump(mode="json"),
        "invitee_email": invitation.invitee_email,
        "status": invitation.status.value,
        "expires_at": invitation.expires_at.isoformat(),
        "accepted_by": invitation.accepted_by,
    }


@router.post("/api/invitations")
async def issue_invitation(
    body: IssueInvitationRequest,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    """签发邀请并完成“邀请估值师”任务"""
    owner = parse_owner(body.owner_kind, body.owner_id)
    result = await service.issue_invitation(
        owner, body.invitee_email, principal, body.personal_message
    )
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "invitation": _invitation_data(result.invitation),
            "task": result.task.model_dump(mode="json"),
            "email_sent": result.email_sent,
            "warnings": result.warnings,
        },
    )


@router.get("/api/invitations/{token}")
async def get_invitation(
    token: str,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    invitation = await service.get_invitation(token)
    return {"invitation": _invitation_data(invitation)}


@router.post("/api/invitations/{token}/accept")
async def accept_invitation(
    token: str,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    """接受邀请

    - 200: 接受成功（同一用户重复接受同样返回 200）
    - 404: 邀请不存在
    - 409: 已响应 / 已过期 / 邮箱不匹配（error.code 区分）
    """
    result = await service.accept_invitation(token, principal)
    return {
        "success": True,
        "invitation": _invitation_data(result.invitation),
        "reassigned_task_ids": result.reassigned_task_ids,
        "role_granted": result.role_granted,
        "already_accepted": result.already_accepted,
    }


@router.post("/api/invitations/{token}/decline")
async def decline_invitation(
    token: str,
    principal: Principal = Depends(get_current_principal),
    service: InvitationService = Depends(get_invitation_service),
):
    invitation = await service.decline_invitation(token, principal)
    return {"success": True, "invitation": _invitation_data(invitation)}
