"""流程相关的兄弟记录 -- 邀请、参与、捐赠、承诺、用户、活动

这些记录与任务在同一批次中原子更新。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import InvitationStatus, ParticipationStatus, UserRole
from .owner import OwnerRef


class Principal(BaseModel):
    """已认证的调用者（由认证服务验证）"""

    user_id: str
    email: str
    role: UserRole | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class UserProfile(BaseModel):
    """用户档案（仅维护角色授予）"""

    user_id: str
    email: str = ""
    role: UserRole | None = None
    updated_at: datetime


class Campaign(BaseModel):
    """募捐活动（只读引用，created_by 为组织审批人）"""

    campaign_id: str
    title: str = ""
    created_by: str = Field(description="组织审批人用户 ID")


class Participation(BaseModel):
    """活动参与记录 -- 新版分区的承载记录"""

    participant_id: str = Field(description="{campaign_id}_{user_id}")
    campaign_id: str
    user_id: str
    role: UserRole = UserRole.DONOR
    status: ParticipationStatus = ParticipationStatus.INTERESTED
    commitment_timing: str | None = None
    structure_version: str | None = None
    valuer_id: str | None = None
    valuer_email: str | None = None
    donation_id: str | None = Field(default=None, description="关联的旧版捐赠记录")
    linked_participant_id: str | None = Field(
        default=None, description="估值师参与记录指向的捐赠者参与记录"
    )
    created_at: datetime
    updated_at: datetime


class Donation(BaseModel):
    """旧版捐赠记录 -- 旧版分区的承载记录"""

    donation_id: str
    campaign_id: str
    donor_id: str
    valuer_id: str | None = None
    valuer_email: str | None = None
    appraisal_status: str | None = None
    created_at: datetime
    updated_at: datetime


class Commitment(BaseModel):
    """承诺记录 -- 以分区 ID 为键 upsert"""

    owner: OwnerRef
    amount: float | None = None
    commitment_type: str | None = None
    committed_by: str
    committed_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class Invitation(BaseModel):
    """估值师邀请"""

    token: str = Field(description="不透明令牌（uuid4）")
    owner: OwnerRef
    invitee_email: str
    inviter_id: str
    personal_message: str | None = None
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime
    expires_at: datetime
    accepted_by: str | None = None
    responded_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
