"""分区上下文 -- 从承载记录解析捐赠者、组织审批人与活动

分区类型在 API 边界解析为 OwnerRef，此后只按 kind 分支读取承载记录：
Participant → participations，Legacy → donations。
"""

from equiflow.core.errors import AuthorizationError, PrerequisiteMissingError, ValidationError
from equiflow.core.models import (
    Campaign,
    Donation,
    OwnerKind,
    OwnerRef,
    Participation,
    Principal,
)
from equiflow.core.store import StoreGroup
from pydantic import BaseModel


class OwnerContext(BaseModel):
    """分区承载记录及其派生的参与方"""

    owner: OwnerRef
    donor_id: str
    campaign_id: str
    campaign: Campaign | None = None
    participation: Participation | None = None
    donation: Donation | None = None

    @property
    def organization_id(self) -> str | None:
        return self.campaign.created_by if self.campaign else None

    def ensure_donor_or_admin(self, principal: Principal) -> None:
        """仅捐赠者本人或管理员可操作

        Raises:
            AuthorizationError: 调用者既不是该分区的捐赠者也不是管理员
        """
        if principal.user_id != self.donor_id and not principal.is_admin:
            raise AuthorizationError(
                f"User {principal.user_id} is not the donor of {self.owner.key}"
            )


def parse_owner(kind: str, owner_id: str) -> OwnerRef:
    """API 边界：把路径参数解析为 OwnerRef

    Raises:
        ValidationError: 未知的分区类型或空 ID
    """
    try:
        owner_kind = OwnerKind(kind)
    except ValueError as e:
        raise ValidationError(f"Unknown owner kind: {kind}") from e
    if not owner_id:
        raise ValidationError("Owner id is required")
    return OwnerRef(kind=owner_kind, id=owner_id)


async def load_owner_context(store_group: StoreGroup, owner: OwnerRef) -> OwnerContext:
    """读取分区承载记录

    Raises:
        PrerequisiteMissingError: participation / donation 记录不存在
    """
    if owner.is_participant:
        participation = await store_group.participation_store.get_participation(owner.id)
        if participation is None:
            raise PrerequisiteMissingError(f"Participation {owner.id} does not exist")
        campaign = await store_group.campaign_store.get_campaign(participation.campaign_id)
        return OwnerContext(
            owner=owner,
            donor_id=participation.user_id,
            campaign_id=participation.campaign_id,
            campaign=campaign,
            participation=participation,
        )

    donation = await store_group.donation_store.get_donation(owner.id)
    if donation is None:
        raise PrerequisiteMissingError(f"Donation {owner.id} does not exist")
    campaign = await store_group.campaign_store.get_campaign(donation.campaign_id)
    return OwnerContext(
        owner=owner,
        donor_id=donation.donor_id,
        campaign_id=donation.campaign_id,
        campaign=campaign,
        donation=donation,
    )
