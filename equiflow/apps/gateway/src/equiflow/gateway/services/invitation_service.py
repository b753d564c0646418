"""InvitationService -- 估值师邀请的签发 / 接受 / 拒绝

接受邀请把占位的估值师指派绑定到真实用户：
邀请状态、估值师任务改派、角色授予以及参与 / 捐赠记录更新在同一批次内提交。
同一用户重复接受同一邀请返回相同的成功结果，不产生第二次改派。
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from equiflow.core.config import INVITATION_TTL_DAYS
from equiflow.core.errors import (
    EmailMismatchError,
    InvitationExpiredError,
    InvitationNotPendingError,
    NotFoundError,
    PrerequisiteMissingError,
    TaskAlreadyCompletedError,
    TaskBlockedError,
    ValidationError,
)
from equiflow.core.models import (
    ActorType,
    AssignedRole,
    EventType,
    Invitation,
    InvitationStatus,
    OwnerRef,
    Participation,
    ParticipationStatus,
    Principal,
    Task,
    TaskEvent,
    UserProfile,
    UserRole,
    make_participant_id,
)
from equiflow.core.projection import dependencies_satisfied
from equiflow.core.store import StoreGroup, WriteBatch
from equiflow.core.templates import INVITE_VALUER
from equiflow.provider import ProviderError, render_invitation_email
from pydantic import BaseModel

from .owner_context import OwnerContext, load_owner_context
from .partition_edit import PartitionEdit, commit_and_publish, complete_task_snapshot

log = structlog.get_logger()

# 旧版捐赠记录上的估值状态
APPRAISAL_STATUS_ASSIGNED = "appraiser_assigned"


class IssueInvitationResult(BaseModel):
    """签发邀请结果（邮件发送失败记入 warnings，不影响签发）"""

    invitation: Invitation
    task: Task
    email_sent: bool = False
    warnings: list[str] = []


class AcceptInvitationResult(BaseModel):
    """接受邀请结果"""

    invitation: Invitation
    reassigned_task_ids: list[str] = []
    role_granted: bool = False
    already_accepted: bool = False


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class InvitationService:
    """估值师邀请业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        email_client=None,
        sse_hub=None,
        app_base_url: str = "http://localhost:3000",
        ttl_days: int = INVITATION_TTL_DAYS,
    ) -> None:
        self._stores = store_group
        self._email_client = email_client
        self._sse_hub = sse_hub
        self._app_base_url = app_base_url.rstrip("/")
        self._ttl_days = ttl_days

    async def get_invitation(self, token: str) -> Invitation:
        """Raises: NotFoundError"""
        invitation = await self._stores.invitation_store.get_invitation(token)
        if invitation is None:
            raise NotFoundError("Invitation not found", code="INVITATION_NOT_FOUND")
        return invitation

    # ============================================================
    # 签发
    # ============================================================

    async def issue_invitation(
        self,
        owner: OwnerRef,
        invitee_email: str,
        principal: Principal,
        personal_message: str | None = None,
    ) -> IssueInvitationResult:
        """签发估值师邀请并完成捐赠者的“邀请估值师”任务

        Raises:
            ValidationError: 邮箱格式不合法
            PrerequisiteMissingError: 承载记录或邀请任务不存在
            AuthorizationError: 调用者不是捐赠者 / 管理员
            TaskAlreadyCompletedError: 邀请任务已完成
            TaskBlockedError: 邀请任务仍被依赖阻塞
        """
        email = invitee_email.strip()
        local, sep, domain = email.partition("@")
        if not sep or not local or "." not in domain:
            raise ValidationError(f"Invalid invitee email: {invitee_email!r}")

        ctx = await load_owner_context(self._stores, owner)
        ctx.ensure_donor_or_admin(principal)

        task_id = owner.task_id(INVITE_VALUER)
        async with self._stores.partition_lock(owner):
            now = datetime.now(UTC)
            edit = await PartitionEdit.load(self._stores, owner, now)
            task = edit.get(task_id)
            if task is None:
                raise PrerequisiteMissingError(
                    f"Invitation task {task_id} does not exist",
                )
            if task.is_completed:
                raise TaskAlreadyCompletedError(f"Task {task_id} is already completed")
            if not dependencies_satisfied(task, edit.status_by_id()):
                raise TaskBlockedError(f"Task {task_id} has incomplete dependencies")

            invitation = Invitation(
                token=str(uuid4()),
                owner=owner,
                invitee_email=email,
                inviter_id=principal.user_id,
                personal_message=personal_message,
                created_at=now,
                expires_at=now + timedelta(days=self._ttl_days),
            )
            completed = complete_task_snapshot(
                task,
                principal.user_id,
                now,
                invitee_email=email,
                invitation_token=invitation.token,
                invited_at=now,
            )
            edit.put(completed)
            edit.resolve(now, trigger_task_id=task_id)

            batch = WriteBatch()
            batch.save_invitation(invitation)
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.INVITATION_ISSUED,
                    now,
                    actor_id=principal.user_id,
                    task_id=task_id,
                    invitee_email=email,
                    expires_at=invitation.expires_at.isoformat(),
                )
            )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info("invitation_issued", owner=owner.key, invitee_email=email)

        result = IssueInvitationResult(invitation=invitation, task=edit.get(task_id))
        await self._send_invitation_email(result, ctx, principal)
        return result

    async def _send_invitation_email(
        self,
        result: IssueInvitationResult,
        ctx: OwnerContext,
        principal: Principal,
    ) -> None:
        """发送邀请邮件，失败降级为 warning"""
        if self._email_client is None:
            result.warnings.append("Invitation created but no email client is configured")
            return

        invitation = result.invitation
        subject, html = render_invitation_email(
            invite_url=f"{self._app_base_url}/invitations/{invitation.token}",
            inviter_name=principal.email or principal.user_id,
            campaign_title=ctx.campaign.title if ctx.campaign else None,
            personal_message=invitation.personal_message,
            ttl_days=self._ttl_days,
        )
        try:
            await self._email_client.send(invitation.invitee_email, subject, html)
            result.email_sent = True
        except ProviderError as e:
            log.warning(
                "invitation_email_failed",
                owner=invitation.owner.key,
                invitee_email=invitation.invitee_email,
                error=str(e),
            )
            result.warnings.append("Invitation created but email failed to send")

    # ============================================================
    # 接受
    # ============================================================

    async def accept_invitation(
        self, token: str, principal: Principal
    ) -> AcceptInvitationResult:
        """接受邀请：把估值师任务改派给接受者

        Raises:
            NotFoundError: 邀请不存在
            InvitationNotPendingError: 邀请已被响应（同一用户重复接受除外）
            InvitationExpiredError: 邀请已过期
            EmailMismatchError: 接受者邮箱与被邀请邮箱不一致
            PrerequisiteMissingError: 分区承载记录不存在
        """
        invitation = await self.get_invitation(token)
        if self._is_accepted_by(invitation, principal):
            return AcceptInvitationResult(invitation=invitation, already_accepted=True)
        self._check_respondable(invitation, principal, datetime.now(UTC))

        owner = invitation.owner
        ctx = await load_owner_context(self._stores, owner)

        async with self._stores.partition_lock(owner):
            # 锁内重新读取：并发的重复接受在此处收敛为幂等成功
            invitation = await self.get_invitation(token)
            if self._is_accepted_by(invitation, principal):
                return AcceptInvitationResult(invitation=invitation, already_accepted=True)
            now = datetime.now(UTC)
            self._check_respondable(invitation, principal, now)

            edit = await PartitionEdit.load(self._stores, owner, now)
            reassigned: list[str] = []
            for task in edit.tasks():
                if task.assigned_role != AssignedRole.VALUER:
                    continue
                if task.assigned_to == principal.user_id:
                    continue
                edit.put(
                    task.model_copy(
                        update={"assigned_to": principal.user_id, "updated_at": now}
                    )
                )
                reassigned.append(task.task_id)

            accepted = invitation.model_copy(
                update={
                    "status": InvitationStatus.ACCEPTED,
                    "accepted_by": principal.user_id,
                    "responded_at": now,
                }
            )

            batch = WriteBatch()
            batch.save_invitation(accepted)
            edit.stage(batch, now, ActorType.USER, principal.user_id)
            role_granted = await self._grant_valuer_role(batch, principal, now)
            await self._bind_valuer_records(batch, ctx, principal, now)
            if reassigned:
                batch.append_event(
                    TaskEvent.new(
                        owner,
                        EventType.TASKS_REASSIGNED,
                        now,
                        actor_id=principal.user_id,
                        task_ids=reassigned,
                        assigned_to=principal.user_id,
                        role=AssignedRole.VALUER.value,
                    )
                )
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.INVITATION_ACCEPTED,
                    now,
                    actor_id=principal.user_id,
                    invitee_email=invitation.invitee_email,
                    role_granted=role_granted,
                )
            )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info(
            "invitation_accepted",
            owner=owner.key,
            user_id=principal.user_id,
            reassigned=reassigned,
            role_granted=role_granted,
        )
        return AcceptInvitationResult(
            invitation=accepted,
            reassigned_task_ids=reassigned,
            role_granted=role_granted,
        )

    async def _grant_valuer_role(
        self, batch: WriteBatch, principal: Principal, now: datetime
    ) -> bool:
        """接受者尚无角色时授予估值师角色"""
        if principal.role is not None:
            return False
        profile = await self._stores.user_store.get_user(principal.user_id)
        if profile is not None and profile.role is not None:
            return False
        batch.save_user(
            UserProfile(
                user_id=principal.user_id,
                email=principal.email,
                role=UserRole.VALUER,
                updated_at=now,
            )
        )
        return True

    async def _bind_valuer_records(
        self,
        batch: WriteBatch,
        ctx: OwnerContext,
        principal: Principal,
        now: datetime,
    ) -> None:
        """在承载记录上登记估值师；参与分区另建估值师自己的参与记录"""
        if ctx.participation is not None:
            batch.save_participation(
                ctx.participation.model_copy(
                    update={
                        "valuer_id": principal.user_id,
                        "valuer_email": principal.email,
                        "updated_at": now,
                    }
                )
            )
            valuer_participant_id = make_participant_id(ctx.campaign_id, principal.user_id)
            existing = await self._stores.participation_store.get_participation(
                valuer_participant_id
            )
            if existing is None:
                batch.save_participation(
                    Participation(
                        participant_id=valuer_participant_id,
                        campaign_id=ctx.campaign_id,
                        user_id=principal.user_id,
                        role=UserRole.VALUER,
                        status=ParticipationStatus.ACTIVE,
                        linked_participant_id=ctx.participation.participant_id,
                        created_at=now,
                        updated_at=now,
                    )
                )
        if ctx.donation is not None:
            batch.save_donation(
                ctx.donation.model_copy(
                    update={
                        "valuer_id": principal.user_id,
                        "valuer_email": principal.email,
                        "appraisal_status": APPRAISAL_STATUS_ASSIGNED,
                        "updated_at": now,
                    }
                )
            )

    # ============================================================
    # 拒绝
    # ============================================================

    async def decline_invitation(self, token: str, principal: Principal) -> Invitation:
        """拒绝邀请（同一被邀请人重复拒绝为幂等成功）

        Raises:
            NotFoundError / EmailMismatchError / InvitationNotPendingError /
            InvitationExpiredError
        """
        invitation = await self.get_invitation(token)
        self._check_email(invitation, principal)
        if invitation.status == InvitationStatus.DECLINED:
            return invitation

        owner = invitation.owner
        async with self._stores.partition_lock(owner):
            invitation = await self.get_invitation(token)
            if invitation.status == InvitationStatus.DECLINED:
                return invitation
            now = datetime.now(UTC)
            self._check_respondable(invitation, principal, now)

            declined = invitation.model_copy(
                update={"status": InvitationStatus.DECLINED, "responded_at": now}
            )
            batch = WriteBatch()
            batch.save_invitation(declined)
            batch.append_event(
                TaskEvent.new(
                    owner,
                    EventType.INVITATION_DECLINED,
                    now,
                    actor_id=principal.user_id,
                    invitee_email=invitation.invitee_email,
                )
            )
            await commit_and_publish(self._stores, batch, self._sse_hub)

        log.info("invitation_declined", owner=owner.key, user_id=principal.user_id)
        return declined

    # ============================================================
    # 校验
    # ============================================================

    @staticmethod
    def _is_accepted_by(invitation: Invitation, principal: Principal) -> bool:
        return (
            invitation.status == InvitationStatus.ACCEPTED
            and invitation.accepted_by == principal.user_id
        )

    @staticmethod
    def _check_email(invitation: Invitation, principal: Principal) -> None:
        if _normalize_email(principal.email) != _normalize_email(invitation.invitee_email):
            raise EmailMismatchError(
                "This invitation was sent to a different email address"
            )

    def _check_respondable(
        self, invitation: Invitation, principal: Principal, now: datetime
    ) -> None:
        """邀请必须处于 pending、未过期，且邮箱匹配（不区分大小写）"""
        if invitation.status != InvitationStatus.PENDING:
            raise InvitationNotPendingError(
                f"Invitation has already been {invitation.status.value}"
            )
        if invitation.is_expired(now):
            raise InvitationExpiredError("Invitation has expired")
        self._check_email(invitation, principal)
