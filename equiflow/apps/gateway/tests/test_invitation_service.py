"""InvitationService 测试 -- 估值师邀请签发 / 接受 / 拒绝

测试内容：
1. 签发邀请完成“邀请估值师”任务，邮件失败降级为 warning
2. 接受邀请：邮箱不区分大小写，估值师任务改派，角色授予，记录绑定
3. 重复接受幂等，不产生第二次改派
4. 过期 / 邮箱不匹配 / 已响应 的错误码
5. 拒绝邀请
"""

from datetime import UTC, datetime

import pytest
from equiflow.core.errors import (
    AuthorizationError,
    EmailMismatchError,
    InvitationExpiredError,
    InvitationNotPendingError,
    NotFoundError,
    TaskAlreadyCompletedError,
    TaskBlockedError,
    ValidationError,
)
from equiflow.core.models import (
    EventType,
    InvitationStatus,
    Participation,
    ParticipationStatus,
    Principal,
    TaskStatus,
    UserRole,
)
from equiflow.core.store import WriteBatch
from equiflow.core.templates import (
    COMMITMENT_DECISION,
    COMPANY_INFO,
    INVITE_VALUER,
    SIGN_NDA,
    VALUER_SIGN_NDA,
    VALUER_UPLOAD,
)
from equiflow.gateway.services.invitation_service import (
    APPRAISAL_STATUS_ASSIGNED,
    InvitationService,
)
from equiflow.provider import EmailDeliveryError

INVITEE = "valuer@example.com"


class FailingEmailClient:
    """总是发送失败的邮件客户端"""

    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str) -> str:
        self.attempts += 1
        raise EmailDeliveryError("provider returned 500", status_code=500)


@pytest.fixture
def invite_ready(task_service, seed_participant, seed_donation, donor):
    """推进到“邀请估值师”任务可操作"""

    async def _prepare(legacy: bool = False):
        owner = await (seed_donation() if legacy else seed_participant())
        await task_service.create_task_set(owner, donor)
        await task_service.complete_task(owner.task_id(SIGN_NDA), donor)
        await task_service.submit_commitment_decision(
            owner.task_id(COMMITMENT_DECISION), donor, "commit_now"
        )
        return owner

    return _prepare


class TestIssueInvitation:
    async def test_issue_completes_invite_task(
        self, invitation_service, store_group, email_client, invite_ready, donor
    ):
        owner = await invite_ready()
        result = await invitation_service.issue_invitation(
            owner, INVITEE, donor, personal_message="Thanks!"
        )

        assert result.email_sent is True
        assert result.warnings == []
        assert result.invitation.status == InvitationStatus.PENDING
        assert result.task.status == TaskStatus.COMPLETED
        assert result.task.metadata.invitee_email == INVITEE
        assert result.task.metadata.invitation_token == result.invitation.token

        stored = await store_group.invitation_store.get_invitation(result.invitation.token)
        assert stored.invitee_email == INVITEE

        company_info = await store_group.task_store.get_task(owner.task_id(COMPANY_INFO))
        assert company_info.status == TaskStatus.PENDING

        [mail] = email_client.sent
        assert mail["to"] == INVITEE
        assert f"http://app.test/invitations/{result.invitation.token}" in mail["html"]
        assert "Thanks!" in mail["html"]

        events = await store_group.event_store.get_events_for_owner(owner)
        assert EventType.INVITATION_ISSUED in [e.type for e in events]

    async def test_email_failure_becomes_warning(
        self, store_group, sse_hub, invite_ready, donor
    ):
        failing = FailingEmailClient()
        service = InvitationService(store_group, email_client=failing, sse_hub=sse_hub)
        owner = await invite_ready()

        result = await service.issue_invitation(owner, INVITEE, donor)

        assert failing.attempts == 1
        assert result.email_sent is False
        assert result.warnings == ["Invitation created but email failed to send"]
        assert await store_group.invitation_store.get_invitation(result.invitation.token)
        task = await store_group.task_store.get_task(owner.task_id(INVITE_VALUER))
        assert task.status == TaskStatus.COMPLETED

    async def test_without_email_client(self, store_group, invite_ready, donor):
        service = InvitationService(store_group)
        owner = await invite_ready()
        result = await service.issue_invitation(owner, INVITEE, donor)
        assert result.email_sent is False
        assert len(result.warnings) == 1

    async def test_invalid_email(self, invitation_service, invite_ready, donor):
        owner = await invite_ready()
        with pytest.raises(ValidationError):
            await invitation_service.issue_invitation(owner, "not-an-email", donor)

    async def test_only_donor_may_invite(self, invitation_service, invite_ready, stranger):
        owner = await invite_ready()
        with pytest.raises(AuthorizationError):
            await invitation_service.issue_invitation(owner, INVITEE, stranger)

    async def test_blocked_before_decision(
        self, invitation_service, task_service, seed_participant, donor
    ):
        owner = await seed_participant()
        await task_service.create_task_set(owner, donor)
        with pytest.raises(TaskBlockedError):
            await invitation_service.issue_invitation(owner, INVITEE, donor)

    async def test_second_issue_rejected(self, invitation_service, invite_ready, donor):
        owner = await invite_ready()
        await invitation_service.issue_invitation(owner, INVITEE, donor)
        with pytest.raises(TaskAlreadyCompletedError):
            await invitation_service.issue_invitation(owner, "other@example.com", donor)


class TestAcceptInvitation:
    async def test_accept_reassigns_valuer_tasks(
        self, invitation_service, store_group, invite_ready, donor, valuer
    ):
        """邮箱大小写不同也能接受"""
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)

        result = await invitation_service.accept_invitation(issued.invitation.token, valuer)

        assert result.already_accepted is False
        assert result.invitation.status == InvitationStatus.ACCEPTED
        assert result.invitation.accepted_by == valuer.user_id
        assert set(result.reassigned_task_ids) == {
            owner.task_id(VALUER_SIGN_NDA),
            owner.task_id(VALUER_UPLOAD),
        }
        for task_id in result.reassigned_task_ids:
            task = await store_group.task_store.get_task(task_id)
            assert task.assigned_to == valuer.user_id

        assert result.role_granted is True
        profile = await store_group.user_store.get_user(valuer.user_id)
        assert profile.role == UserRole.VALUER

        participation = await store_group.participation_store.get_participation(owner.id)
        assert participation.valuer_id == valuer.user_id
        assert participation.valuer_email == valuer.email
        valuer_participation = await store_group.participation_store.get_participation(
            "camp1_valuer1"
        )
        assert valuer_participation.role == UserRole.VALUER
        assert valuer_participation.status == ParticipationStatus.ACTIVE
        assert valuer_participation.linked_participant_id == owner.id

    async def test_second_accept_is_idempotent(
        self, invitation_service, store_group, invite_ready, donor, valuer
    ):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        token = issued.invitation.token

        await invitation_service.accept_invitation(token, valuer)
        again = await invitation_service.accept_invitation(token, valuer)

        assert again.already_accepted is True
        assert again.reassigned_task_ids == []
        events = await store_group.event_store.get_events_for_owner(owner)
        types = [e.type for e in events]
        assert types.count(EventType.TASKS_REASSIGNED) == 1
        assert types.count(EventType.INVITATION_ACCEPTED) == 1

    async def test_role_not_granted_when_already_set(
        self, invitation_service, invite_ready, donor
    ):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        principal = Principal(user_id="valuer1", email=INVITEE, role=UserRole.VALUER)
        result = await invitation_service.accept_invitation(issued.invitation.token, principal)
        assert result.role_granted is False

    async def test_existing_valuer_participation_kept(
        self, invitation_service, store_group, invite_ready, donor, valuer
    ):
        owner = await invite_ready()
        now = datetime.now(UTC)
        batch = WriteBatch()
        batch.save_participation(
            Participation(
                participant_id="camp1_valuer1",
                campaign_id="camp1",
                user_id="valuer1",
                status=ParticipationStatus.COMMITTED,
                created_at=now,
                updated_at=now,
            )
        )
        await store_group.commit(batch)

        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        await invitation_service.accept_invitation(issued.invitation.token, valuer)

        existing = await store_group.participation_store.get_participation("camp1_valuer1")
        assert existing.status == ParticipationStatus.COMMITTED
        assert existing.role == UserRole.DONOR

    async def test_legacy_owner_binds_donation(
        self, invitation_service, store_group, invite_ready, donor, valuer
    ):
        owner = await invite_ready(legacy=True)
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        await invitation_service.accept_invitation(issued.invitation.token, valuer)

        donation = await store_group.donation_store.get_donation(owner.id)
        assert donation.valuer_id == valuer.user_id
        assert donation.appraisal_status == APPRAISAL_STATUS_ASSIGNED

    async def test_email_mismatch(
        self, invitation_service, store_group, invite_ready, donor, stranger
    ):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        with pytest.raises(EmailMismatchError) as exc_info:
            await invitation_service.accept_invitation(issued.invitation.token, stranger)
        assert exc_info.value.code == "EMAIL_MISMATCH"

        task = await store_group.task_store.get_task(owner.task_id(VALUER_SIGN_NDA))
        assert task.assigned_to == "pending-valuer"

    async def test_expired(self, store_group, invite_ready, donor, valuer):
        service = InvitationService(store_group, ttl_days=0)
        owner = await invite_ready()
        issued = await service.issue_invitation(owner, INVITEE, donor)

        with pytest.raises(InvitationExpiredError) as exc_info:
            await service.accept_invitation(issued.invitation.token, valuer)
        assert exc_info.value.code == "INVITATION_EXPIRED"
        assert exc_info.value.http_status == 409

    async def test_accepted_by_someone_else(
        self, invitation_service, invite_ready, donor, valuer
    ):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        await invitation_service.accept_invitation(issued.invitation.token, valuer)

        other = Principal(user_id="valuer2", email=INVITEE)
        with pytest.raises(InvitationNotPendingError):
            await invitation_service.accept_invitation(issued.invitation.token, other)

    async def test_unknown_token(self, invitation_service, valuer):
        with pytest.raises(NotFoundError) as exc_info:
            await invitation_service.accept_invitation("no-such-token", valuer)
        assert exc_info.value.code == "INVITATION_NOT_FOUND"


class TestDeclineInvitation:
    async def test_decline(self, invitation_service, store_group, invite_ready, donor, valuer):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        token = issued.invitation.token

        declined = await invitation_service.decline_invitation(token, valuer)
        assert declined.status == InvitationStatus.DECLINED
        assert (await invitation_service.decline_invitation(token, valuer)).status == (
            InvitationStatus.DECLINED
        )

        with pytest.raises(InvitationNotPendingError):
            await invitation_service.accept_invitation(token, valuer)

        events = await store_group.event_store.get_events_for_owner(owner)
        assert [e.type for e in events].count(EventType.INVITATION_DECLINED) == 1

    async def test_decline_requires_matching_email(
        self, invitation_service, invite_ready, donor, stranger
    ):
        owner = await invite_ready()
        issued = await invitation_service.issue_invitation(owner, INVITEE, donor)
        with pytest.raises(EmailMismatchError):
            await invitation_service.decline_invitation(issued.invitation.token, stranger)
