"""兄弟记录 SQLite 实现 -- 邀请 / 参与 / 捐赠 / 承诺 / 用户 / 活动

写操作均为 upsert，不自动提交事务，由调用方（WriteBatch）管理。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import InvitationStatus, OwnerKind, ParticipationStatus, UserRole
from ..models.owner import OwnerRef
from ..models.records import (
    Campaign,
    Commitment,
    Donation,
    Invitation,
    Participation,
    UserProfile,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteInvitationStore:
    """估值师邀请存储"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def save_invitation(self, invitation: Invitation) -> None:
        await self._conn.execute(
            """
            INSERT INTO invitations (token, owner_kind, owner_id, invitee_email,
                                     inviter_id, personal_message, status,
                                     created_at, expires_at, accepted_by, responded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(token) DO UPDATE SET
                status = excluded.status,
                accepted_by = excluded.accepted_by,
                responded_at = excluded.responded_at
            """,
            (
                invitation.token,
                invitation.owner.kind.value,
                invitation.owner.id,
                invitation.invitee_email,
                invitation.inviter_id,
                invitation.personal_message,
                invitation.status.value,
                invitation.created_at.isoformat(),
                invitation.expires_at.isoformat(),
                invitation.accepted_by,
                _iso(invitation.responded_at),
            ),
        )

    async def get_invitation(self, token: str) -> Invitation | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM invitations WHERE token = ?",
            (token,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Invitation(
            token=row["token"],
            owner=OwnerRef(kind=OwnerKind(row["owner_kind"]), id=row["owner_id"]),
            invitee_email=row["invitee_email"],
            inviter_id=row["inviter_id"],
            personal_message=row["personal_message"],
            status=InvitationStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            accepted_by=row["accepted_by"],
            responded_at=_parse_dt(row["responded_at"]),
        )


class SqliteParticipationStore:
    """活动参与记录存储"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def save_participation(self, participation: Participation) -> None:
        await self._conn.execute(
            """
            INSERT INTO participations (participant_id, campaign_id, user_id, role, status,
                                        commitment_timing, structure_version, valuer_id,
                                        valuer_email, donation_id, linked_participant_id,
                                        created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(participant_id) DO UPDATE SET
                role = excluded.role,
                status = excluded.status,
                commitment_timing = excluded.commitment_timing,
                structure_version = excluded.structure_version,
                valuer_id = excluded.valuer_id,
                valuer_email = excluded.valuer_email,
                donation_id = excluded.donation_id,
                linked_participant_id = excluded.linked_participant_id,
                updated_at = excluded.updated_at
            """,
            (
                participation.participant_id,
                participation.campaign_id,
                participation.user_id,
                participation.role.value,
                participation.status.value,
                participation.commitment_timing,
                participation.structure_version,
                participation.valuer_id,
                participation.valuer_email,
                participation.donation_id,
                participation.linked_participant_id,
                participation.created_at.isoformat(),
                participation.updated_at.isoformat(),
            ),
        )

    async def get_participation(self, participant_id: str) -> Participation | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM participations WHERE participant_id = ?",
            (participant_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Participation(
            participant_id=row["participant_id"],
            campaign_id=row["campaign_id"],
            user_id=row["user_id"],
            role=UserRole(row["role"]),
            status=ParticipationStatus(row["status"]),
            commitment_timing=row["commitment_timing"],
            structure_version=row["structure_version"],
            valuer_id=row["valuer_id"],
            valuer_email=row["valuer_email"],
            donation_id=row["donation_id"],
            linked_participant_id=row["linked_participant_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SqliteDonationStore:
    """旧版捐赠记录存储"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def save_donation(self, donation: Donation) -> None:
        await self._conn.execute(
            """
            INSERT INTO donations (donation_id, campaign_id, donor_id, valuer_id,
                                   valuer_email, appraisal_status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(donation_id) DO UPDATE SET
                valuer_id = excluded.valuer_id,
                valuer_email = excluded.valuer_email,
                appraisal_status = excluded.appraisal_status,
                updated_at = excluded.updated_at
            """,
            (
                donation.donation_id,
                donation.campaign_id,
                donation.donor_id,
                donation.valuer_id,
                donation.valuer_email,
                donation.appraisal_status,
                donation.created_at.isoformat(),
                donation.updated_at.isoformat(),
            ),
        )

    async def get_donation(self, donation_id: str) -> Donation | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM donations WHERE donation_id = ?",
            (donation_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Donation(
            donation_id=row["donation_id"],
            campaign_id=row["campaign_id"],
            donor_id=row["donor_id"],
            valuer_id=row["valuer_id"],
            valuer_email=row["valuer_email"],
            appraisal_status=row["appraisal_status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SqliteCommitmentStore:
    """承诺记录存储（以分区为键 upsert）"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def upsert_commitment(self, commitment: Commitment) -> None:
        await self._conn.execute(
            """
            INSERT INTO commitments (owner_kind, owner_id, amount, commitment_type,
                                     committed_by, committed_at, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(owner_kind, owner_id) DO UPDATE SET
                amount = excluded.amount,
                commitment_type = excluded.commitment_type,
                committed_by = excluded.committed_by,
                committed_at = excluded.committed_at,
                data = excluded.data
            """,
            (
                commitment.owner.kind.value,
                commitment.owner.id,
                commitment.amount,
                commitment.commitment_type,
                commitment.committed_by,
                commitment.committed_at.isoformat(),
                json.dumps(commitment.data, ensure_ascii=False, default=str),
            ),
        )

    async def get_commitment(self, owner: OwnerRef) -> Commitment | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM commitments WHERE owner_kind = ? AND owner_id = ?",
            (owner.kind.value, owner.id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Commitment(
            owner=owner,
            amount=row["amount"],
            commitment_type=row["commitment_type"],
            committed_by=row["committed_by"],
            committed_at=datetime.fromisoformat(row["committed_at"]),
            data=json.loads(row["data"]) if row["data"] else {},
        )


class SqliteUserStore:
    """用户档案存储（仅角色授予）"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def save_user(self, user: UserProfile) -> None:
        await self._conn.execute(
            """
            INSERT INTO users (user_id, email, role, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                email = excluded.email,
                role = excluded.role,
                updated_at = excluded.updated_at
            """,
            (
                user.user_id,
                user.email,
                user.role.value if user.role is not None else None,
                user.updated_at.isoformat(),
            ),
        )

    async def get_user(self, user_id: str) -> UserProfile | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return UserProfile(
            user_id=row["user_id"],
            email=row["email"],
            role=UserRole(row["role"]) if row["role"] else None,
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SqliteCampaignStore:
    """募捐活动存储（只读引用，save 仅供初始化与测试）"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn

    async def save_campaign(self, campaign: Campaign) -> None:
        await self._conn.execute(
            """
            INSERT INTO campaigns (campaign_id, title, created_by)
            VALUES (?, ?, ?)
            ON CONFLICT(campaign_id) DO UPDATE SET
                title = excluded.title,
                created_by = excluded.created_by
            """,
            (campaign.campaign_id, campaign.title, campaign.created_by),
        )

    async def get_campaign(self, campaign_id: str) -> Campaign | None:
        cursor = await self._read_conn.execute(
            "SELECT * FROM campaigns WHERE campaign_id = ?",
            (campaign_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Campaign(
            campaign_id=row["campaign_id"],
            title=row["title"],
            created_by=row["created_by"],
        )
