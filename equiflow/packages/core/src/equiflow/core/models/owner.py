"""任务归属分区 -- Legacy(donation_id) | Participant(participant_id)

归属类型在 API 边界解析一次，之后始终以 OwnerRef 传递，
处理器内部不再根据 id 字符串形状推断分区类型。
"""

from pydantic import BaseModel, ConfigDict, Field

from .enums import OwnerKind


class OwnerRef(BaseModel):
    """任务归属分区引用（tagged union 的扁平表示）"""

    model_config = ConfigDict(frozen=True)

    kind: OwnerKind = Field(description="分区类型")
    id: str = Field(min_length=1, description="donation_id 或 participant_id")

    @classmethod
    def legacy(cls, donation_id: str) -> "OwnerRef":
        return cls(kind=OwnerKind.LEGACY, id=donation_id)

    @classmethod
    def participant(cls, participant_id: str) -> "OwnerRef":
        return cls(kind=OwnerKind.PARTICIPANT, id=participant_id)

    @property
    def is_participant(self) -> bool:
        return self.kind == OwnerKind.PARTICIPANT

    @property
    def key(self) -> str:
        """分区键，用于 SSE 订阅与日志"""
        return f"{self.kind.value}:{self.id}"

    def task_id(self, suffix: str) -> str:
        """确定性派生任务 ID：{owner_id}_{suffix}"""
        return f"{self.id}_{suffix}"


def make_participant_id(campaign_id: str, user_id: str) -> str:
    """参与者 ID 形如 {campaign_id}_{user_id}"""
    return f"{campaign_id}_{user_id}"


def split_participant_id(participant_id: str) -> tuple[str, str]:
    """拆分参与者 ID 为 (campaign_id, user_id)

    Raises:
        ValueError: ID 不含分隔符
    """
    campaign_id, sep, user_id = participant_id.partition("_")
    if not sep or not campaign_id or not user_id:
        raise ValueError(f"非法的 participant id: {participant_id!r}")
    return campaign_id, user_id
