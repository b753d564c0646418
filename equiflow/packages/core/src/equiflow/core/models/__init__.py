"""Equiflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .artifact import Artifact
from .enums import (
    OPEN_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorType,
    AssignedRole,
    CommitmentDecision,
    EventType,
    InvitationStatus,
    OwnerKind,
    ParticipationStatus,
    TaskStatus,
    TaskType,
    UserRole,
    validate_transition,
)
from .event import TaskEvent
from .metadata import (
    AppraisalSubmissionMetadata,
    CommitmentDecisionMetadata,
    CommitmentOption,
    DocumentReviewMetadata,
    DocumentUploadMetadata,
    GenericMetadata,
    InvitationMetadata,
    SignatureMetadata,
    TaskMetadata,
    default_metadata,
    metadata_class_for,
)
from .owner import OwnerRef, make_participant_id, split_participant_id
from .records import (
    Campaign,
    Commitment,
    Donation,
    Invitation,
    Participation,
    Principal,
    UserProfile,
)
from .task import VALUER_PLACEHOLDER, Task

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskType",
    "AssignedRole",
    "UserRole",
    "OwnerKind",
    "CommitmentDecision",
    "ParticipationStatus",
    "InvitationStatus",
    "EventType",
    "ActorType",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "OPEN_STATES",
    "validate_transition",
    # 分区
    "OwnerRef",
    "make_participant_id",
    "split_participant_id",
    # Task
    "Task",
    "VALUER_PLACEHOLDER",
    # Metadata
    "TaskMetadata",
    "SignatureMetadata",
    "CommitmentDecisionMetadata",
    "CommitmentOption",
    "InvitationMetadata",
    "DocumentUploadMetadata",
    "DocumentReviewMetadata",
    "AppraisalSubmissionMetadata",
    "GenericMetadata",
    "default_metadata",
    "metadata_class_for",
    # 记录
    "Principal",
    "UserProfile",
    "Campaign",
    "Participation",
    "Donation",
    "Commitment",
    "Invitation",
    # Event
    "TaskEvent",
    # Artifact
    "Artifact",
]
