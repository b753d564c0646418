"""枚举定义 -- 任务状态机、任务类型、角色、归属类型、记录状态

包含 TaskStatus 状态机、TaskType、AssignedRole、OwnerKind、EventType、
ActorType 等枚举，以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机

    blocked / pending / in_progress / completed 是流程唯一合法的四个状态。
    """

    BLOCKED = "blocked"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.BLOCKED: {TaskStatus.PENDING, TaskStatus.IN_PROGRESS},
    TaskStatus.PENDING: {
        TaskStatus.BLOCKED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.BLOCKED,
        TaskStatus.PENDING,
        TaskStatus.COMPLETED,
    },
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {TaskStatus.COMPLETED}

# 签名监控扫描的状态集合
OPEN_STATES: set[TaskStatus] = {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}


class TaskType(StrEnum):
    """任务类型（封闭枚举），每种类型对应一种 metadata 形状"""

    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_REVIEW = "document_review"
    SIGNATURE = "signature"
    COMMITMENT_DECISION = "commitment_decision"
    INVITATION = "invitation"
    APPRAISAL_SUBMISSION = "appraisal_submission"
    GENERIC = "generic"


class AssignedRole(StrEnum):
    """任务指派角色"""

    DONOR = "donor"
    ORGANIZATION = "organization"
    VALUER = "valuer"


class UserRole(StrEnum):
    """用户角色 -- ADMIN 为提升角色，可完成任意任务"""

    DONOR = "donor"
    ORGANIZATION = "organization"
    VALUER = "valuer"
    ADMIN = "admin"


class OwnerKind(StrEnum):
    """任务归属分区类型"""

    # 旧版：以 donation id 为分区键
    LEGACY = "legacy"
    # 新版：以 participant id（{campaign_id}_{user_id}）为分区键
    PARTICIPANT = "participant"


class CommitmentDecision(StrEnum):
    """承诺决策（流程中唯一的分支点）"""

    COMMIT_NOW = "commit_now"
    COMMIT_AFTER_VALUATION = "commit_after_valuation"


class ParticipationStatus(StrEnum):
    """参与记录状态"""

    INTERESTED = "interested"
    ACTIVE = "active"
    AWAITING_VALUATION = "awaiting_valuation"
    COMMITTED = "committed"


class InvitationStatus(StrEnum):
    """估值师邀请状态"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class EventType(StrEnum):
    """审计事件类型"""

    TASK_CREATED = "TASK_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    TASK_COMPLETED = "TASK_COMPLETED"
    COMMITMENT_DECIDED = "COMMITMENT_DECIDED"
    DEPENDENCIES_REWRITTEN = "DEPENDENCIES_REWRITTEN"
    TASKS_REASSIGNED = "TASKS_REASSIGNED"
    INVITATION_ISSUED = "INVITATION_ISSUED"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    INVITATION_DECLINED = "INVITATION_DECLINED"
    TASKS_MIGRATED = "TASKS_MIGRATED"
    SIGNATURE_STARTED = "SIGNATURE_STARTED"
    SIGNATURE_STATUS_CHECKED = "SIGNATURE_STATUS_CHECKED"


class ActorType(StrEnum):
    """操作者类型"""

    USER = "user"
    MONITOR = "monitor"
    SYSTEM = "system"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
