"""工作流错误分类 -- 授权 / 校验 / 状态冲突 / 前置条件缺失

每个错误携带稳定的 code 字符串，Gateway 据此映射 HTTP 状态码，
调用方可据 code 区分具体原因（例如邀请过期与邮箱不匹配）。
"""


class WorkflowError(Exception):
    """工作流错误基类

    Attributes:
        code: 机器可读的原因码
        message: 人类可读的描述
        http_status: Gateway 层映射的 HTTP 状态码
    """

    code: str = "WORKFLOW_ERROR"
    http_status: int = 500

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthenticationError(WorkflowError):
    """未认证（缺少或无效的 bearer 凭证）"""

    code = "UNAUTHENTICATED"
    http_status = 401


class AuthorizationError(WorkflowError):
    """已认证但无权执行该操作（非指派人、角色不符）"""

    code = "FORBIDDEN"
    http_status = 403


class ValidationError(WorkflowError):
    """请求参数校验失败（未知决策值、任务类型不符等），发生在任何写入之前"""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(WorkflowError):
    """引用的任务 / 邀请不存在"""

    code = "NOT_FOUND"
    http_status = 404


class PrerequisiteMissingError(NotFoundError):
    """硬性前置记录缺失（如关联的 donation 确实不存在），对当前流转是致命的"""

    code = "PREREQUISITE_MISSING"


class StateConflictError(WorkflowError):
    """状态冲突基类"""

    code = "STATE_CONFLICT"
    http_status = 409


class TaskAlreadyCompletedError(StateConflictError):
    """任务已完成（终态）"""

    code = "TASK_ALREADY_COMPLETED"


class TaskBlockedError(StateConflictError):
    """任务仍有未完成的依赖"""

    code = "TASK_BLOCKED"


class InvitationNotPendingError(StateConflictError):
    """邀请已被响应（accepted / declined）"""

    code = "INVITATION_NOT_PENDING"


class InvitationExpiredError(StateConflictError):
    """邀请已过期"""

    code = "INVITATION_EXPIRED"


class EmailMismatchError(StateConflictError):
    """接受邀请的用户邮箱与被邀请邮箱不一致"""

    code = "EMAIL_MISMATCH"


class InvalidStatusTransitionError(StateConflictError):
    """任务状态流转不在状态机允许的范围内"""

    code = "INVALID_STATUS_TRANSITION"
