"""任务 metadata -- 按任务类型区分的 tagged variant

每种 TaskType 有自己的 metadata 形状，以 `kind` 字段作为判别键。
公共基类承载完成载荷与解锁标记。
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from .enums import CommitmentDecision, TaskType


class _MetadataBase(BaseModel):
    """所有任务类型共享的 metadata 字段"""

    completion_payload: dict[str, Any] | None = Field(
        default=None, description="完成时提交的可选载荷"
    )
    unblocked_by: str | None = Field(
        default=None, description="触发解锁的任务 ID"
    )
    unblocked_at: datetime | None = Field(default=None, description="解锁时间")
    unblocked_via_monitoring: bool = Field(
        default=False, description="是否由签名监控触发解锁"
    )


class SignatureMetadata(_MetadataBase):
    """电子签名任务 metadata"""

    kind: Literal["signature"] = "signature"
    envelope_id: str | None = Field(default=None, description="电子签名信封 ID")
    provider_status: str | None = Field(
        default=None, description="最近一次查询到的信封状态"
    )
    last_monitoring_check: datetime | None = Field(
        default=None, description="最近一次监控检查时间"
    )
    provider_completed_at: datetime | None = Field(
        default=None, description="provider 侧签署完成时间"
    )
    completed_via_monitoring: bool = Field(
        default=False, description="是否由签名监控完成"
    )
    signed_document_artifact_id: str | None = Field(
        default=None, description="已归档的签署文档 Artifact ID"
    )


class CommitmentOption(BaseModel):
    """承诺决策选项"""

    value: CommitmentDecision
    label: str
    description: str = ""


class CommitmentDecisionMetadata(_MetadataBase):
    """承诺决策任务 metadata"""

    kind: Literal["commitment_decision"] = "commitment_decision"
    options: list[CommitmentOption] = Field(default_factory=list)
    is_final_commitment: bool = Field(
        default=False, description="是否为估值后的最终承诺任务"
    )
    decision: CommitmentDecision | None = None
    decided_at: datetime | None = None
    commitment_data: dict[str, Any] | None = None


class InvitationMetadata(_MetadataBase):
    """邀请估值师任务 metadata"""

    kind: Literal["invitation"] = "invitation"
    invitation_role: str = "valuer"
    invitee_email: str | None = None
    invitation_token: str | None = None
    invited_at: datetime | None = None


class DocumentUploadMetadata(_MetadataBase):
    """文档上传任务 metadata"""

    kind: Literal["document_upload"] = "document_upload"
    document_types: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)


class DocumentReviewMetadata(_MetadataBase):
    """文档审阅任务 metadata"""

    kind: Literal["document_review"] = "document_review"
    approved: bool | None = None
    review_notes: str | None = None


class AppraisalSubmissionMetadata(_MetadataBase):
    """估值报告提交任务 metadata"""

    kind: Literal["appraisal_submission"] = "appraisal_submission"
    document_ids: list[str] = Field(default_factory=list)
    valuation_amount: float | None = None


class GenericMetadata(_MetadataBase):
    """通用任务 metadata"""

    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


TaskMetadata = Annotated[
    SignatureMetadata
    | CommitmentDecisionMetadata
    | InvitationMetadata
    | DocumentUploadMetadata
    | DocumentReviewMetadata
    | AppraisalSubmissionMetadata
    | GenericMetadata,
    Field(discriminator="kind"),
]

_METADATA_BY_TYPE: dict[TaskType, type[_MetadataBase]] = {
    TaskType.SIGNATURE: SignatureMetadata,
    TaskType.COMMITMENT_DECISION: CommitmentDecisionMetadata,
    TaskType.INVITATION: InvitationMetadata,
    TaskType.DOCUMENT_UPLOAD: DocumentUploadMetadata,
    TaskType.DOCUMENT_REVIEW: DocumentReviewMetadata,
    TaskType.APPRAISAL_SUBMISSION: AppraisalSubmissionMetadata,
    TaskType.GENERIC: GenericMetadata,
}


def metadata_class_for(task_type: TaskType) -> type[_MetadataBase]:
    """返回任务类型对应的 metadata 类"""
    return _METADATA_BY_TYPE[task_type]


def default_metadata(task_type: TaskType, **fields: Any) -> TaskMetadata:
    """构造指定任务类型的 metadata 实例"""
    return metadata_class_for(task_type)(**fields)  # type: ignore[return-value]
