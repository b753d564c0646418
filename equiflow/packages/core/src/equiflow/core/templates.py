"""任务模板工厂 -- 9 步版本化任务结构

角色交接通过依赖关系强制：
- 捐赠者签署 NDA → 承诺决策 → 邀请估值师 → 提交公司资料
- 估值师签署 NDA → 上传估值报告
- 捐赠者与组织的收尾任务依赖估值报告

任务 ID 由分区 ID 与步骤后缀确定性派生，依赖边直接引用可解析的 ID。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .config import TASK_STRUCTURE_VERSION
from .models.enums import AssignedRole, CommitmentDecision, TaskStatus, TaskType
from .models.metadata import CommitmentOption, default_metadata
from .models.owner import OwnerRef
from .models.task import VALUER_PLACEHOLDER, Task
from .projection import resolve_statuses

# 步骤后缀
SIGN_NDA = "sign_nda"
COMMITMENT_DECISION = "commitment_decision"
INVITE_VALUER = "invite_appraiser"
COMPANY_INFO = "company_info"
VALUER_SIGN_NDA = "appraiser_sign_nda"
VALUER_UPLOAD = "appraiser_upload"
DONOR_APPROVE = "donor_approve"
ORGANIZATION_APPROVE = "nonprofit_approve"
ORGANIZATION_UPLOAD = "nonprofit_upload"
FINAL_COMMITMENT = "final_commitment"

# 条件任务插入在捐赠者审阅（7）与组织审阅（8）之间
FINAL_COMMITMENT_ORDER = 7.5

COMMITMENT_OPTIONS: list[CommitmentOption] = [
    CommitmentOption(
        value=CommitmentDecision.COMMIT_NOW,
        label="Make Commitment Now",
        description="Commit to a donation amount or percentage before the valuation",
    ),
    CommitmentOption(
        value=CommitmentDecision.COMMIT_AFTER_VALUATION,
        label="Commit After Valuation",
        description="Wait for the independent valuation before committing",
    ),
]


class TaskTemplate(BaseModel):
    """单个步骤的模板定义"""

    suffix: str
    type: TaskType
    title: str
    description: str = ""
    role: AssignedRole
    order: float
    depends_on: list[str] = Field(default_factory=list)


TASK_TEMPLATES: list[TaskTemplate] = [
    TaskTemplate(
        suffix=SIGN_NDA,
        type=TaskType.SIGNATURE,
        title="Donor: Sign NDA",
        description="Review and sign the non-disclosure agreement",
        role=AssignedRole.DONOR,
        order=1,
    ),
    TaskTemplate(
        suffix=COMMITMENT_DECISION,
        type=TaskType.COMMITMENT_DECISION,
        title="Donor: Commitment Decision",
        description="Decide whether to commit now or after the valuation",
        role=AssignedRole.DONOR,
        order=2,
        depends_on=[SIGN_NDA],
    ),
    TaskTemplate(
        suffix=INVITE_VALUER,
        type=TaskType.INVITATION,
        title="Donor: Invite Appraiser",
        description="Invite an independent appraiser to value the equity",
        role=AssignedRole.DONOR,
        order=3,
        depends_on=[COMMITMENT_DECISION],
    ),
    TaskTemplate(
        suffix=COMPANY_INFO,
        type=TaskType.DOCUMENT_UPLOAD,
        title="Donor: Provide Company Information",
        description="Upload financial statements and company documents",
        role=AssignedRole.DONOR,
        order=4,
        depends_on=[INVITE_VALUER],
    ),
    TaskTemplate(
        suffix=VALUER_SIGN_NDA,
        type=TaskType.SIGNATURE,
        title="Appraiser: Sign NDA",
        description="Review and sign the non-disclosure agreement",
        role=AssignedRole.VALUER,
        order=5,
        depends_on=[COMPANY_INFO],
    ),
    TaskTemplate(
        suffix=VALUER_UPLOAD,
        type=TaskType.APPRAISAL_SUBMISSION,
        title="Appraiser: Upload Appraisal",
        description="Upload the completed appraisal report",
        role=AssignedRole.VALUER,
        order=6,
        depends_on=[VALUER_SIGN_NDA],
    ),
    TaskTemplate(
        suffix=DONOR_APPROVE,
        type=TaskType.DOCUMENT_REVIEW,
        title="Donor: Approve Documents",
        description="Review and approve the appraisal",
        role=AssignedRole.DONOR,
        order=7,
        depends_on=[VALUER_UPLOAD],
    ),
    TaskTemplate(
        suffix=ORGANIZATION_APPROVE,
        type=TaskType.DOCUMENT_REVIEW,
        title="Nonprofit: Approve Documents",
        description="Review and approve the donation documents",
        role=AssignedRole.ORGANIZATION,
        order=8,
        depends_on=[DONOR_APPROVE],
    ),
    TaskTemplate(
        suffix=ORGANIZATION_UPLOAD,
        type=TaskType.DOCUMENT_UPLOAD,
        title="Nonprofit: Upload Final Documents",
        description="Upload the executed donation agreement",
        role=AssignedRole.ORGANIZATION,
        order=9,
        depends_on=[ORGANIZATION_APPROVE, VALUER_UPLOAD],
    ),
]


def _metadata_for(template: TaskTemplate):
    if template.type == TaskType.COMMITMENT_DECISION:
        return default_metadata(template.type, options=list(COMMITMENT_OPTIONS))
    if template.type == TaskType.DOCUMENT_UPLOAD:
        return default_metadata(template.type, document_types=["supporting_document"])
    return default_metadata(template.type)


def build_task_set(
    owner: OwnerRef,
    donor_id: str,
    organization_id: str | None,
    now: datetime,
    created_by: str | None = None,
) -> list[Task]:
    """实例化分区的完整任务集

    Args:
        owner: 归属分区
        donor_id: 捐赠者用户 ID
        organization_id: 组织审批人用户 ID（活动创建者）
        now: 创建时间
        created_by: 创建者

    Returns:
        按 order 排列的任务列表，状态已经过依赖解析
    """
    assignees = {
        AssignedRole.DONOR: donor_id,
        AssignedRole.ORGANIZATION: organization_id,
        AssignedRole.VALUER: VALUER_PLACEHOLDER,
    }
    tasks = [
        Task(
            task_id=owner.task_id(template.suffix),
            owner=owner,
            type=template.type,
            title=template.title,
            description=template.description,
            assigned_role=template.role,
            assigned_to=assignees[template.role],
            status=TaskStatus.BLOCKED if template.depends_on else TaskStatus.PENDING,
            order=template.order,
            dependencies=[owner.task_id(dep) for dep in template.depends_on],
            metadata=_metadata_for(template),
            structure_version=TASK_STRUCTURE_VERSION,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        for template in TASK_TEMPLATES
    ]
    return resolve_statuses(tasks)


def build_final_commitment_task(
    owner: OwnerRef,
    donor_id: str,
    now: datetime,
    created_by: str | None = None,
) -> Task:
    """构造估值后的“最终承诺”条件任务（依赖捐赠者审阅）"""
    return Task(
        task_id=owner.task_id(FINAL_COMMITMENT),
        owner=owner,
        type=TaskType.COMMITMENT_DECISION,
        title="Donor: Make Final Commitment",
        description="Commit to the donation now that the valuation is available",
        assigned_role=AssignedRole.DONOR,
        assigned_to=donor_id,
        status=TaskStatus.BLOCKED,
        order=FINAL_COMMITMENT_ORDER,
        dependencies=[owner.task_id(DONOR_APPROVE)],
        metadata=default_metadata(
            TaskType.COMMITMENT_DECISION,
            options=[COMMITMENT_OPTIONS[0]],
            is_final_commitment=True,
        ),
        structure_version=TASK_STRUCTURE_VERSION,
        created_at=now,
        updated_at=now,
        created_by=created_by,
    )
