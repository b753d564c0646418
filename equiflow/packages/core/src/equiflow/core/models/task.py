"""Task Domain Model -- 捐赠流程中的一个步骤

Task 归属于唯一的分区（OwnerRef），依赖边只指向同一分区内的任务。
状态只能是 blocked / pending / in_progress / completed 之一，completed 为终态。
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import AssignedRole, TaskStatus, TaskType
from .metadata import TaskMetadata
from .owner import OwnerRef

# 估值师占位指派人，邀请被接受后替换为真实用户 ID
VALUER_PLACEHOLDER = "pending-valuer"


class Task(BaseModel):
    """Task 数据模型

    dependencies 为同一分区内其他任务的 ID 集合（无序，无环）；
    order 为展示顺序提示，可取小数以便在两个步骤之间插入条件任务。
    """

    task_id: str = Field(description="唯一标识，通常为 {owner_id}_{suffix}")
    owner: OwnerRef = Field(description="归属分区")
    type: TaskType = Field(description="任务类型")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    assigned_role: AssignedRole = Field(description="指派角色")
    assigned_to: str | None = Field(
        default=None, description="指派用户 ID，估值师任务在邀请接受前为占位值"
    )
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    order: float = Field(description="展示顺序提示")
    dependencies: list[str] = Field(default_factory=list, description="依赖任务 ID")
    metadata: TaskMetadata = Field(description="按类型区分的 metadata")
    structure_version: str | None = Field(
        default=None, description="任务结构版本标记（迁移探测用）"
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    completed_by: str | None = Field(default=None, description="完成者")
    created_by: str | None = Field(default=None, description="创建者")

    @model_validator(mode="after")
    def _check_metadata_kind(self) -> "Task":
        if self.metadata.kind != self.type.value:
            raise ValueError(
                f"metadata kind {self.metadata.kind!r} 与任务类型 {self.type.value!r} 不符"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED
