"""Artifact Domain Model -- 归档的签署文档

hash 和 size 用于完整性校验。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Artifact(BaseModel):
    """Artifact 数据模型"""

    artifact_id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="关联的 Task ID")
    ts: datetime = Field(description="创建时间戳")
    name: str = Field(description="文件名")
    mime: str = Field(default="application/pdf", description="MIME 类型")
    storage_ref: str | None = Field(default=None, description="存储引用路径")
    size: int = Field(default=0, description="内容大小（字节）")
    hash: str = Field(default="", description="SHA-256 哈希")
