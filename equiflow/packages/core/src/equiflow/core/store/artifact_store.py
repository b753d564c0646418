"""ArtifactStore SQLite + 文件系统实现

签署后的文档内容写入文件系统，元数据（hash / size / 路径）写入 SQLite。
"""

import hashlib
from datetime import datetime
from pathlib import Path

import aiosqlite

from ..models.artifact import Artifact


def compute_hash_and_size(content: bytes) -> tuple[str, int]:
    """计算 SHA-256 hash 和内容大小

    Args:
        content: 原始内容字节

    Returns:
        (sha256_hex, size_bytes) 元组
    """
    return hashlib.sha256(content).hexdigest(), len(content)


class SqliteArtifactStore:
    """ArtifactStore 的 SQLite + 文件系统实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        artifacts_dir: Path,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn if read_conn is not None else conn
        self._artifacts_dir = artifacts_dir

    async def put_artifact(self, artifact: Artifact, content: bytes) -> None:
        """存储 Artifact（文件写文件系统 + 元数据写 SQLite）

        注意：元数据写入不自动提交事务，需由调用方管理事务。
        """
        hash_hex, size = compute_hash_and_size(content)
        artifact.hash = hash_hex
        artifact.size = size

        file_path = self._get_artifact_path(artifact.task_id, artifact.artifact_id)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)
        artifact.storage_ref = str(file_path)

        await self._conn.execute(
            """
            INSERT INTO artifacts (artifact_id, task_id, ts, name, mime,
                                   storage_ref, size, hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.artifact_id,
                artifact.task_id,
                artifact.ts.isoformat(),
                artifact.name,
                artifact.mime,
                artifact.storage_ref,
                artifact.size,
                artifact.hash,
            ),
        )

    async def get_artifact(self, artifact_id: str) -> Artifact | None:
        """根据 artifact_id 查询 Artifact 元数据"""
        cursor = await self._read_conn.execute(
            "SELECT * FROM artifacts WHERE artifact_id = ?",
            (artifact_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_artifact(row)

    async def list_artifacts_for_task(self, task_id: str) -> list[Artifact]:
        """查询指定任务的所有 Artifact"""
        cursor = await self._read_conn.execute(
            "SELECT * FROM artifacts WHERE task_id = ? ORDER BY ts ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_artifact(row) for row in rows]

    async def get_artifact_content(self, artifact_id: str) -> bytes | None:
        """从 storage_ref 路径读取 Artifact 内容"""
        artifact = await self.get_artifact(artifact_id)
        if artifact is None or not artifact.storage_ref:
            return None
        file_path = Path(artifact.storage_ref)
        if not file_path.exists():
            return None
        return file_path.read_bytes()

    def _get_artifact_path(self, task_id: str, artifact_id: str) -> Path:
        """获取 Artifact 文件存储路径"""
        return self._artifacts_dir / task_id / artifact_id

    @staticmethod
    def _row_to_artifact(row: aiosqlite.Row) -> Artifact:
        """将数据库行转换为 Artifact 模型"""
        return Artifact(
            artifact_id=row["artifact_id"],
            task_id=row["task_id"],
            ts=datetime.fromisoformat(row["ts"]),
            name=row["name"],
            mime=row["mime"],
            storage_ref=row["storage_ref"],
            size=row["size"],
            hash=row["hash"],
        )
