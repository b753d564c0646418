"""Equiflow Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：写入走共享写连接（WriteBatch 单事务提交），
读取走独立的只读连接，WAL 模式下只能看到已提交的数据。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from ..models.owner import OwnerRef
from .artifact_store import SqliteArtifactStore
from .event_store import SqliteEventStore
from .record_store import (
    SqliteCampaignStore,
    SqliteCommitmentStore,
    SqliteDonationStore,
    SqliteInvitationStore,
    SqliteParticipationStore,
    SqliteUserStore,
)
from .sqlite_init import init_db, open_read_connection, verify_wal_mode
from .task_store import SqliteTaskStore
from .transaction import TaskStatusConflictError, WriteBatch, commit_batch


class StoreGroup:
    """Store 实例组 -- 写连接 + 只读连接

    write_lock 串行化批次提交，保证写连接上的事务不交错；
    partition_lock 串行化同一分区内的“读取-计算-写回”，分区之间互不阻塞。
    读取不经过写连接，提交中的批次对读者不可见。
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        artifacts_dir: Path,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self.conn = conn
        self.read_conn = read_conn if read_conn is not None else conn
        self.write_lock = asyncio.Lock()
        self._partition_locks: dict[str, asyncio.Lock] = {}
        self._partition_waiters: dict[str, int] = {}
        self.task_store = SqliteTaskStore(conn, read_conn)
        self.event_store = SqliteEventStore(conn, read_conn)
        self.artifact_store = SqliteArtifactStore(conn, artifacts_dir, read_conn)
        self.invitation_store = SqliteInvitationStore(conn, read_conn)
        self.participation_store = SqliteParticipationStore(conn, read_conn)
        self.donation_store = SqliteDonationStore(conn, read_conn)
        self.commitment_store = SqliteCommitmentStore(conn, read_conn)
        self.user_store = SqliteUserStore(conn, read_conn)
        self.campaign_store = SqliteCampaignStore(conn, read_conn)

    @asynccontextmanager
    async def partition_lock(self, owner: OwnerRef) -> AsyncIterator[None]:
        """持有分区级锁；最后一个持有者 / 等待者退出时回收锁对象"""
        key = owner.key
        lock = self._partition_locks.setdefault(key, asyncio.Lock())
        self._partition_waiters[key] = self._partition_waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._partition_waiters[key] -= 1
            if not self._partition_waiters[key]:
                del self._partition_waiters[key]
                del self._partition_locks[key]

    @property
    def active_partition_locks(self) -> int:
        return len(self._partition_locks)

    async def commit(self, batch: WriteBatch) -> None:
        """原子提交一个写批次"""
        await commit_batch(self, batch)

    async def close(self) -> None:
        if self.read_conn is not self.conn:
            await self.read_conn.close()
        await self.conn.close()


async def create_store_group(
    db_path: str,
    artifacts_dir: str | Path,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        artifacts_dir: Artifact 文件存储目录

    Returns:
        StoreGroup 实例
    """
    artifacts_path = Path(artifacts_dir)
    artifacts_path.mkdir(parents=True, exist_ok=True)

    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    read_conn = await open_read_connection(db_path)

    return StoreGroup(conn=conn, artifacts_dir=artifacts_path, read_conn=read_conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteArtifactStore",
    "SqliteInvitationStore",
    "SqliteParticipationStore",
    "SqliteDonationStore",
    "SqliteCommitmentStore",
    "SqliteUserStore",
    "SqliteCampaignStore",
    "WriteBatch",
    "TaskStatusConflictError",
    "commit_batch",
    "init_db",
    "verify_wal_mode",
]
