"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL（owner_kind + owner_id 组成分区键）
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id           TEXT PRIMARY KEY,
    owner_kind        TEXT NOT NULL,
    owner_id          TEXT NOT NULL,
    type              TEXT NOT NULL,
    title             TEXT NOT NULL DEFAULT '',
    description       TEXT NOT NULL DEFAULT '',
    assigned_role     TEXT NOT NULL,
    assigned_to       TEXT,
    status            TEXT NOT NULL DEFAULT 'pending',
    sort_order        REAL NOT NULL DEFAULT 0,
    dependencies      TEXT NOT NULL DEFAULT '[]',
    metadata          TEXT NOT NULL DEFAULT '{}',
    structure_version TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    completed_at      TEXT,
    completed_by      TEXT,
    created_by        TEXT
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_kind, owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_type_status ON tasks(type, status);",
]

# events 表 DDL（审计轨迹，append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id    TEXT PRIMARY KEY,
    owner_kind  TEXT NOT NULL,
    owner_id    TEXT NOT NULL,
    task_id     TEXT,
    ts          TEXT NOT NULL,
    type        TEXT NOT NULL,
    actor       TEXT NOT NULL,
    actor_id    TEXT NOT NULL DEFAULT '',
    payload     TEXT NOT NULL DEFAULT '{}'
);
"""

_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_owner ON events(owner_kind, owner_id, event_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_task ON events(task_id, event_id);",
]

# artifacts 表 DDL（不对 tasks 建外键：迁移会删除任务，归档文档保留）
_ARTIFACTS_DDL = """
CREATE TABLE IF NOT EXISTS artifacts (
    artifact_id  TEXT PRIMARY KEY,
    task_id      TEXT NOT NULL,
    ts           TEXT NOT NULL,
    name         TEXT NOT NULL DEFAULT '',
    mime         TEXT NOT NULL DEFAULT 'application/pdf',
    storage_ref  TEXT,
    size         INTEGER NOT NULL DEFAULT 0,
    hash         TEXT NOT NULL DEFAULT ''
);
"""

_ARTIFACTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_artifacts_task_id ON artifacts(task_id);",
]

_INVITATIONS_DDL = """
CREATE TABLE IF NOT EXISTS invitations (
    token            TEXT PRIMARY KEY,
    owner_kind       TEXT NOT NULL,
    owner_id         TEXT NOT NULL,
    invitee_email    TEXT NOT NULL,
    inviter_id       TEXT NOT NULL,
    personal_message TEXT,
    status           TEXT NOT NULL DEFAULT 'pending',
    created_at       TEXT NOT NULL,
    expires_at       TEXT NOT NULL,
    accepted_by      TEXT,
    responded_at     TEXT
);
"""

_PARTICIPATIONS_DDL = """
CREATE TABLE IF NOT EXISTS participations (
    participant_id        TEXT PRIMARY KEY,
    campaign_id           TEXT NOT NULL,
    user_id               TEXT NOT NULL,
    role                  TEXT NOT NULL DEFAULT 'donor',
    status                TEXT NOT NULL DEFAULT 'interested',
    commitment_timing     TEXT,
    structure_version     TEXT,
    valuer_id             TEXT,
    valuer_email          TEXT,
    donation_id           TEXT,
    linked_participant_id TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);
"""

_DONATIONS_DDL = """
CREATE TABLE IF NOT EXISTS donations (
    donation_id      TEXT PRIMARY KEY,
    campaign_id      TEXT NOT NULL,
    donor_id         TEXT NOT NULL,
    valuer_id        TEXT,
    valuer_email     TEXT,
    appraisal_status TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_COMMITMENTS_DDL = """
CREATE TABLE IF NOT EXISTS commitments (
    owner_kind      TEXT NOT NULL,
    owner_id        TEXT NOT NULL,
    amount          REAL,
    commitment_type TEXT,
    committed_by    TEXT NOT NULL,
    committed_at    TEXT NOT NULL,
    data            TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (owner_kind, owner_id)
);
"""

_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT PRIMARY KEY,
    email       TEXT NOT NULL DEFAULT '',
    role        TEXT,
    updated_at  TEXT NOT NULL
);
"""

_CAMPAIGNS_DDL = """
CREATE TABLE IF NOT EXISTS campaigns (
    campaign_id TEXT PRIMARY KEY,
    title       TEXT NOT NULL DEFAULT '',
    created_by  TEXT NOT NULL
);
"""

_RECORD_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_invitations_owner ON invitations(owner_kind, owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_participations_user ON participations(user_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _TASKS_DDL,
        _EVENTS_DDL,
        _ARTIFACTS_DDL,
        _INVITATIONS_DDL,
        _PARTICIPATIONS_DDL,
        _DONATIONS_DDL,
        _COMMITMENTS_DDL,
        _USERS_DDL,
        _CAMPAIGNS_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _EVENTS_INDEXES + _ARTIFACTS_INDEXES + _RECORD_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"


async def open_read_connection(db_path: str) -> aiosqlite.Connection:
    """打开只读连接

    自动提交模式下每条 SELECT 各自是一个读事务，
    在 WAL 模式下只看到已提交的写入。
    """
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA busy_timeout = 5000;")
    await conn.execute("PRAGMA query_only = ON;")
    return conn
