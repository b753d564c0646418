"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、artifacts 目录、邀请有效期、签名监控超时等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("EQUIFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "EQUIFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "equiflow.db"),
    )


def get_artifacts_dir() -> Path:
    """获取 Artifact 文件存储目录（签署后的文档归档）"""
    return Path(
        os.environ.get(
            "EQUIFLOW_ARTIFACTS_DIR",
            str(_get_base_dir() / "artifacts"),
        )
    )


# 估值师邀请有效期（天）
INVITATION_TTL_DAYS: int = int(os.environ.get("EQUIFLOW_INVITATION_TTL_DAYS", "7"))

# 签名监控：单任务 provider 调用超时（秒）
MONITOR_TASK_TIMEOUT_S: float = float(
    os.environ.get("EQUIFLOW_MONITOR_TASK_TIMEOUT_S", "15")
)

# 签名监控：整轮任务总时长上限（秒）
MONITOR_JOB_TIMEOUT_S: float = float(
    os.environ.get("EQUIFLOW_MONITOR_JOB_TIMEOUT_S", "120")
)

# 签名监控周期（秒），0 表示不在进程内周期运行，仅支持手动触发
MONITOR_INTERVAL_S: float = float(os.environ.get("EQUIFLOW_MONITOR_INTERVAL_S", "0"))

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("EQUIFLOW_SSE_HEARTBEAT_INTERVAL", "15")
)

# 新版任务结构版本标记
TASK_STRUCTURE_VERSION: str = "9-step"
