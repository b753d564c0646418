"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from equiflow.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def core_artifacts_dir(tmp_path: Path) -> Path:
    """核心层临时 artifacts 目录"""
    artifacts_dir = tmp_path / "artifacts"
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    return artifacts_dir


@pytest_asyncio.fixture
async def store_group(
    core_db_path: Path, core_artifacts_dir: Path
) -> AsyncGenerator[StoreGroup, None]:
    """核心层已初始化的 StoreGroup"""
    sg = await create_store_group(str(core_db_path), str(core_artifacts_dir))
    yield sg
    await sg.close()
