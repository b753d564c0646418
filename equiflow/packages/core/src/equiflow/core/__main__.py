"""CLI 入口模块 -- python -m equiflow.core <command>

支持的命令：
  reconcile-statuses   对所有分区重跑依赖解析并持久化差异
  repair-dependencies  一次性改写旧版悬空依赖 ID，随后重跑依赖解析
"""

import asyncio
import sys
from datetime import UTC, datetime

from .config import get_artifacts_dir, get_db_path

_COMMANDS = {
    "reconcile-statuses": "对所有分区重跑依赖解析并持久化差异",
    "repair-dependencies": "一次性改写旧版悬空依赖 ID，随后重跑依赖解析",
}


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m equiflow.core <command>")
        print("命令:")
        for name, help_text in _COMMANDS.items():
            print(f"  {name:<20} {help_text}")
        sys.exit(1)

    command = sys.argv[1]

    if command == "reconcile-statuses":
        asyncio.run(reconcile_statuses())
    elif command == "repair-dependencies":
        asyncio.run(repair_dependencies())
    else:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)


async def reconcile_statuses() -> None:
    """执行全量依赖解析"""
    from .projection import reconcile_all
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始重跑依赖解析...")

    store_group = await create_store_group(db_path, get_artifacts_dir())
    try:
        changed = await reconcile_all(store_group, datetime.now(UTC))
        print(f"完成，{changed} 个任务状态已修正")
    finally:
        await store_group.close()


async def repair_dependencies() -> None:
    """执行旧版依赖 ID 兼容转换"""
    from .compat import repair_dependencies as repair
    from .projection import reconcile_all
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始改写旧版依赖 ID...")

    store_group = await create_store_group(db_path, get_artifacts_dir())
    try:
        now = datetime.now(UTC)
        repaired = await repair(store_group, now)
        changed = await reconcile_all(store_group, now)
        print(f"完成，{repaired} 个任务依赖已改写，{changed} 个任务状态已修正")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
