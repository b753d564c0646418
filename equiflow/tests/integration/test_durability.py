"""持久性集成测试 -- 重启后任务、事件与状态投影完整"""

from pathlib import Path

from equiflow.core.store import create_store_group
from httpx import ASGITransport, AsyncClient


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestDurability:
    async def test_task_set_survives_restart(
        self, tmp_path: Path, app_factory, seed_participation
    ):
        """创建任务并完成 NDA -> 关闭 Store -> 重新打开 -> 数据完整"""
        db_path = str(tmp_path / "durable.db")
        artifacts_dir = str(tmp_path / "artifacts")

        sg1 = await create_store_group(db_path, artifacts_dir)
        await seed_participation(sg1)
        async with AsyncClient(
            transport=ASGITransport(app=app_factory(sg1)),
            base_url="http://test",
        ) as c1:
            resp = await c1.post(
                "/api/owners/participant/camp1_donor1/tasks", headers=auth("donor-token")
            )
            assert resp.status_code == 201
            resp = await c1.post(
                "/api/tasks/camp1_donor1_sign_nda/complete", headers=auth("donor-token")
            )
            assert resp.status_code == 200
        await sg1.close()

        sg2 = await create_store_group(db_path, artifacts_dir)
        try:
            async with AsyncClient(
                transport=ASGITransport(app=app_factory(sg2)),
                base_url="http://test",
            ) as c2:
                resp = await c2.get(
                    "/api/tasks/camp1_donor1_commitment_decision",
                    headers=auth("donor-token"),
                )
                assert resp.status_code == 200
                data = resp.json()
                assert data["task"]["status"] == "pending"
                assert [e["type"] for e in data["events"]] == [
                    "TASK_CREATED",
                    "STATUS_CHANGED",
                ]

                resp = await c2.post(
                    "/api/owners/participant/camp1_donor1/tasks",
                    headers=auth("donor-token"),
                )
                assert resp.status_code == 200
                assert resp.json()["created"] is False
        finally:
            await sg2.close()
