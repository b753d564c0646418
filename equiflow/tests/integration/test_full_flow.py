"""端到端集成测试

创建任务集 -> 登记信封 -> 签名监控完成 NDA -> 估值后承诺 -> 邀请估值师并接受
-> 估值师上传 -> 最终承诺 -> 组织审批，全程经 HTTP，断言每步解锁与审计事件。
"""

from datetime import UTC, datetime

from httpx import AsyncClient

P = "camp1_donor1"


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _statuses(client: AsyncClient) -> dict[str, str]:
    resp = await client.get(f"/api/owners/participant/{P}/tasks", headers=auth("donor-token"))
    assert resp.status_code == 200
    return {t["task_id"].removeprefix(f"{P}_"): t["status"] for t in resp.json()["tasks"]}


async def _complete(client: AsyncClient, suffix: str, token: str) -> None:
    resp = await client.post(f"/api/tasks/{P}_{suffix}/complete", headers=auth(token))
    assert resp.status_code == 200, resp.json()


class TestFullFlow:
    async def test_commit_after_valuation_flow(
        self,
        client: AsyncClient,
        integration_store,
        esign_client,
        email_client,
        seed_participation,
    ):
        owner = await seed_participation(integration_store)

        # 1. 创建任务集
        resp = await client.post(
            f"/api/owners/participant/{P}/tasks", headers=auth("donor-token")
        )
        assert resp.status_code == 201
        statuses = await _statuses(client)
        assert len(statuses) == 9
        assert [s for s, v in statuses.items() if v == "pending"] == ["sign_nda"]

        # 2. 登记信封，签名监控发现信封已完成
        resp = await client.post(
            f"/api/tasks/{P}_sign_nda/signature",
            json={"envelope_id": "env-1"},
            headers=auth("donor-token"),
        )
        assert resp.status_code == 200
        assert (await _statuses(client))["sign_nda"] == "in_progress"
        esign_client.set_status("env-1", "completed", datetime(2025, 1, 15, tzinfo=UTC))

        resp = await client.post("/api/tasks/monitor-signatures", headers=auth("admin-token"))
        assert resp.json()["summary"]["completed"] == 1
        statuses = await _statuses(client)
        assert statuses["sign_nda"] == "completed"
        assert statuses["commitment_decision"] == "pending"

        resp = await client.get(f"/api/tasks/{P}_sign_nda", headers=auth("donor-token"))
        assert [a["name"] for a in resp.json()["artifacts"]] == ["signed-env-1.pdf"]

        # 3. 估值后再承诺：插入最终承诺任务
        resp = await client.post(
            f"/api/tasks/{P}_commitment_decision/commitment-decision",
            json={"decision": "commit_after_valuation"},
            headers=auth("donor-token"),
        )
        assert resp.status_code == 200
        statuses = await _statuses(client)
        assert len(statuses) == 10
        assert statuses["invite_appraiser"] == "pending"
        assert statuses["final_commitment"] == "blocked"

        # 4. 邀请估值师
        resp = await client.post(
            "/api/invitations",
            json={
                "owner_kind": "participant",
                "owner_id": P,
                "invitee_email": "valuer@example.com",
                "personal_message": "Looking forward to it",
            },
            headers=auth("donor-token"),
        )
        assert resp.status_code == 201
        token = resp.json()["invitation"]["token"]
        assert f"http://app.test/invitations/{token}" in email_client.sent[0]["html"]

        # 5. 估值师接受邀请，估值师任务改派
        resp = await client.post(
            f"/api/invitations/{token}/accept", headers=auth("valuer-token")
        )
        assert resp.status_code == 200
        assert resp.json()["role_granted"] is True

        # 6. 捐赠者补充公司信息，估值师签署并上传
        await _complete(client, "company_info", "donor-token")
        await _complete(client, "appraiser_sign_nda", "valuer-token")
        await _complete(client, "appraiser_upload", "valuer-token")
        await _complete(client, "donor_approve", "donor-token")

        # 7. 组织审阅需等待最终承诺
        resp = await client.post(
            f"/api/tasks/{P}_nonprofit_approve/complete", headers=auth("org-token")
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "TASK_BLOCKED"

        resp = await client.post(
            f"/api/tasks/{P}_final_commitment/commitment-decision",
            json={"decision": "commit_now", "commitment_data": {"amount": 1000}},
            headers=auth("donor-token"),
        )
        assert resp.status_code == 200
        assert resp.json()["commitment_recorded"] is True

        # 8. 组织审批并上传
        await _complete(client, "nonprofit_approve", "org-token")
        await _complete(client, "nonprofit_upload", "org-token")

        statuses = await _statuses(client)
        assert set(statuses.values()) == {"completed"}

        participation = await integration_store.participation_store.get_participation(P)
        assert participation.status == "committed"
        assert participation.valuer_id == "valuer1"

        events = await integration_store.event_store.get_events_for_owner(owner)
        types = [e.type for e in events]
        assert types.count("TASK_COMPLETED") == 10
        for expected in (
            "SIGNATURE_STARTED",
            "COMMITMENT_DECIDED",
            "DEPENDENCIES_REWRITTEN",
            "INVITATION_ISSUED",
            "INVITATION_ACCEPTED",
            "TASKS_REASSIGNED",
        ):
            assert expected in types
        assert [e.event_id for e in events] == sorted(e.event_id for e in events)

    async def test_commit_now_flow_skips_final_commitment(
        self, client: AsyncClient, integration_store, seed_participation
    ):
        await seed_participation(integration_store)
        await client.post(f"/api/owners/participant/{P}/tasks", headers=auth("donor-token"))
        await _complete(client, "sign_nda", "donor-token")

        resp = await client.post(
            f"/api/tasks/{P}_commitment_decision/commitment-decision",
            json={"decision": "commit_now", "commitment_data": {"amount": 50}},
            headers=auth("donor-token"),
        )
        assert resp.json()["commitment_recorded"] is True

        statuses = await _statuses(client)
        assert "final_commitment" not in statuses
        assert statuses["invite_appraiser"] == "pending"
        assert statuses["nonprofit_approve"] == "blocked"
