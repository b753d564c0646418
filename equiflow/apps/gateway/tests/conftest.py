"""apps/gateway 测试配置 -- httpx AsyncClient + 临时 SQLite + 内存 provider"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from equiflow.core.models import (
    Campaign,
    Donation,
    OwnerRef,
    Participation,
    Principal,
    UserRole,
    make_participant_id,
)
from equiflow.core.store import StoreGroup, WriteBatch, create_store_group
from equiflow.gateway.services.invitation_service import InvitationService
from equiflow.gateway.services.sse_hub import SSEHub
from equiflow.gateway.services.task_service import TaskService
from equiflow.provider import (
    LogEmailClient,
    ProviderConfig,
    StaticTokenVerifier,
    StubESignatureClient,
)
from httpx import ASGITransport, AsyncClient

CAMPAIGN_ID = "camp1"
DONOR_ID = "donor1"
ORG_ID = "org1"
VALUER_ID = "valuer1"

# bearer token -> 身份
TOKENS = {
    "donor-token": {
        "user_id": DONOR_ID,
        "email": "donor1@example.com",
        "email_verified": True,
    },
    "org-token": {
        "user_id": ORG_ID,
        "email": "org1@example.com",
        "email_verified": True,
        "role": "organization",
    },
    "valuer-token": {
        "user_id": VALUER_ID,
        "email": "Valuer@Example.com",
        "email_verified": True,
    },
    "other-token": {
        "user_id": "stranger",
        "email": "stranger@example.com",
        "email_verified": True,
    },
    "admin-token": {
        "user_id": "admin1",
        "email": "admin@example.com",
        "email_verified": True,
        "role": "admin",
    },
    # 认证服务未声明 email_verified
    "unverified-token": {"user_id": "u9", "email": "u9@example.com"},
}


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    sg = await create_store_group(
        str(tmp_path / "sqlite" / "test.db"),
        str(tmp_path / "artifacts"),
    )
    yield sg
    await sg.close()


@pytest.fixture
def sse_hub() -> SSEHub:
    return SSEHub()


@pytest.fixture
def esign_client() -> StubESignatureClient:
    return StubESignatureClient()


@pytest.fixture
def email_client() -> LogEmailClient:
    return LogEmailClient()


@pytest.fixture
def task_service(store_group, sse_hub) -> TaskService:
    return TaskService(store_group, sse_hub)


@pytest.fixture
def invitation_service(store_group, sse_hub, email_client) -> InvitationService:
    return InvitationService(
        store_group,
        email_client=email_client,
        sse_hub=sse_hub,
        app_base_url="http://app.test",
    )


@pytest.fixture
def donor() -> Principal:
    return Principal(user_id=DONOR_ID, email="donor1@example.com")


@pytest.fixture
def organization() -> Principal:
    return Principal(user_id=ORG_ID, email="org1@example.com", role=UserRole.ORGANIZATION)


@pytest.fixture
def valuer() -> Principal:
    return Principal(user_id=VALUER_ID, email="Valuer@Example.com")


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id="admin1", email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def stranger() -> Principal:
    return Principal(user_id="stranger", email="stranger@example.com")


@pytest.fixture
def seed_participant(store_group):
    """写入活动与捐赠者参与记录，返回参与分区 OwnerRef"""

    async def _seed(
        user_id: str = DONOR_ID,
        campaign_id: str = CAMPAIGN_ID,
        donation_id: str | None = None,
    ) -> OwnerRef:
        now = datetime.now(UTC)
        participant_id = make_participant_id(campaign_id, user_id)
        batch = WriteBatch()
        batch.save_participation(
            Participation(
                participant_id=participant_id,
                campaign_id=campaign_id,
                user_id=user_id,
                donation_id=donation_id,
                created_at=now,
                updated_at=now,
            )
        )
        await store_group.campaign_store.save_campaign(
            Campaign(campaign_id=campaign_id, title="Spring Drive", created_by=ORG_ID)
        )
        await store_group.commit(batch)
        return OwnerRef.participant(participant_id)

    return _seed


@pytest.fixture
def seed_donation(store_group):
    """写入活动与旧版捐赠记录，返回旧版分区 OwnerRef"""

    async def _seed(donation_id: str = "don-1", donor_id: str = DONOR_ID) -> OwnerRef:
        now = datetime.now(UTC)
        batch = WriteBatch()
        batch.save_donation(
            Donation(
                donation_id=donation_id,
                campaign_id=CAMPAIGN_ID,
                donor_id=donor_id,
                created_at=now,
                updated_at=now,
            )
        )
        await store_group.campaign_store.save_campaign(
            Campaign(campaign_id=CAMPAIGN_ID, title="Spring Drive", created_by=ORG_ID)
        )
        await store_group.commit(batch)
        return OwnerRef.legacy(donation_id)

    return _seed


@pytest_asyncio.fixture
async def app(store_group, sse_hub, esign_client, email_client):
    """创建测试用 FastAPI app 实例（ASGITransport 不触发 lifespan，手动注入 app.state）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from equiflow.gateway.main import create_app

    application = create_app()
    application.state.store_group = store_group
    application.state.sse_hub = sse_hub
    application.state.esign_client = esign_client
    application.state.email_client = email_client
    application.state.auth_verifier = StaticTokenVerifier(TOKENS)
    application.state.provider_config = ProviderConfig(app_base_url="http://app.test")

    yield application

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
