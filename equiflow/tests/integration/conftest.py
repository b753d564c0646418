"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from equiflow.core.models import Campaign, OwnerRef, Participation
from equiflow.core.store import StoreGroup, WriteBatch, create_store_group
from equiflow.gateway.services.sse_hub import SSEHub
from equiflow.provider import (
    LogEmailClient,
    ProviderConfig,
    StaticTokenVerifier,
    StubESignatureClient,
)
from httpx import ASGITransport, AsyncClient

TOKENS = {
    "donor-token": {"user_id": "donor1", "email": "donor1@example.com", "email_verified": True},
    "org-token": {
        "user_id": "org1",
        "email": "org1@example.com",
        "email_verified": True,
        "role": "organization",
    },
    "valuer-token": {"user_id": "valuer1", "email": "valuer@example.com", "email_verified": True},
    "admin-token": {
        "user_id": "admin1",
        "email": "admin@example.com",
        "email_verified": True,
        "role": "admin",
    },
}


def _wire_app(store_group: StoreGroup, esign_client=None, email_client=None):
    """创建 app 并手动注入 app.state（ASGITransport 不触发 lifespan）"""
    from equiflow.gateway.main import create_app

    app = create_app()
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    app.state.esign_client = esign_client or StubESignatureClient()
    app.state.email_client = email_client or LogEmailClient()
    app.state.auth_verifier = StaticTokenVerifier(TOKENS)
    app.state.provider_config = ProviderConfig(app_base_url="http://app.test")
    return app


async def _seed_participation(store_group: StoreGroup) -> OwnerRef:
    """写入活动与 donor1 的参与记录"""
    now = datetime.now(UTC)
    await store_group.campaign_store.save_campaign(
        Campaign(campaign_id="camp1", title="Spring Drive", created_by="org1")
    )
    batch = WriteBatch()
    batch.save_participation(
        Participation(
            participant_id="camp1_donor1",
            campaign_id="camp1",
            user_id="donor1",
            created_at=now,
            updated_at=now,
        )
    )
    await store_group.commit(batch)
    return OwnerRef.participant("camp1_donor1")


@pytest.fixture
def app_factory():
    return _wire_app


@pytest.fixture
def seed_participation():
    return _seed_participation

@pytest.fixture(autouse=True)
def _integration_env(tmp_path: Path):
    os.environ["EQUIFLOW_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["EQUIFLOW_ARTIFACTS_DIR"] = str(tmp_path / "artifacts")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"
    yield
    os.environ.pop("EQUIFLOW_DB_PATH", None)
    os.environ.pop("EQUIFLOW_ARTIFACTS_DIR", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def integration_store(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    store_group = await create_store_group(
        str(tmp_path / "test.db"),
        str(tmp_path / "artifacts"),
    )
    yield store_group
    await store_group.close()


@pytest.fixture
def esign_client() -> StubESignatureClient:
    return StubESignatureClient()


@pytest.fixture
def email_client() -> LogEmailClient:
    return LogEmailClient()


@pytest.fixture
def integration_app(integration_store, esign_client, email_client):
    """集成测试用 FastAPI app"""
    return _wire_app(integration_store, esign_client, email_client)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
