"""Provider 包测试 fixtures"""

import pytest

_PROVIDER_ENV_VARS = [
    "EQUIFLOW_ESIGN_MODE",
    "ESIGN_BASE_URL",
    "ESIGN_ACCOUNT_ID",
    "ESIGN_ACCESS_TOKEN",
    "ESIGN_TIMEOUT_S",
    "ESIGN_WEBHOOK_SECRET",
    "EQUIFLOW_EMAIL_MODE",
    "EMAIL_BASE_URL",
    "EMAIL_API_KEY",
    "EMAIL_FROM",
    "EMAIL_TIMEOUT_S",
    "EQUIFLOW_AUTH_MODE",
    "AUTH_BASE_URL",
    "AUTH_TIMEOUT_S",
    "AUTH_STATIC_TOKENS",
    "EQUIFLOW_APP_BASE_URL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """清除所有 provider 相关环境变量"""
    for name in _PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def envelope_payload() -> dict:
    """已签署完成的信封响应"""
    return {
        "envelopeId": "env-1",
        "status": "completed",
        "completedDateTime": "2025-01-15T10:30:00Z",
    }
