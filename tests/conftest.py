"""Pytest fixtures and configuration for M365 bulk recovery client tests.

Provides common fixtures for configuration, a mocked GraphQL client, and
canned backend records.
"""

import os
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from m365_recovery.config import ENV_OVERRIDES, reset_config
from m365_recovery.config_schema import AppConfig
from m365_recovery.core.rate_limiter import reset_buckets
from m365_recovery.recovery.models import SubscriptionRef

INSTANCE_ID = "3f2b8c1e-9a4d-4e6f-b1c2-7d8e9f0a1b2c"
SUBSCRIPTION_ID = "5a1c0e2f-0d3b-4c8e-9f7a-6b5c4d3e2f10"


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def reset_rate_buckets() -> Generator[None, None, None]:
    """Give every test fresh token buckets."""
    reset_buckets()
    yield
    reset_buckets()


@pytest.fixture(autouse=True)
def clear_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's RSC_BASE_URL / RSC_CLIENT_ID out of config tests."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

rsc:
  base_url: "https://example.my.rubrik.com/"
  client_id: "client|test-client-id"

polling:
  interval_seconds: 10
  timeout_minutes: 60
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "rsc": {
            "base_url": "https://example.my.rubrik.com",
            "client_id": "client|test-client-id",
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the M365_RECOVERY_CONFIG_PATH environment variable."""
    old_value = os.environ.get("M365_RECOVERY_CONFIG_PATH")
    os.environ["M365_RECOVERY_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["M365_RECOVERY_CONFIG_PATH"]
    else:
        os.environ["M365_RECOVERY_CONFIG_PATH"] = old_value


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock RscClient."""
    return MagicMock()


@pytest.fixture
def subscription() -> SubscriptionRef:
    """Return a resolved subscription."""
    return SubscriptionRef(name="Contoso", id=SUBSCRIPTION_ID)


@pytest.fixture
def org_nodes() -> list[dict[str, Any]]:
    """Organization nodes as returned by the o365Orgs connection."""
    return [
        {"id": SUBSCRIPTION_ID, "name": "Contoso", "status": "ACTIVE"},
        {"id": "9e8d7c6b-5a4f-4e3d-2c1b-0a9f8e7d6c5b", "name": "Fabrikam", "status": "ACTIVE"},
        {"id": "11111111-2222-4333-8444-555555555555", "name": "Contoso", "status": "INACTIVE"},
    ]


@pytest.fixture
def raw_progress() -> dict[str, Any]:
    """A raw bulkRecoveryProgress record for a running recovery."""
    return {
        "status": "IN_PROGRESS",
        "currentStep": "RESTORING_ITEMS",
        "failedObjects": 2,
        "succeededObjects": 30,
        "inProgressObjects": 18,
        "totalObjects": 100,
        "objectsWithoutSnapshot": 1,
        "groupsProcessed": 0,
        "totalGroups": 1,
        "createTime": 1704067200000,
        "startTime": 1704067260000,
        "endTime": None,
        "elapsedTime": 93784000,
        "failureReason": None,
        "groupProgress": [
            {
                "groupName": "Finance",
                "groupId": "grp-123",
                "groupType": "AD_GROUP",
                "workloadProgress": [
                    {
                        "workloadType": "O365_ONEDRIVE",
                        "status": "IN_PROGRESS",
                        "failedObjects": 2,
                        "succeededObjects": 30,
                        "inProgressObjects": 18,
                        "totalObjects": 100,
                    }
                ],
            }
        ],
    }
