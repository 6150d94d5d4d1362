# ABOUTME: Pytest fixtures and configuration for Scylla Cloud client tests
# ABOUTME: Provides shared fixtures for unit and integration tests

import os
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from scylla_cloud.config import CloudInstance, SecuritySettings
from scylla_cloud.metadata import MetadataCache
from scylla_cloud.models import (
    CloudProvider,
    InstanceType,
    Region,
    RegionCatalog,
    ScyllaVersion,
    VersionCatalog,
)
from scylla_cloud.utils.client import ScyllaCloudClient
from scylla_cloud.utils.safety import SafetyGuard
from scylla_cloud.utils.transport import RetryPolicy

BASE_URL = "https://cloud.example.com/api/v0"
ACCOUNT_ID = 7
ACCOUNT_URL = f"{BASE_URL}/account/{ACCOUNT_ID}"


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def envelope(data: Any = None, error: str = "") -> dict[str, Any]:
    """Build a Scylla Cloud response envelope."""
    return {"error": error, "data": data}


@pytest.fixture
def instance() -> CloudInstance:
    """Instance with a known account so no discovery request is made."""
    return CloudInstance(
        url=BASE_URL,
        token=SecretStr("test-token"),
        account_id=ACCOUNT_ID,
        name="test",
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_backoff=1.0, multiplier=2.0, max_backoff=30.0)


@pytest.fixture
async def client(
    instance: CloudInstance,
    sleep: RecordingSleep,
    fast_retry: RetryPolicy,
) -> AsyncIterator[ScyllaCloudClient]:
    """Live client object talking to respx-mocked endpoints."""
    async with ScyllaCloudClient(instance, retry_policy=fast_retry, sleep=sleep) as c:
        yield c


@pytest.fixture
def mock_security_settings() -> SecuritySettings:
    """Create security settings for testing."""
    return SecuritySettings(
        read_only=False,
        disable_destructive=False,
        audit_log=None,
        mask_secrets=True,
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    """Create read-only security settings for testing."""
    return SecuritySettings(
        read_only=True,
        disable_destructive=True,
        audit_log=None,
        mask_secrets=True,
    )


@pytest.fixture
def safety_guard(mock_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(mock_security_settings)


@pytest.fixture
def read_only_safety_guard(read_only_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_security_settings)


# Catalog used by metadata and reconciler tests

AWS = CloudProvider(id=1, name="AWS", root_account_id="123456789012")
GCP = CloudProvider(id=2, name="GCP")
US_EAST_1 = Region(id=1, external_id="us-east-1", cloud_provider_id=1, dc_name="AWS_US_EAST_1")
EU_WEST_1 = Region(id=2, external_id="eu-west-1", cloud_provider_id=1, dc_name="AWS_EU_WEST_1")
I3_LARGE = InstanceType(id=62, external_id="i3.large", cloud_provider_id=1, total_storage=475, cpu_count=2)
I3_XLARGE = InstanceType(id=63, external_id="i3.xlarge", cloud_provider_id=1, total_storage=950, cpu_count=4)
I4I_LARGE = InstanceType(id=80, external_id="i4i.large", cloud_provider_id=1, total_storage=468, cpu_count=2)
V2023 = ScyllaVersion(id=110, version="2023.1.2")
V2024 = ScyllaVersion(id=120, version="2024.1.0")


@pytest.fixture
def metadata() -> MetadataCache:
    """Small catalog: AWS with two regions, GCP with none."""
    return MetadataCache(
        providers=(AWS, GCP),
        catalogs={
            AWS.id: RegionCatalog(
                regions=(US_EAST_1, EU_WEST_1),
                instances=(I3_LARGE, I3_XLARGE, I4I_LARGE),
                default_region_id=US_EAST_1.id,
                default_instance_id=I3_LARGE.id,
            ),
            GCP.id: RegionCatalog(),
        },
        versions=VersionCatalog(versions=(V2023, V2024), default_version_id=V2024.id),
    )


@pytest.fixture
def mock_client() -> AsyncMock:
    """AsyncMock client whose logger views return the mock itself."""
    client = AsyncMock(spec=ScyllaCloudClient)
    client.with_logger = lambda _logger: client
    return client


# Integration test fixtures


@pytest.fixture
def scylla_cloud_token() -> str | None:
    """Get the API token from the environment."""
    return os.environ.get("SCYLLA_CLOUD_TOKEN")


@pytest.fixture
def scylla_cloud_endpoint() -> str:
    return os.environ.get("SCYLLA_CLOUD_ENDPOINT", "https://cloud.scylladb.com/api/v0")


@pytest.fixture
async def live_client(
    scylla_cloud_token: str | None,
    scylla_cloud_endpoint: str,
) -> AsyncIterator[ScyllaCloudClient | None]:
    """Create a live client for integration tests."""
    if not scylla_cloud_token:
        yield None
        return

    instance = CloudInstance(
        url=scylla_cloud_endpoint,
        token=SecretStr(scylla_cloud_token),
        name="integration-test",
    )
    async with ScyllaCloudClient(instance) as c:
        yield c
