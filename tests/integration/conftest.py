"""Fixtures for HTTP-level tests against a mocked Azure DevOps."""

from collections.abc import AsyncGenerator

import pytest
from aioresponses import aioresponses as aioresponses_cls
from pydantic import SecretStr

from ado_publish.client import AdoClient
from ado_publish.config import AdoConfig
from ado_publish.transport import AdoTransport

API_BASE_URL = "http://ado.test"


@pytest.fixture
def config() -> AdoConfig:
    """Create test configuration without retry delays."""
    return AdoConfig(
        organization="test-org",
        project="test-project",
        pat=SecretStr("test-pat"),
        api_base_url=API_BASE_URL,
        retry_delay=0,
    )


@pytest.fixture
async def transport(
    config: AdoConfig, aioresponses: aioresponses_cls
) -> AsyncGenerator[AdoTransport, None]:
    """Create transport with managed session."""
    async with AdoTransport.from_config(config) as impl:
        yield impl


@pytest.fixture
async def client(
    config: AdoConfig, aioresponses: aioresponses_cls
) -> AsyncGenerator[AdoClient, None]:
    """Create client with managed session."""
    async with AdoClient.from_config(config) as impl:
        yield impl
