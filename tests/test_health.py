"""Tests for health checks and service wiring."""
from unittest.mock import AsyncMock

import pytest

from presence.config import Settings
from presence.container import build_container
from presence.health import HealthChecker
from presence.ledger import InMemoryLedger
from presence.stores import InMemoryClaimLedger


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.mark.asyncio
async def test_readiness_ok_with_memory_backends():
    container = build_container(make_settings())
    result = await HealthChecker().readiness(container)

    assert result["checks"]["store"]["status"] == "ok"
    assert result["checks"]["ledger"]["status"] == "ok"
    assert result["service"] == "presence"
    await container.close()


@pytest.mark.asyncio
async def test_readiness_not_ready_when_store_down():
    container = build_container(make_settings())
    container.claims.health_check = AsyncMock(return_value=False)

    result = await HealthChecker().readiness(container)
    assert result["status"] == "not_ready"
    assert result["checks"]["store"]["status"] == "error"
    await container.close()


@pytest.mark.asyncio
async def test_readiness_not_ready_when_ledger_raises():
    container = build_container(make_settings())
    container.ledger.health_check = AsyncMock(side_effect=ConnectionError("rpc down"))

    result = await HealthChecker().readiness(container)
    assert result["status"] == "not_ready"
    assert "rpc down" in result["checks"]["ledger"]["error"]
    await container.close()


def test_liveness():
    data = HealthChecker(version="9.9.9").liveness()
    assert data["status"] == "ok"
    assert data["version"] == "9.9.9"


class TestContainer:
    """build_container backend selection"""

    @pytest.mark.asyncio
    async def test_defaults_to_memory(self):
        container = build_container(make_settings())
        assert isinstance(container.claims, InMemoryClaimLedger)
        assert isinstance(container.ledger, InMemoryLedger)
        assert container.redis_client is None
        await container.close()

    @pytest.mark.asyncio
    async def test_redis_without_url_falls_back(self):
        container = build_container(make_settings(STORE_ADAPTER="redis", REDIS_URL=None))
        assert isinstance(container.claims, InMemoryClaimLedger)
        await container.close()

    def test_web3_requires_configuration(self):
        with pytest.raises(ValueError, match="LEDGER_RPC_URL"):
            build_container(make_settings(LEDGER_ADAPTER="web3"))
