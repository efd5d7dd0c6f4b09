"""
Tests for the liveness and readiness probes
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture
def test_engine(async_engine):
    with patch("sms_bot.main.engine", async_engine):
        yield async_engine


class TestHealth:

    @pytest.mark.integration
    async def test_liveness(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.integration
    async def test_ready(self, test_client, test_engine):
        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "db": "ok", "redis": "ok"}

    @pytest.mark.integration
    async def test_redis_down(self, test_client, test_engine):
        broken = MagicMock()
        broken.ping = AsyncMock(side_effect=ConnectionError("refused"))

        with patch("sms_bot.main.get_redis", AsyncMock(return_value=broken)):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "degraded"
        assert body["db"] == "ok"
        assert body["redis"] == "error: ConnectionError"

    @pytest.mark.integration
    async def test_database_down(self, test_client):
        engine = MagicMock()
        engine.connect.side_effect = OSError("db down")

        with patch("sms_bot.main.engine", engine):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["db"] == "error: OSError"
