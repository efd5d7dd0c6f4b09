"""
Tests for the admin SMS endpoints
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from sms_bot.core.circuit_breaker import get_telebirr_circuit_breaker
from sms_bot.core.config import settings
from sms_bot.db.models.sms_message_log import MessageDirection, SmsMessageLog
from sms_bot.domain.services.message_log import MessageLogService
from sms_bot.state_machine.session_store import SessionStore

API_KEY = "test-admin-key"
HEADERS = {"X-Admin-API-Key": API_KEY}


@pytest.fixture(autouse=True)
def admin_key():
    with patch.object(settings, "ADMIN_API_KEY", API_KEY):
        yield


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.send_with_retry = AsyncMock(return_value=True)
    with patch("sms_bot.api.routes.sms.get_sms_gateway", return_value=mock):
        yield mock


class TestAdminAuth:

    @pytest.mark.integration
    async def test_missing_key(self, test_client):
        response = await test_client.get("/api/sms/stats")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_wrong_key(self, test_client):
        response = await test_client.get("/api/sms/stats", headers={"X-Admin-API-Key": "nope"})

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid API key"

    @pytest.mark.integration
    async def test_unconfigured_key_closes_endpoints(self, test_client):
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get("/api/sms/stats", headers=HEADERS)

        assert response.status_code == 403
        assert response.json()["detail"] == "ADMIN_API_KEY is not configured"


class TestOutgoingSms:

    @pytest.mark.integration
    async def test_send(self, test_client, gateway, db_session):
        response = await test_client.post(
            "/api/sms/outgoing",
            json={"to": "+251911223344", "message": "Your bus leaves at 9:00 AM"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["to"] == "0911223344"
        assert body["sentAt"]
        gateway.send_with_retry.assert_awaited_once_with("0911223344", "Your bus leaves at 9:00 AM")

        entry = (await db_session.execute(select(SmsMessageLog))).scalar_one()
        assert entry.direction == MessageDirection.OUTBOUND
        assert entry.success is True

    @pytest.mark.integration
    async def test_gateway_failure(self, test_client, gateway):
        gateway.send_with_retry.return_value = False

        response = await test_client.post(
            "/api/sms/outgoing", json={"to": "0911223344", "message": "hi"}, headers=HEADERS
        )

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to send SMS"

    @pytest.mark.integration
    async def test_invalid_phone(self, test_client, gateway):
        response = await test_client.post(
            "/api/sms/outgoing", json={"to": "12345", "message": "hi"}, headers=HEADERS
        )

        assert response.status_code == 400
        gateway.send_with_retry.assert_not_called()

    @pytest.mark.integration
    @pytest.mark.parametrize("message", ["", "x" * 1601])
    async def test_message_length(self, test_client, gateway, message):
        response = await test_client.post(
            "/api/sms/outgoing", json={"to": "0911223344", "message": message}, headers=HEADERS
        )
        assert response.status_code == 422


class TestStats:

    @pytest.mark.integration
    async def test_counts(self, test_client, db_session, phone):
        store = SessionStore(db_session)
        await store.get_or_create(phone)
        await store.get_or_create("0922334455")

        log = MessageLogService(db_session)
        await log.record(MessageDirection.INBOUND, phone, "HELP")
        await log.record(MessageDirection.OUTBOUND, phone, "i-TICKET SMS HELP")
        await log.record(MessageDirection.OUTBOUND, phone, "i-TICKET SMS HELP", success=False)

        response = await test_client.get("/api/sms/stats", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["sessions"]["active"] == 2
        assert body["sessions"]["total"] == 2
        assert body["sessions"]["last_hour"] == 2
        assert body["last24Hours"] == {"received": 1, "sent": 1, "failed": 1}

    @pytest.mark.integration
    async def test_empty(self, test_client):
        response = await test_client.get("/api/sms/stats", headers=HEADERS)

        body = response.json()
        assert body["sessions"]["active"] == 0
        assert body["last24Hours"] == {"received": 0, "sent": 0, "failed": 0}


class TestCircuitBreakerStatus:

    @pytest.mark.integration
    async def test_lists_downstream_services(self, test_client):
        response = await test_client.get("/api/sms/circuit-breakers", headers=HEADERS)

        assert response.status_code == 200
        services = {item["service"]: item for item in response.json()}
        assert set(services) == {"booking_api", "telebirr", "sms_gateway"}
        assert all(item["state"] == "closed" for item in services.values())

    @pytest.mark.integration
    async def test_reports_failures(self, test_client):
        get_telebirr_circuit_breaker().record_failure()

        response = await test_client.get("/api/sms/circuit-breakers", headers=HEADERS)

        services = {item["service"]: item for item in response.json()}
        assert services["telebirr"]["failure_count"] == 1
