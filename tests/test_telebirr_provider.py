"""
Tests for the TeleBirr payment provider
"""
import hashlib
import hmac
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from sms_bot.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from sms_bot.core.config import settings
from sms_bot.core.exceptions import TelebirrError
from sms_bot.domain.services.payment import get_payment_provider
from sms_bot.domain.services.payment.base_provider import PaymentRequest
from sms_bot.domain.services.payment.telebirr_provider import (
    TelebirrProvider,
    generate_signature,
    verify_signature,
)

REQUEST = PaymentRequest(phone="+251911223344", amount=Decimal("898.88"), reference="bk_1")


def _breaker() -> CircuitBreaker:
    return CircuitBreaker("telebirr_test", CircuitBreakerConfig(failure_threshold=3))


def _mock_client(mock_client_cls, status_code=200, body=None) -> AsyncMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = "error body"
    response.json.return_value = body
    instance = AsyncMock()
    instance.post = AsyncMock(return_value=response)
    instance.__aenter__ = AsyncMock(return_value=instance)
    instance.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = instance
    return instance


@pytest.fixture
def live_settings():
    with patch.object(settings, "TELEBIRR_APP_ID", "app-1"), \
         patch.object(settings, "TELEBIRR_APP_KEY", "secret-key"), \
         patch.object(settings, "TELEBIRR_API_URL", "https://telebirr.test"), \
         patch.object(settings, "DEMO_MODE", False):
        yield


class TestSignature:

    @pytest.mark.unit
    def test_sorted_urlencoded_hmac(self):
        params = {"b": "2", "a": "1 2", "signature": "ignored", "skip": None}
        expected = hmac.new(b"key", b"a=1+2&b=2", hashlib.sha256).hexdigest()

        assert generate_signature(params, app_key="key") == expected

    @pytest.mark.unit
    def test_verify_round_trip(self):
        payload = {"transactionId": "TXN-1", "status": "SUCCESS", "timestamp": "2025-01-15T06:00:00Z"}
        payload["signature"] = generate_signature(payload, app_key="key")

        assert verify_signature(payload, app_key="key")
        assert not verify_signature({**payload, "status": "FAILED"}, app_key="key")
        assert not verify_signature(payload, app_key="other")

    @pytest.mark.unit
    @pytest.mark.parametrize("signature", [None, "", 123])
    def test_missing_or_malformed_signature(self, signature):
        assert not verify_signature({"transactionId": "TXN-1", "signature": signature}, app_key="key")


class TestDemoMode:

    @pytest.mark.unit
    async def test_initiate_is_simulated(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            initiation = await TelebirrProvider(_breaker(), demo_mode=True).initiate_payment(REQUEST)

        assert initiation.transaction_id.startswith("DEMO-TXN-")
        mock_client_cls.assert_not_called()

    @pytest.mark.unit
    async def test_status_is_success(self):
        result = await TelebirrProvider(_breaker(), demo_mode=True).check_status("DEMO-TXN-1")
        assert result.status == "SUCCESS"

    @pytest.mark.unit
    def test_demo_without_app_id(self):
        with patch.object(settings, "TELEBIRR_APP_ID", ""), patch.object(settings, "DEMO_MODE", False):
            assert TelebirrProvider(_breaker()).demo_mode

    @pytest.mark.unit
    def test_shared_provider(self):
        provider = get_payment_provider()
        assert provider is get_payment_provider()
        assert provider.provider_name == "telebirr"


class TestLiveMode:

    @pytest.mark.unit
    async def test_initiate_payment(self, live_settings):
        with patch("httpx.AsyncClient") as mock_client_cls:
            client = _mock_client(mock_client_cls, body={"code": "0", "data": {"transactionId": "TB-998"}})

            initiation = await TelebirrProvider(_breaker()).initiate_payment(REQUEST)

        assert initiation.transaction_id == "TB-998"
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "https://telebirr.test/payment/request"
        assert payload["amount"] == "898.88"
        assert payload["phone"] == "0911223344"
        assert payload["outTradeNo"] == "bk_1"
        assert payload["subject"] == "i-Ticket Bus Booking"
        assert verify_signature(payload, app_key="secret-key")

    @pytest.mark.unit
    async def test_refused(self, live_settings):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, body={"code": "40001", "msg": "insufficient balance"})

            with pytest.raises(TelebirrError) as exc_info:
                await TelebirrProvider(_breaker()).initiate_payment(REQUEST)

        assert "insufficient balance" in exc_info.value.message

    @pytest.mark.unit
    async def test_missing_transaction_id(self, live_settings):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, body={"code": 0, "data": {}})

            with pytest.raises(TelebirrError):
                await TelebirrProvider(_breaker()).initiate_payment(REQUEST)

    @pytest.mark.unit
    async def test_http_error_counts_against_breaker(self, live_settings):
        breaker = _breaker()
        with patch("httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, status_code=500)

            with pytest.raises(TelebirrError):
                await TelebirrProvider(breaker).initiate_payment(REQUEST)

        assert breaker.snapshot().failure_count == 1

    @pytest.mark.unit
    async def test_check_status(self, live_settings):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, body={"code": "0", "data": {"status": "SUCCESS", "amount": "898.88"}})

            result = await TelebirrProvider(_breaker()).check_status("TB-998")

        assert result.status == "SUCCESS"
        assert result.amount == Decimal("898.88")
