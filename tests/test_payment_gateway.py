"""
HttpPaymentGateway tests with a mocked aiohttp session
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from services.escrow_exceptions import GatewayError
from services.payment_gateway import HttpPaymentGateway, to_minor_units


def mock_session(status=200, json_body=None, text_body=""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_body or {})
    response.text = AsyncMock(return_value=text_body)

    post_context = MagicMock()
    post_context.__aenter__ = AsyncMock(return_value=response)
    post_context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post.return_value = post_context
    return session


def make_gateway(session):
    return HttpPaymentGateway(
        base_url="https://payments.example.test/v1/",
        api_key="test-key",
        timeout_seconds=5,
        session=session,
    )


class TestMinorUnits:

    def test_to_minor_units(self):
        assert to_minor_units(Decimal("500")) == 50000
        assert to_minor_units(Decimal("12.34")) == 1234
        assert to_minor_units(Decimal("0.01")) == 1


class TestHttpPaymentGateway:
    """Request shape and error mapping"""

    @pytest.mark.asyncio
    async def test_authorize_posts_manual_capture_hold(self):
        session = mock_session(json_body={"id": "hold_123"})
        gateway = make_gateway(session)

        hold_ref = await gateway.authorize(
            Decimal("500.00"), "cust1", currency="usd", metadata={"transactionId": "TXN-B1-1-ab"}
        )

        assert hold_ref == "hold_123"
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "https://payments.example.test/v1/authorizations"
        assert kwargs["json"]["amount"] == 50000
        assert kwargs["json"]["capture_method"] == "manual"
        assert kwargs["json"]["payer"] == "cust1"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["headers"]["Idempotency-Key"] == "authorize-TXN-B1-1-ab"

    @pytest.mark.asyncio
    async def test_capture_and_void_paths(self):
        session = mock_session(json_body={"status": "ok"})
        gateway = make_gateway(session)

        await gateway.capture("hold_1")
        await gateway.void("hold_2")

        urls = [call.args[0] for call in session.post.call_args_list]
        assert urls == [
            "https://payments.example.test/v1/authorizations/hold_1/capture",
            "https://payments.example.test/v1/authorizations/hold_2/void",
        ]

    @pytest.mark.asyncio
    async def test_transfer_returns_transfer_ref(self):
        session = mock_session(json_body={"id": "tr_9"})
        gateway = make_gateway(session)

        transfer_ref = await gateway.transfer(
            Decimal("250.50"), "acct_land1", "B1", metadata={"transactionId": "TXN-B1-1-ab"}
        )

        assert transfer_ref == "tr_9"
        payload = session.post.call_args.kwargs["json"]
        assert payload["amount"] == 25050
        assert payload["destination"] == "acct_land1"
        assert payload["transfer_group"] == "B1"
        assert session.post.call_args.kwargs["headers"]["Idempotency-Key"] == "transfer-B1-TXN-B1-1-ab"

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        gateway = make_gateway(mock_session(status=503, text_body="unavailable"))

        with pytest.raises(GatewayError) as exc_info:
            await gateway.capture("hold_1")

        assert exc_info.value.retryable is True
        assert exc_info.value.operation == "capture"

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        gateway = make_gateway(mock_session(status=402, text_body="card declined"))

        with pytest.raises(GatewayError) as exc_info:
            await gateway.authorize(Decimal("10"), "cust1")

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        session = MagicMock()
        session.post.side_effect = aiohttp.ClientConnectionError("connection reset")
        gateway = make_gateway(session)

        with pytest.raises(GatewayError, match="network error"):
            await gateway.transfer(Decimal("10"), "acct", "B1")

    @pytest.mark.asyncio
    async def test_missing_id_in_response(self):
        gateway = make_gateway(mock_session(json_body={}))

        with pytest.raises(GatewayError, match="missing"):
            await gateway.authorize(Decimal("10"), "cust1")
