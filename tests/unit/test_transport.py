"""
Tests for email transports and the send guard.
"""

import asyncio
import json

import httpx
import pytest

from checkin_notifier.features.email_delivery.domain import TransportResult
from checkin_notifier.features.email_delivery.transport import (
    ConsoleTransport,
    SendGridTransport,
    get_email_transport,
    guarded_send,
)
from checkin_notifier.features.email_delivery.transport.sendgrid import SENDGRID_SEND_URL


def _sendgrid(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SendGridTransport(
        api_key="SG.test", from_email="noreply@example.com", timeout=5, client=client
    )


class TestSendGridTransport:
    @pytest.mark.asyncio
    async def test_accepted_returns_message_id(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(202, headers={"X-Message-Id": "sg-123"})

        result = await _sendgrid(handler).send(
            "owner@example.com", "Reminder", "<p>hi</p>", "hi"
        )

        assert result.success is True
        assert result.message_id == "sg-123"
        [request] = seen
        assert str(request.url) == SENDGRID_SEND_URL
        assert request.headers["Authorization"] == "Bearer SG.test"
        body = json.loads(request.content)
        assert body["personalizations"] == [{"to": [{"email": "owner@example.com"}]}]
        assert body["from"] == {"email": "noreply@example.com"}
        assert [c["type"] for c in body["content"]] == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_rate_limited_is_retryable_with_hint(self):
        def handler(request):
            return httpx.Response(
                429,
                headers={"Retry-After": "120"},
                json={"errors": [{"message": "too many requests"}]},
            )

        result = await _sendgrid(handler).send("owner@example.com", "s", "<p>h</p>")

        assert result.success is False
        assert result.retryable is True
        assert result.retry_after == 120.0
        assert "429" in result.error
        assert "too many requests" in result.error

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        def handler(request):
            return httpx.Response(503, text="upstream unavailable")

        result = await _sendgrid(handler).send("owner@example.com", "s", "<p>h</p>")

        assert result.retryable is True
        assert result.retry_after is None
        assert "upstream unavailable" in result.error

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self):
        def handler(request):
            return httpx.Response(
                400, json={"errors": [{"message": "Does not contain a valid address."}]}
            )

        result = await _sendgrid(handler).send("not-an-email", "s", "<p>h</p>")

        assert result.success is False
        assert result.retryable is False
        assert "valid address" in result.error

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await _sendgrid(handler).send("owner@example.com", "s", "<p>h</p>")

        assert result.success is False
        assert result.retryable is True
        assert "network error" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        result = await _sendgrid(handler).send("owner@example.com", "s", "<p>h</p>")

        assert result.retryable is True
        assert "timeout" in result.error

    def test_missing_api_key_is_rejected(self, monkeypatch):
        from checkin_notifier.config import settings

        monkeypatch.setattr(settings, "SENDGRID_API_KEY", None)

        with pytest.raises(ValueError, match="SENDGRID_API_KEY"):
            SendGridTransport()


class TestTransportFactory:
    def test_console_provider(self):
        transport = get_email_transport("console-dev")

        assert isinstance(transport, ConsoleTransport)

    def test_provider_name_is_normalised(self):
        assert isinstance(get_email_transport("  Console-Dev "), ConsoleTransport)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown email provider"):
            get_email_transport("carrier-pigeon")

    @pytest.mark.asyncio
    async def test_console_transport_always_succeeds(self):
        result = await ConsoleTransport().send("owner@example.com", "s", "<p>h</p>")

        assert result.success is True
        assert result.message_id.startswith("console-")


class TestGuardedSend:
    @pytest.mark.asyncio
    async def test_passes_through_result(self):
        async def send():
            return TransportResult.failed("bounced", retryable=False)

        result = await guarded_send(send, timeout=1)

        assert result.error == "bounced"
        assert result.retryable is False

    @pytest.mark.asyncio
    async def test_timeout_becomes_retryable_failure(self):
        async def send():
            await asyncio.sleep(5)

        result = await guarded_send(send, timeout=0.01)

        assert result.success is False
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self):
        async def send():
            raise RuntimeError("provider exploded")

        result = await guarded_send(send)

        assert result.success is False
        assert "provider exploded" in result.error

    @pytest.mark.asyncio
    async def test_unexpected_return_value_becomes_failure(self):
        async def send():
            return {"ok": True}

        result = await guarded_send(send)

        assert result.success is False
        assert "unexpected value" in result.error
