"""
SMS service tests - configuration guard, number normalization, retry classification.
All Twilio calls are mocked.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from refertrack.services.sms import (
    MAX_RETRIES,
    _extract_error_code,
    send_sms,
)

VALID_NUMBER = "+12015550123"


def _mock_settings(sid="AC_test", from_number="+12015550100"):
    settings = MagicMock()
    settings.twilio_account_sid = sid
    settings.twilio_auth_token = "token"
    settings.twilio_from_number = from_number
    return settings


class TwilioError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class TestExtractErrorCode:
    def test_code_attribute(self):
        assert _extract_error_code(TwilioError("bad", code=21211)) == "21211"

    def test_code_in_message(self):
        assert _extract_error_code(Exception("Twilio returned 30007 filtered")) == "30007"

    def test_unknown(self):
        assert _extract_error_code(Exception("socket closed")) is None


class TestSendSms:
    @patch("refertrack.config.get_settings")
    async def test_not_configured(self, mock_settings):
        mock_settings.return_value = _mock_settings(sid="")
        result = await send_sms(VALID_NUMBER, "hello")
        assert result["status"] == "failed"
        assert result["error"] == "Twilio not configured"

    @patch("refertrack.config.get_settings")
    async def test_invalid_number(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        result = await send_sms("12345", "hello")
        assert result["status"] == "failed"
        assert result["error"] == "Invalid phone number"

    @patch("refertrack.config.get_settings")
    async def test_success_normalizes_number(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        with patch(
            "refertrack.services.sms._send_twilio",
            new_callable=AsyncMock, return_value={"sid": "SM123", "status": "queued"},
        ) as mock_send:
            result = await send_sms("(201) 555-0123", "hello")

        assert result == {"sid": "SM123", "status": "queued", "error": None, "error_code": None}
        mock_send.assert_awaited_once_with(VALID_NUMBER, "hello")

    @patch("refertrack.config.get_settings")
    async def test_permanent_error_not_retried(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        with (
            patch(
                "refertrack.services.sms._send_twilio",
                new_callable=AsyncMock, side_effect=TwilioError("unsubscribed", code=21610),
            ) as mock_send,
            patch("refertrack.services.sms.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            result = await send_sms(VALID_NUMBER, "hello")

        assert result["error_code"] == "21610"
        assert mock_send.await_count == 1
        mock_sleep.assert_not_awaited()

    @patch("refertrack.config.get_settings")
    async def test_transient_error_retried_then_succeeds(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        with (
            patch(
                "refertrack.services.sms._send_twilio",
                new_callable=AsyncMock,
                side_effect=[TwilioError("filtered", code=30007), {"sid": "SM9", "status": "queued"}],
            ) as mock_send,
            patch("refertrack.services.sms.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            result = await send_sms(VALID_NUMBER, "hello")

        assert result["sid"] == "SM9"
        assert mock_send.await_count == 2
        mock_sleep.assert_awaited_once_with(5)

    @patch("refertrack.config.get_settings")
    async def test_retries_exhausted(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        with (
            patch(
                "refertrack.services.sms._send_twilio",
                new_callable=AsyncMock, side_effect=TwilioError("unknown", code=30008),
            ) as mock_send,
            patch("refertrack.services.sms.asyncio.sleep", new_callable=AsyncMock),
        ):
            result = await send_sms(VALID_NUMBER, "hello")

        assert result["status"] == "failed"
        assert result["error_code"] == "30008"
        assert mock_send.await_count == MAX_RETRIES + 1
