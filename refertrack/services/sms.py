"""
SMS service - Twilio delivery for referral codes.

Carrier error handling:
- 21211 / 21612 (invalid number): don't retry
- 21610 (unsubscribed via carrier): don't retry
- 30006 (landline): don't retry
- 30007 / 30008 / 30009: retry with backoff
"""
import asyncio
import logging
from typing import Optional

from refertrack.utils.phone import mask_phone, normalize_phone_e164

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAYS_SECONDS = [5, 15]

PERMANENT_ERRORS = {
    "21211",  # Invalid "To" phone number
    "21610",  # Unsubscribed recipient
    "21612",  # Invalid "To" phone number for SMS
    "30006",  # Landline or unreachable
}

TRANSIENT_ERRORS = {
    "30007",  # Message filtered by carrier
    "30008",  # Unknown error
    "30009",  # Missing segment
}

TWILIO_CLIENT_TIMEOUT = 10


def _get_twilio_client():
    """Get a Twilio REST client with configured timeout."""
    from twilio.rest import Client as TwilioClient
    from twilio.http.http_client import TwilioHttpClient
    from refertrack.config import get_settings
    settings = get_settings()
    http_client = TwilioHttpClient(timeout=TWILIO_CLIENT_TIMEOUT)
    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=http_client,
    )


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous function in the thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def _extract_error_code(error: Exception) -> Optional[str]:
    """Twilio REST exceptions carry .code; some embed it in the message."""
    code = getattr(error, "code", None)
    if code is not None:
        return str(code)
    msg = str(error)
    for known_code in PERMANENT_ERRORS | TRANSIENT_ERRORS:
        if known_code in msg:
            return known_code
    return None


def _failed(error: str, error_code: Optional[str] = None) -> dict:
    return {"sid": None, "status": "failed", "error": error, "error_code": error_code}


async def _send_twilio(to: str, body: str) -> dict:
    from refertrack.config import get_settings
    settings = get_settings()
    client = _get_twilio_client()
    message = await _run_sync(
        client.messages.create, to=to, from_=settings.twilio_from_number, body=body,
    )
    return {"sid": message.sid, "status": message.status}


async def send_sms(to: str, body: str) -> dict:
    """
    Send an SMS via Twilio, retrying transient carrier errors.

    Returns: {"sid": str|None, "status": str, "error": str|None, "error_code": str|None}
    """
    from refertrack.config import get_settings
    settings = get_settings()

    if not settings.twilio_account_sid or not settings.twilio_from_number:
        logger.error("Twilio not configured, SMS not sent")
        return _failed("Twilio not configured")

    number = normalize_phone_e164(to)
    if number is None:
        logger.warning("Invalid phone number, SMS not sent: %s", mask_phone(to))
        return _failed("Invalid phone number")
    masked = mask_phone(number)

    last_error = None
    last_error_code = None
    for attempt in range(MAX_RETRIES + 1):
        try:
            result = await _send_twilio(number, body)
            logger.info("SMS sent to %s: %s", masked, result.get("sid", "unknown"))
            return {
                "sid": result.get("sid"),
                "status": result.get("status") or "sent",
                "error": None,
                "error_code": None,
            }
        except Exception as e:
            last_error = str(e)
            last_error_code = _extract_error_code(e)

            if last_error_code in PERMANENT_ERRORS:
                logger.warning(
                    "Twilio permanent error for %s: code=%s",
                    masked, last_error_code, extra={"error_code": last_error_code},
                )
                return _failed(last_error, last_error_code)

            if attempt < MAX_RETRIES:
                delay = RETRY_DELAYS_SECONDS[min(attempt, len(RETRY_DELAYS_SECONDS) - 1)]
                logger.warning(
                    "Twilio error for %s (attempt %d/%d): %s. Retrying in %ds...",
                    masked, attempt + 1, MAX_RETRIES + 1, last_error_code or last_error, delay,
                )
                await asyncio.sleep(delay)

    logger.error("Twilio exhausted retries for %s: %s", masked, last_error)
    return _failed(last_error, last_error_code)
