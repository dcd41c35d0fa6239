"""
Notification dispatcher - delivers referral codes to homeowners by email and/or SMS.
Vendor failures are logged and reported in the result, never raised, so a
referral write never fails because SendGrid or Twilio did.
"""
import logging
from typing import Optional

from refertrack.services.sms import send_sms
from refertrack.services.transactional_email import (
    send_homeowner_welcome,
    send_referral_code,
    send_referral_verified,
)
from refertrack.utils.logging import mask_email
from refertrack.utils.phone import mask_phone

logger = logging.getLogger(__name__)

CONTEXTS = ("referral_issued", "referral_verified")


def _sms_body(code: str, context: str, contractor_name: str) -> str:
    if context == "referral_verified":
        return (
            f"{contractor_name}: someone just used your referral code {code}! "
            "Your reward is on the way once their installation is complete."
        )
    return (
        f"{contractor_name}: your referral code is {code}. "
        "Share it with friends. You earn a reward when they complete an installation."
    )


class NotificationDispatcher:
    """Routes one notification to every channel the recipient has."""

    async def send(
        self,
        recipient: dict,
        code: str,
        context: str = "referral_issued",
        *,
        contractor_name: str = "Your contractor",
    ) -> dict:
        """
        Returns:
            {"success": bool, "email": dict|None, "sms": dict|None}
            success is True when at least one channel delivered.
        """
        if context not in CONTEXTS:
            raise ValueError(f"Unknown notification context: {context}")

        email = recipient.get("email")
        phone = recipient.get("phone")
        name = recipient.get("name")
        email_result: Optional[dict] = None
        sms_result: Optional[dict] = None

        if email:
            try:
                if context == "referral_verified":
                    email_result = await send_referral_verified(email, code, contractor_name)
                else:
                    email_result = await send_referral_code(email, code, contractor_name, name)
            except Exception as e:
                logger.error("Referral email to %s failed: %s", mask_email(email), str(e))
                email_result = {"message_id": None, "status": "error", "error": str(e)}

        if phone:
            try:
                sms_result = await send_sms(phone, _sms_body(code, context, contractor_name))
            except Exception as e:
                logger.error("Referral SMS to %s failed: %s", mask_phone(phone), str(e))
                sms_result = {"sid": None, "status": "failed", "error": str(e), "error_code": None}

        success = bool(
            (email_result and not email_result.get("error"))
            or (sms_result and not sms_result.get("error"))
        )
        if not email and not phone:
            logger.info("No email or phone for referral %s notification, skipped", context)
        elif not success:
            logger.warning("Referral %s notification failed on every channel", context)

        return {"success": success, "email": email_result, "sms": sms_result}

    async def welcome_homeowner(self, homeowner, contractor_name: str) -> dict:
        """Welcome email with a registration link carrying the homeowner's code."""
        try:
            return await send_homeowner_welcome(
                homeowner.email, homeowner.name, homeowner.referral_code, contractor_name,
            )
        except Exception as e:
            logger.error("Welcome email to %s failed: %s", mask_email(homeowner.email), str(e))
            return {"message_id": None, "status": "error", "error": str(e)}
