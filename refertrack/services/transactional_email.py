"""
Transactional email service - SendGrid-based emails for the referral program.

Covers code delivery to referrers, verification confirmations, and welcome
emails for homeowners imported by a contractor.
"""
import asyncio
import logging
from typing import Optional

from refertrack.config import get_settings
from refertrack.utils.logging import mask_email

logger = logging.getLogger(__name__)


async def _send_transactional(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str,
) -> dict:
    """
    Send a transactional email via SendGrid.

    Returns: {"message_id": str|None, "status": str, "error": str|None}
    """
    settings = get_settings()

    if not settings.sendgrid_api_key:
        logger.error("No SendGrid API key configured for transactional email")
        return {"message_id": None, "status": "error", "error": "SendGrid not configured"}

    try:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail, Email, To, Content

        message = Mail(
            from_email=Email(settings.sendgrid_from_email, settings.sendgrid_from_name),
            to_emails=To(to_email),
            subject=subject,
        )
        message.content = [
            Content("text/plain", text_content),
            Content("text/html", html_content),
        ]

        sg = SendGridAPIClient(api_key=settings.sendgrid_api_key)
        # Offload synchronous SendGrid SDK call to thread pool
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: sg.send(message))
        message_id = response.headers.get("X-Message-Id", "")

        logger.info(
            "Transactional email sent: to=%s subject=%s",
            mask_email(to_email), subject[:40],
        )
        return {"message_id": message_id, "status": "sent", "error": None}

    except Exception as e:
        logger.error(
            "Transactional email failed: to=%s error=%s",
            mask_email(to_email), str(e),
        )
        return {"message_id": None, "status": "error", "error": str(e)}


def _wrap_html(title: str, body_html: str, button_label: Optional[str] = None, button_url: Optional[str] = None) -> str:
    button = ""
    if button_label and button_url:
        button = f"""
      <div style="text-align: center; margin: 32px 0;">
        <a href="{button_url}" style="background: #16a34a; color: white; padding: 12px 32px; border-radius: 10px; text-decoration: none; font-weight: 600; font-size: 15px; display: inline-block;">
          {button_label}
        </a>
      </div>"""
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 480px; margin: 0 auto; padding: 40px 20px;">
      <div style="text-align: center; margin-bottom: 32px;">
        <h2 style="margin: 12px 0 0; color: #111; font-size: 20px;">{title}</h2>
      </div>
      {body_html}{button}
      <hr style="border: none; border-top: 1px solid #eee; margin: 32px 0;" />
      <p style="color: #bbb; font-size: 11px; text-align: center;">ReferTrack &mdash; Homeowner Referral Rewards</p>
    </div>
    """


def _code_block(code: str) -> str:
    return (
        '<p style="text-align: center; font-size: 28px; font-weight: 700; '
        f'letter-spacing: 4px; color: #111; margin: 24px 0;">{code}</p>'
    )


async def send_referral_code(
    email: str,
    code: str,
    contractor_name: str,
    referrer_name: Optional[str] = None,
) -> dict:
    """Send a freshly issued referral code to the referring homeowner."""
    greeting = f"Hi {referrer_name}," if referrer_name else "Hi,"
    html = _wrap_html(
        f"Your {contractor_name} referral code",
        f"""<p style="color: #555; font-size: 15px; line-height: 1.6;">{greeting}</p>
      <p style="color: #555; font-size: 15px; line-height: 1.6;">
        Share this code with friends and neighbors. When they complete an installation with {contractor_name}, you earn a reward.
      </p>
      {_code_block(code)}""",
    )
    text = (
        f"{greeting}\n\n"
        f"Your {contractor_name} referral code is: {code}\n\n"
        f"Share it with friends and neighbors. When they complete an installation "
        f"with {contractor_name}, you earn a reward.\n\n"
        "-- ReferTrack"
    )
    return await _send_transactional(email, f"Your {contractor_name} referral code: {code}", html, text)


async def send_referral_verified(
    email: str,
    code: str,
    contractor_name: str,
) -> dict:
    """Tell the referrer their code was used by a new customer."""
    html = _wrap_html(
        "Your referral was verified",
        f"""<p style="color: #555; font-size: 15px; line-height: 1.6;">
        Good news! Someone used your referral code with {contractor_name}.
        We'll send your reward as soon as their installation is complete.
      </p>
      {_code_block(code)}""",
    )
    text = (
        f"Good news! Someone used your referral code {code} with {contractor_name}.\n\n"
        "We'll send your reward as soon as their installation is complete.\n\n"
        "-- ReferTrack"
    )
    return await _send_transactional(email, "Your referral was verified", html, text)


async def send_homeowner_welcome(
    email: str,
    name: str,
    code: str,
    contractor_name: str,
) -> dict:
    """Welcome an imported homeowner with a registration link carrying their code."""
    settings = get_settings()
    register_url = f"{settings.app_base_url}/register?code={code}"
    html = _wrap_html(
        f"{contractor_name} invited you to refer friends",
        f"""<p style="color: #555; font-size: 15px; line-height: 1.6;">Hi {name},</p>
      <p style="color: #555; font-size: 15px; line-height: 1.6;">
        {contractor_name} has added you to their referral program. Your personal code is below.
        Register to track your referrals and rewards.
      </p>
      {_code_block(code)}""",
        button_label="Create Account",
        button_url=register_url,
    )
    text = (
        f"Hi {name},\n\n"
        f"{contractor_name} has added you to their referral program.\n"
        f"Your personal referral code: {code}\n\n"
        f"Register to track your referrals and rewards: {register_url}\n\n"
        "-- ReferTrack"
    )
    return await _send_transactional(
        email, f"{contractor_name} invited you to their referral program", html, text,
    )
