"""
Phone number normalization - E.164 format using the phonenumbers library.
"""
import logging
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)

DEFAULT_REGION = "US"


def normalize_phone_e164(phone: Optional[str], region: str = DEFAULT_REGION) -> Optional[str]:
    """
    Normalize a phone number to E.164 (+15125551234).
    Returns None if the number cannot be parsed or is not a valid number.
    """
    if not phone or not phone.strip():
        return None
    try:
        parsed = phonenumbers.parse(phone.strip(), region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def mask_phone(phone: Optional[str]) -> str:
    """Mask phone number for logging - show first 6 digits only."""
    if not phone:
        return ""
    if len(phone) > 6:
        return phone[:6] + "***"
    return phone
